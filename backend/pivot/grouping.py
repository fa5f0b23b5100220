"""
Asset Pivot — Group assembly

One bucketing function shared by the server (grouped view) and the client
fallback path, plus the assembler that applies pinned ordering and the
empty-pinned visibility policy, and the per-group collapse state.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Sequence

from pivot.comparators import fold_text, row_value, sort_rows
from pivot.sort_keys import SortSpec

UNASSIGNED_GROUP = "unassigned"
GROUP_COLUMN = "top_group_node"
DEFAULT_PINNED_GROUPS = ("camera", "character", "prop", "set")


class VisibilityPolicy(str, Enum):
    FIRST_PAGE_ONLY = "firstPageOnly"
    ALWAYS = "always"
    NEVER = "never"


class GroupSection(NamedTuple):
    name: str
    rows: List[Any]


def normalize_group_name(name: Optional[str]) -> str:
    cleaned = fold_text(name or "")
    return cleaned or UNASSIGNED_GROUP


def default_group_key(row: Any) -> str:
    return normalize_group_name(row_value(row, GROUP_COLUMN))


def bucket_rows(
    rows: Iterable[Any],
    key: Callable[[Any], Optional[str]] = default_group_key,
) -> "OrderedDict[str, List[Any]]":
    """Bucket rows by normalized group name, keeping first-seen group order
    and the incoming row order inside each bucket."""
    buckets: "OrderedDict[str, List[Any]]" = OrderedDict()
    for row in rows:
        buckets.setdefault(normalize_group_name(key(row)), []).append(row)
    return buckets


def _server_group_name(group: Any) -> str:
    if isinstance(group, dict):
        return group.get("group_name", "")
    return getattr(group, "group_name", "")


def _server_group_items(group: Any) -> List[Any]:
    if isinstance(group, dict):
        return list(group.get("items") or [])
    return list(getattr(group, "items", None) or [])


def _pinned_visible(has_rows: bool, page: int, policy: VisibilityPolicy) -> bool:
    if has_rows:
        return True
    if policy is VisibilityPolicy.ALWAYS:
        return True
    if policy is VisibilityPolicy.NEVER:
        return False
    return page == 0


def assemble(
    server_groups: Optional[Sequence[Any]],
    fallback_rows: Optional[Iterable[Any]],
    page: int,
    pinned_groups: Sequence[str] = DEFAULT_PINNED_GROUPS,
    policy: VisibilityPolicy = VisibilityPolicy.FIRST_PAGE_ONLY,
    sort_spec: Optional[SortSpec] = None,
) -> List[GroupSection]:
    """Final ordered (group name, rows) sections for one page.

    Server groups, when present, are authoritative and taken verbatim.
    Otherwise ``fallback_rows`` are bucketed locally. ``page`` is 0-based.
    ``sort_spec`` optionally re-orders rows within each section.
    """
    if server_groups:
        mapping: Dict[str, List[Any]] = OrderedDict()
        for group in server_groups:
            mapping.setdefault(normalize_group_name(_server_group_name(group)), []).extend(
                _server_group_items(group)
            )
    else:
        mapping = bucket_rows(fallback_rows or [])

    sections: List[GroupSection] = []
    pinned: List[str] = []
    for raw in pinned_groups:
        name = normalize_group_name(raw)
        if name in pinned:
            continue
        pinned.append(name)
        rows = mapping.get(name, [])
        if _pinned_visible(bool(rows), page, policy):
            sections.append(GroupSection(name, sort_rows(rows, sort_spec)))

    for name in sorted(n for n in mapping if n not in pinned):
        sections.append(GroupSection(name, sort_rows(mapping[name], sort_spec)))
    return sections


@dataclass(frozen=True)
class CollapseState:
    """Collapsed group names; every group not listed is expanded."""
    collapsed: FrozenSet[str] = field(default_factory=frozenset)

    def is_collapsed(self, group_name: str) -> bool:
        return normalize_group_name(group_name) in self.collapsed

    def toggle(self, group_name: str) -> "CollapseState":
        name = normalize_group_name(group_name)
        if name in self.collapsed:
            return CollapseState(self.collapsed - {name})
        return CollapseState(self.collapsed | {name})
