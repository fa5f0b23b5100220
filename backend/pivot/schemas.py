"""
Asset Pivot — Wire schemas

Pydantic models for the pivot endpoint response, shared by the router that
emits it and the client that validates it.
"""

from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator


class PivotRow(BaseModel):
    """One asset flattened across all phases; identity is (group_1, relation)."""
    model_config = ConfigDict(extra="ignore")

    group_1: str
    relation: str = ""
    leaf_group_name: Optional[str] = None
    top_group_node: Optional[str] = None

    mdl_work: Optional[str] = None
    mdl_appr: Optional[str] = None
    mdl_submitted: Optional[datetime] = None
    mdl_take: Optional[str] = None

    rig_work: Optional[str] = None
    rig_appr: Optional[str] = None
    rig_submitted: Optional[datetime] = None
    rig_take: Optional[str] = None

    bld_work: Optional[str] = None
    bld_appr: Optional[str] = None
    bld_submitted: Optional[datetime] = None
    bld_take: Optional[str] = None

    dsn_work: Optional[str] = None
    dsn_appr: Optional[str] = None
    dsn_submitted: Optional[datetime] = None
    dsn_take: Optional[str] = None

    ldv_work: Optional[str] = None
    ldv_appr: Optional[str] = None
    ldv_submitted: Optional[datetime] = None
    ldv_take: Optional[str] = None

    @field_validator(
        "mdl_take", "rig_take", "bld_take", "dsn_take", "ldv_take",
        mode="before",
    )
    @classmethod
    def _take_as_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.group_1, self.relation)


class PivotGroup(BaseModel):
    group_name: str
    total_count: int = 0
    items: List[PivotRow] = []


class PivotPage(BaseModel):
    """Either ``assets`` (list view) or ``groups`` (grouped view) is populated."""
    assets: List[PivotRow] = []
    groups: List[PivotGroup] = []
    total: int = 0
    page: int = 1
    per_page: int = 15
    sort: str = "group_1"
    dir: str = "ASC"
    phase: str = "none"

    @property
    def rows(self) -> List[PivotRow]:
        if self.assets:
            return list(self.assets)
        return [row for group in self.groups for row in group.items]
