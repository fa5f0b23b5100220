"""Tests for sort key resolution"""
import pytest

from pivot.sort_keys import (
    DEFAULT_SORT, FieldKind, PhaseCode, PhasedKey, ReservedKey, SortDirection, SortSpec,
    UnknownKey, decode_sort_key, resolve_sort_key,
)


@pytest.mark.parametrize("phase", [p.value for p in PhaseCode])
@pytest.mark.parametrize("field,column_suffix", [
    ("work", "work"),
    ("appr", "appr"),
    ("submitted", "submitted"),
    ("take", "take"),
])
def test_phased_keys_resolve_to_physical_column(phase, field, column_suffix):
    spec = resolve_sort_key(f"{phase}_{field}")
    assert spec.physical_column == f"{phase}_{column_suffix}"
    assert spec.phase == phase


@pytest.mark.parametrize("key", ["group_1", "relation"])
def test_reserved_keys_are_phase_independent(key):
    spec = resolve_sort_key(key, SortDirection.DESC)
    assert spec == SortSpec(key, "none", SortDirection.DESC)
    assert spec.field is None


@pytest.mark.parametrize("key", [
    "", None, "name", "xyz_take", "mdl", "mdl_", "mdl_status", "_take", "mdl_take_extra", "rig work",
])
def test_unknown_keys_fall_back_to_name_order(key):
    spec = resolve_sort_key(key)
    assert spec.physical_column == "group_1"
    assert spec.phase == "none"


def test_matching_is_case_insensitive():
    spec = resolve_sort_key("  RIG_Take ")
    assert spec.physical_column == "rig_take"
    assert spec.phase == "rig"
    assert resolve_sort_key("Group_1").physical_column == "group_1"


def test_decode_returns_tagged_variants():
    assert decode_sort_key("relation") == ReservedKey("relation")
    assert decode_sort_key("ldv_submitted") == PhasedKey(PhaseCode.LDV, FieldKind.SUBMITTED)
    assert decode_sort_key("bogus") == UnknownKey("bogus")


def test_fallback_keeps_requested_direction():
    spec = resolve_sort_key("bogus", SortDirection.DESC)
    assert spec == DEFAULT_SORT.with_direction(SortDirection.DESC)


def test_field_inferred_from_column_suffix():
    assert resolve_sort_key("mdl_submitted").field is FieldKind.SUBMITTED
    assert resolve_sort_key("dsn_take").field is FieldKind.TAKE
    assert resolve_sort_key("bld_appr").field is FieldKind.APPROVAL
    assert resolve_sort_key("bld_work").field is FieldKind.WORK


@pytest.mark.parametrize("raw,expected", [
    ("asc", SortDirection.ASC),
    ("DESC", SortDirection.DESC),
    (" None ", SortDirection.NONE),
    ("sideways", SortDirection.ASC),
    (None, SortDirection.ASC),
])
def test_direction_parse(raw, expected):
    assert SortDirection.parse(raw) is expected
