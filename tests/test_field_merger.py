"""Tests for folding raw submission fields into the analyte map."""

from src.pipelines.field_merger import merge_raw_fields


def test_raw_scalars_added_under_canonical_alias():
    merged = merge_raw_fields({}, {"ph": 6.5, "leuk": "neg"}, {"ph": "pH"})

    assert merged == {
        "pH": {"value": "6.5", "unit": ""},
        "leuk": {"value": "neg", "unit": ""},
    }


def test_task_values_win_over_manual_duplicates():
    analytes = {"pH": {"value": "6.0", "unit": ""}}

    merged = merge_raw_fields(analytes, {"ph": "7.0"}, {"ph": "pH"})

    assert merged["pH"]["value"] == "6.0"


def test_booleans_stringified_and_objects_ignored():
    raw = {"cup_seal_intact": True, "nested": {"a": 1}, "items": [1, 2], "missing": None}

    merged = merge_raw_fields({}, raw, {})

    assert merged == {"cup_seal_intact": {"value": "true", "unit": ""}}


def test_input_map_not_mutated():
    analytes = {"pH": {"value": "6.0", "unit": ""}}

    merge_raw_fields(analytes, {"sg": "1.020"}, {})

    assert list(analytes) == ["pH"]
