# tests/contract/test_contract_validator.py
# coding: utf-8
"""
Тесты для ContractValidator.
"""
import pytest

from plangraph.common.errors import ContractViolationError
from plangraph.contract.validator import ContractValidator
from plangraph.runner.tool_value import ToolValue


@pytest.fixture
def validator():
    return ContractValidator("{name}_{step_id}{variant_id}")


def test_output_key(validator):
    assert validator.output_key("total", "2", "A") == "total_2A"
    assert validator.output_key("total", None, None) == "total"


# --- Тест 1: принятый mapping ---
def test_accepts_suffixed_outputs_and_collects_extras(validator):
    report = validator.validate(
        ["total", "rows"],
        {"total_2A": 42, "rows_2A": [1, 2], "debug_2A": "trace", "call_self": False},
        step_id="2", variant_id="A",
    )
    assert report.accepted == {"total": 42, "rows": [1, 2]}
    assert report.source_keys == {"total": "total_2A", "rows": "rows_2A"}
    assert report.extras == ["debug_2A"]
    assert report.control == {"call_self": False}


# --- Тест 2: пропущенные и пустые выходы ---
def test_missing_and_none_outputs(validator):
    with pytest.raises(ContractViolationError) as exc:
        validator.validate(["total", "rows"], {"total_2A": None}, step_id="2", variant_id="A")
    assert exc.value.missing == ["total_2A", "rows_2A"]


# --- Тест 3: дисциплина имён ---
def test_unsuffixed_key_is_malformed(validator):
    with pytest.raises(ContractViolationError) as exc:
        validator.validate(["total"], {"total_2A": 1, "total": 1}, step_id="2", variant_id="A")
    assert exc.value.malformed == ["total"]


def test_key_of_other_variant_is_malformed(validator):
    with pytest.raises(ContractViolationError) as exc:
        validator.validate(["total"], {"total_2A": 1, "total_2B": 2}, step_id="2", variant_id="A")
    assert exc.value.malformed == ["total_2B"]


# --- Тест 4: значения ---
def test_unnarrowed_tool_value_is_malformed(validator):
    with pytest.raises(ContractViolationError) as exc:
        validator.validate(["rows"], {"rows_2A": [ToolValue([1])]}, step_id="2", variant_id="A")
    assert exc.value.malformed[0].startswith("rows_2A")


def test_type_tag_must_be_preserved(validator):
    with pytest.raises(ContractViolationError):
        validator.validate(["total"], {"total_2A": [1]}, step_id="2", variant_id="A",
                           existing_types={"total": "scalar"})
    report = validator.validate(["total"], {"total_2A": 7}, step_id="2", variant_id="A",
                                existing_types={"total": "scalar"})
    assert report.accepted == {"total": 7}


def test_file_asset_must_reference_written_path(validator):
    asset = {"type": "file", "path": "out/r.txt", "content": "x"}
    with pytest.raises(ContractViolationError):
        validator.validate(["report"], {"report_3A": asset}, step_id="3", variant_id="A", written_paths=set())
    report = validator.validate(["report"], {"report_3A": asset}, step_id="3", variant_id="A",
                                written_paths={"out/r.txt"})
    assert report.accepted["report"]["path"] == "out/r.txt"


# --- Тест 5: промежуточная итерация ---
def test_intermediate_iteration_checks_only_naming(validator):
    report = validator.validate(["total"], {"call_self": True, "draft_2A": 1}, step_id="2", variant_id="A",
                                require_complete=False)
    assert report.accepted == {}
    assert report.control == {"call_self": True}

    with pytest.raises(ContractViolationError):
        validator.validate(["total"], {"call_self": True, "draft": 1}, step_id="2", variant_id="A",
                           require_complete=False)


def test_commit_view(validator):
    assert validator.commit_view(["total"], {"total_2A": 42}, step_id="2", variant_id="A") == {"total": 42}
