import pytest

from scorebook.schemas import RuleConfig
from scorebook.validators import RuleValidationError, validate_rule_config


def rule_record(**kwargs) -> dict:
    payload = {
        "return_score": 30000,
        "start_score": 25000,
        "uma_first": 30,
        "uma_second": 10,
        "uma_third": -10,
        "uma_fourth": -30,
        "has_oka": False,
    }
    payload.update(kwargs)
    return payload


def test_validate_rule_config_accepts_storage_record():
    rules = validate_rule_config(rule_record())
    assert rules.uma == [30, 10, -10, -30]
    assert rules.has_oka is False
    assert rules.to_record()["uma_fourth"] == -30


def test_validate_rule_config_accepts_nested_shape():
    rules = validate_rule_config({"return_score": 25000, "start_score": 25000, "uma": [15, 5, -5, -15], "has_oka": True})
    assert rules.return_score == 25000
    assert rules.uma == [15, 5, -5, -15]


def test_validate_rule_config_passes_models_through():
    rules = RuleConfig()
    assert validate_rule_config(rules) is rules


def test_uma_order_is_not_enforced():
    rules = validate_rule_config(rule_record(uma_first=-50, uma_fourth=90))
    assert rules.uma == [-50, 10, -10, 90]


@pytest.mark.parametrize(
    "overrides",
    [
        {"return_score": "30000"},
        {"start_score": 25000.0},
        {"uma_second": None},
        {"uma_third": True},
        {"has_oka": "yes"},
    ],
)
def test_validate_rule_config_rejects_non_numeric_values(overrides):
    with pytest.raises(RuleValidationError) as exc_info:
        validate_rule_config(rule_record(**overrides))
    assert exc_info.value.details["fields"]


def test_validate_rule_config_reports_missing_fields():
    record = rule_record()
    del record["uma_third"]
    del record["has_oka"]
    with pytest.raises(RuleValidationError) as exc_info:
        validate_rule_config(record)
    assert exc_info.value.details == {"missing": ["uma_third", "has_oka"]}


def test_validate_rule_config_rejects_wrong_uma_length():
    with pytest.raises(RuleValidationError):
        validate_rule_config({"return_score": 30000, "start_score": 25000, "uma": [20, -20], "has_oka": True})


def test_validate_rule_config_rejects_unknown_fields_and_non_mappings():
    with pytest.raises(RuleValidationError):
        validate_rule_config({"return_score": 30000, "start_score": 25000, "uma": [20, 10, -10, -20], "has_oka": True, "tobi": 10})
    with pytest.raises(RuleValidationError):
        validate_rule_config([30000, 25000])
