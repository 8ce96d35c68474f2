import pytest
import yaml

from alertcompliance.cases import CASE_FACTORIES
from alertcompliance.rule_config import build_rules_file, main
from alertcompliance.schemas.rules import format_duration


@pytest.mark.parametrize("ms,expected", [
    (0, "0s"),
    (15_000, "15s"),
    (30_000, "30s"),
    (360_000, "6m"),
    (5_400_000, "1h30m"),
    (1_500, "1s500ms"),
    (14 * 24 * 3600 * 1000, "2w"),
    (10 * 24 * 3600 * 1000, "10d"),
    (8 * 24 * 3600 * 1000 + 1, "8d1ms"),
])
def test_format_duration(ms, expected):
    assert format_duration(ms) == expected


def test_rules_file_has_every_group():
    doc = yaml.safe_load(build_rules_file())
    assert [g["name"] for g in doc["groups"]] == list(CASE_FACTORIES)
    for group in doc["groups"]:
        assert group["interval"] == "30s"
        for rule in group["rules"]:
            assert rule["labels"]["rulegroup"] == group["name"]


def test_rules_file_rule_fields():
    doc = yaml.safe_load(build_rules_file())
    groups = {g["name"]: g for g in doc["groups"]}

    pfr = groups["PendingAndFiringAndResolved"]["rules"][0]
    assert pfr["for"] == "6m"
    assert pfr["labels"] == {"foo": "bar", "rulegroup": "PendingAndFiringAndResolved"}
    assert pfr["annotations"]["summary"] == "The value is {{$value}} {{.Value}}"

    zero_for, small_for = groups["ZeroFor_SmallFor"]["rules"]
    assert "for" not in zero_for
    assert small_for["for"] == "15s"


def test_main_writes_file(tmp_path):
    path = tmp_path / "rules.yaml"
    assert main(["--rules-file-path", str(path)]) == 0
    assert yaml.safe_load(path.read_text(encoding="utf-8"))["groups"]


def test_main_unwritable_path(tmp_path):
    assert main(["--rules-file-path", str(tmp_path / "missing" / "rules.yaml")]) == 1
