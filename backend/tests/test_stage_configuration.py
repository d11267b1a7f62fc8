"""Stage configuration parser: tolerant of legacy or hand-edited JSON."""
from stage_engine.services.match_scheduler import build_match_schedule
from stage_engine.utils.stage_configuration import (
    DEFAULT_LEADERBOARD_ORDER,
    create_default_stage_configuration,
    parse_stage_configuration,
)


def test_defaults():
    assert create_default_stage_configuration() == {
        "team_order": [],
        "schedule": None,
        "warnings": [],
        "leaderboard_order": DEFAULT_LEADERBOARD_ORDER,
    }


def test_none_and_non_dict_return_defaults():
    assert parse_stage_configuration(None) == create_default_stage_configuration()
    assert parse_stage_configuration("{bad json") == create_default_stage_configuration()


def test_drops_non_string_entries():
    parsed = parse_stage_configuration({"team_order": ["a", 2, None, "b"], "warnings": "nope"})
    assert parsed["team_order"] == ["a", "b"]
    assert parsed["warnings"] == []


def test_empty_leaderboard_order_uses_default():
    assert parse_stage_configuration({"leaderboard_order": []})["leaderboard_order"] == DEFAULT_LEADERBOARD_ORDER
    assert parse_stage_configuration({"leaderboard_order": ["wins", "rank"]})["leaderboard_order"] == ["wins", "rank"]


def test_valid_schedule_kept_malformed_dropped():
    schedule = build_match_schedule(["a", "b", "c"], rounds=1).metadata.to_dict()
    assert parse_stage_configuration({"schedule": schedule})["schedule"] == schedule
    assert parse_stage_configuration({"schedule": {"rounds": 1}})["schedule"] is None


def test_unknown_keys_dropped():
    parsed = parse_stage_configuration({"team_order": ["a"], "legacy_flag": True})
    assert "legacy_flag" not in parsed
