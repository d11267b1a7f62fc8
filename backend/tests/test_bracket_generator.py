"""
Tests for bracket generation: round robin seeds and the fixed 4-team double elimination bracket.
"""

import pytest

from stage_engine.models.match import MatchType
from stage_engine.models.match_dependency import DependencyOutcome, MatchSide
from stage_engine.models.stage import StageType
from stage_engine.services.bracket_generator import (
    DependencyGraph,
    MatchDependency,
    build_stage_generation,
    generate_double_elimination_matches,
    generate_round_robin_matches,
)
from stage_engine.services.errors import ConfigurationError


def _by_round(result):
    return {seed.round: seed for seed in result.matches}


class TestRoundRobin:
    def test_labels_and_metadata(self):
        result = generate_round_robin_matches(["a", "b", "c", "d"], 2, "First Round", field_count=2)
        first = result.matches[0]
        assert first.round == "First Round - Round 1"
        assert first.metadata == {
            "format": "ROUND_ROBIN",
            "label": "First Round Match 1",
            "round_index": 1,
            "match_index": 1,
            "field_number": 1,
        }
        assert [seed.metadata["field_number"] for seed in result.matches] == [1, 2, 1, 2]

    def test_home_away_from_red_blue(self):
        result = generate_round_robin_matches(["a", "b", "c", "d"], 1, "Semi")
        for seed in result.matches:
            assert seed.home_team_id == seed.slots[0]["team_id"]
            assert seed.away_team_id == seed.slots[1]["team_id"]
            assert seed.slots[0]["color"] == "RED"
            assert seed.slots[1]["color"] == "BLUE"

    def test_no_dependencies(self):
        result = generate_round_robin_matches(["a", "b", "c"], 2, "First Round")
        assert result.dependencies == []
        assert len(result.graph) == 0

    def test_surrogate_match_type(self):
        result = generate_round_robin_matches(["a", "b", "c"], 1, "First Round")
        types = [seed.match_type for seed in result.matches]
        assert types.count(MatchType.surrogate) == 1
        assert any("Surrogate" in w for w in result.warnings)
        assert result.configuration["warnings"] == result.warnings

    def test_configuration_keeps_team_order_and_schedule(self):
        result = generate_round_robin_matches(["d", "c", "b", "a"], 1, "First Round")
        assert result.configuration["team_order"] == ["d", "c", "b", "a"]
        assert result.configuration["schedule"]["rounds"] == 1
        assert len(result.configuration["schedule"]["matches"]) == 2

    def test_invalid_field_count_defaults_to_one(self):
        result = generate_round_robin_matches(["a", "b", "c", "d"], 1, "R", field_count="lots")
        assert {seed.metadata["field_number"] for seed in result.matches} == {1}

    def test_too_few_teams(self):
        with pytest.raises(ConfigurationError):
            generate_round_robin_matches(["a"], 1, "R")


class TestDoubleElimination:
    """Teams [A, B, C, D] in seed order."""

    @pytest.fixture
    def result(self):
        return generate_double_elimination_matches(["A", "B", "C", "D"], field_count=2, id_scope="de")

    def test_six_matches_eight_dependencies(self, result):
        assert len(result.matches) == 6
        assert len(result.dependencies) == 8

    def test_semifinal_seeding(self, result):
        rounds = _by_round(result)
        semi_one = rounds["Winners Semi 1"]
        semi_two = rounds["Winners Semi 2"]
        assert (semi_one.home_team_id, semi_one.away_team_id) == ("A", "D")
        assert (semi_two.home_team_id, semi_two.away_team_id) == ("B", "C")

    def test_placeholders(self, result):
        rounds = _by_round(result)
        assert rounds["Winners Final"].home_placeholder == "Winner of Match 1"
        assert rounds["Winners Final"].away_placeholder == "Winner of Match 2"
        assert rounds["Losers Round 1"].home_placeholder == "Loser of Match 1"
        assert rounds["Losers Round 1"].away_placeholder == "Loser of Match 2"
        assert rounds["Losers Final"].home_placeholder == "Loser of Match 3"
        assert rounds["Losers Final"].away_placeholder == "Winner of Match 4"
        assert rounds["Grand Final"].home_placeholder == "Winner of Match 3"
        assert rounds["Grand Final"].away_placeholder == "Winner of Match 5"
        for name in ("Winners Final", "Losers Round 1", "Losers Final", "Grand Final"):
            assert rounds[name].home_team_id is None
            assert rounds[name].away_team_id is None

    def test_every_placeholder_has_dependency(self, result):
        targets = {(d.target_match_id, d.target_side) for d in result.dependencies}
        for seed in result.matches:
            if seed.home_placeholder:
                assert (seed.id, MatchSide.home) in targets
            if seed.away_placeholder:
                assert (seed.id, MatchSide.away) in targets

    def test_bracket_layout(self, result):
        brackets = {seed.round: seed.metadata["bracket"] for seed in result.matches}
        assert brackets == {
            "Winners Semi 1": "WINNERS",
            "Winners Semi 2": "WINNERS",
            "Winners Final": "WINNERS",
            "Losers Round 1": "LOSERS",
            "Losers Final": "LOSERS",
            "Grand Final": "FINALS",
        }
        assert [seed.metadata["label"] for seed in result.matches] == [f"Match {i}" for i in range(1, 7)]

    def test_sources_mirror_dependencies(self, result):
        rounds = _by_round(result)
        sources = rounds["Grand Final"].metadata["sources"]
        assert [s["outcome"] for s in sources] == ["WINNER", "WINNER"]
        assert [s["target"] for s in sources] == ["home", "away"]
        assert rounds["Winners Semi 1"].metadata["sources"] == []

    def test_semifinal_downstream(self, result):
        rounds = _by_round(result)
        graph = result.graph
        edges = {
            (d.target_match_id, d.target_side, d.source_outcome)
            for d in graph.downstream(rounds["Winners Semi 1"].id)
        }
        assert edges == {
            (rounds["Winners Final"].id, MatchSide.home, DependencyOutcome.winner),
            (rounds["Losers Round 1"].id, MatchSide.home, DependencyOutcome.loser),
        }
        assert graph.downstream(rounds["Grand Final"].id) == []

    @pytest.mark.parametrize("count", [2, 3, 5, 8])
    def test_wrong_team_count(self, count):
        with pytest.raises(ConfigurationError, match="exactly 4 teams"):
            generate_double_elimination_matches([f"t{i}" for i in range(count)])


class TestDependencyGraph:
    def test_indexes_by_source_and_target(self):
        deps = [
            MatchDependency("m3", MatchSide.home, "m1", DependencyOutcome.winner, "Winner of Match 1"),
            MatchDependency("m4", MatchSide.home, "m1", DependencyOutcome.loser, "Loser of Match 1"),
            MatchDependency("m3", MatchSide.away, "m2", DependencyOutcome.winner, "Winner of Match 2"),
        ]
        graph = DependencyGraph(deps)
        assert [d.target_match_id for d in graph.downstream("m1")] == ["m3", "m4"]
        assert [d.source_match_id for d in graph.upstream("m3")] == ["m1", "m2"]
        assert graph.downstream("missing") == []
        assert len(graph) == 3

    def test_to_dict(self):
        dep = MatchDependency("m3", MatchSide.away, "m1", DependencyOutcome.loser, "Loser of Match 1")
        assert dep.to_dict() == {
            "target_match_id": "m3",
            "target_side": "away",
            "source": {"match_id": "m1", "outcome": "LOSER"},
            "placeholder": "Loser of Match 1",
        }


class TestStageDispatch:
    def test_first_round_defaults_to_four_rounds(self):
        result = build_stage_generation(StageType.first_round, ["a", "b", "c", "d"])
        assert len(result.matches) == 8
        assert result.matches[0].round.startswith("First Round - Round")

    def test_semi_final_round_robin_defaults_to_three_rounds(self):
        result = build_stage_generation("SEMI_FINAL_ROUND_ROBIN", ["a", "b", "c", "d"])
        assert len(result.matches) == 6

    def test_rounds_override(self):
        result = build_stage_generation(StageType.first_round, ["a", "b", "c", "d"], rounds=1)
        assert len(result.matches) == 2

    def test_double_elimination(self):
        result = build_stage_generation(StageType.final_double_elimination, ["a", "b", "c", "d"])
        assert len(result.dependencies) == 8

    def test_unknown_stage_type(self):
        with pytest.raises(ConfigurationError, match="Unsupported stage type"):
            build_stage_generation("QUARTER_FINAL", ["a", "b"])
