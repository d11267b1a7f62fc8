"""
Bracket Generator: match seeds for a stage.

Two formats:
1. ROUND_ROBIN: pairing delegated to the match scheduler; field number is a modulo rotation
2. DOUBLE_ELIMINATION: fixed 4-team, 6-match bracket with WINNER/LOSER dependencies

The generator is pure. Persisting seeds and dependencies is the caller's job
(see stage_service.regenerate_stage_matches).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from stage_engine.models.match import MatchType
from stage_engine.models.match_dependency import DependencyOutcome, MatchSide
from stage_engine.models.stage import StageFormat, StageType
from stage_engine.services.errors import ConfigurationError
from stage_engine.services.match_scheduler import build_match_id, build_match_schedule
from stage_engine.utils.fields import compute_field_number, normalize_field_count
from stage_engine.utils.stage_configuration import create_default_stage_configuration

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

DOUBLE_ELIMINATION_TEAM_COUNT = 4
ROUND_ROBIN_DEFAULT_MIN_MATCH_GAP = 1

BRACKET_WINNERS = "WINNERS"
BRACKET_LOSERS = "LOSERS"
BRACKET_FINALS = "FINALS"


@dataclass(frozen=True)
class StageTypeSettings:
    format: StageFormat
    round_label: str
    default_rounds: int


# Closed mapping: adding a stage type requires an explicit entry here
STAGE_TYPE_SETTINGS: Dict[StageType, StageTypeSettings] = {
    StageType.first_round: StageTypeSettings(StageFormat.round_robin, "First Round", 4),
    StageType.semi_final_round_robin: StageTypeSettings(StageFormat.round_robin, "Semi-final Round Robin", 3),
    StageType.final_double_elimination: StageTypeSettings(StageFormat.double_elimination, "Final", 1),
}


# -----------------------------------------------------------------------------
# Data Models
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchDependency:
    """Target match side is determined by `source_outcome` of `source_match_id`."""

    target_match_id: str
    target_side: MatchSide
    source_match_id: str
    source_outcome: DependencyOutcome
    placeholder: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_match_id": self.target_match_id,
            "target_side": MatchSide(self.target_side).value,
            "source": {
                "match_id": self.source_match_id,
                "outcome": DependencyOutcome(self.source_outcome).value,
            },
            "placeholder": self.placeholder,
        }


@dataclass
class StageMatchSeed:
    id: str
    round: str
    round_number: int
    match_number: int
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    home_placeholder: Optional[str] = None
    away_placeholder: Optional[str] = None
    match_type: MatchType = MatchType.normal
    metadata: Dict[str, Any] = field(default_factory=dict)
    slots: Optional[List[Dict[str, Any]]] = None


class DependencyGraph:
    """
    Adjacency view of a bracket's dependencies, keyed by source match.

    Built once per bracket; propagation looks up downstream edges in O(1)
    instead of filtering the full dependency list on every completion.
    """

    def __init__(self, dependencies: Iterable[MatchDependency]):
        self._dependencies: List[MatchDependency] = list(dependencies)
        self._by_source: Dict[str, List[MatchDependency]] = {}
        self._by_target: Dict[str, List[MatchDependency]] = {}
        for dependency in self._dependencies:
            self._by_source.setdefault(dependency.source_match_id, []).append(dependency)
            self._by_target.setdefault(dependency.target_match_id, []).append(dependency)

    @property
    def dependencies(self) -> List[MatchDependency]:
        return list(self._dependencies)

    def downstream(self, source_match_id: str) -> List[MatchDependency]:
        return list(self._by_source.get(source_match_id, []))

    def upstream(self, target_match_id: str) -> List[MatchDependency]:
        return list(self._by_target.get(target_match_id, []))

    def __len__(self) -> int:
        return len(self._dependencies)


@dataclass
class StageGenerationResult:
    matches: List[StageMatchSeed]
    dependencies: List[MatchDependency]
    configuration: Dict[str, Any]
    warnings: List[str] = field(default_factory=list)

    @property
    def graph(self) -> DependencyGraph:
        return DependencyGraph(self.dependencies)


# -----------------------------------------------------------------------------
# Round robin
# -----------------------------------------------------------------------------


def generate_round_robin_matches(
    team_ids: List[str],
    matches_per_team: int,
    round_label: str,
    field_count: Any = 1,
    teams_per_alliance: Optional[int] = None,
    min_match_gap: Optional[int] = None,
    allow_surrogates: Optional[bool] = None,
    id_scope: str = "round-robin",
) -> StageGenerationResult:
    """
    Round robin seeds from the match scheduler.

    Home side = first RED station, away side = first BLUE station; the full slot list
    is kept on each seed for multi-team alliances.
    """
    if len(team_ids) < 2:
        raise ConfigurationError("At least two teams are required to generate matches.")

    schedule = build_match_schedule(
        team_ids,
        rounds=max(1, matches_per_team),
        teams_per_alliance=teams_per_alliance,
        min_match_gap=ROUND_ROBIN_DEFAULT_MIN_MATCH_GAP if min_match_gap is None else min_match_gap,
        allow_surrogates=allow_surrogates,
        id_scope=id_scope,
    )
    normalized_fields = normalize_field_count(field_count)

    seeds: List[StageMatchSeed] = []
    for match in schedule.matches:
        red = match.red_alliance
        blue = match.blue_alliance
        seeds.append(
            StageMatchSeed(
                id=match.id,
                round=f"{round_label} - Round {match.round_number}",
                round_number=match.round_number,
                match_number=match.match_number,
                home_team_id=red[0].team_id if red else None,
                away_team_id=blue[0].team_id if blue else None,
                match_type=MatchType.surrogate if match.has_surrogate else MatchType.normal,
                metadata={
                    "format": StageFormat.round_robin.value,
                    "label": f"{round_label} Match {match.match_number}",
                    "round_index": match.round_number,
                    "match_index": match.match_number,
                    "field_number": compute_field_number(match.match_number, normalized_fields),
                },
                slots=[slot.to_dict() for slot in match.slots],
            )
        )

    return StageGenerationResult(
        matches=seeds,
        dependencies=[],
        configuration=create_default_stage_configuration(
            team_order=list(team_ids),
            schedule=schedule.metadata.to_dict(),
            warnings=schedule.warnings,
        ),
        warnings=list(schedule.warnings),
    )


# -----------------------------------------------------------------------------
# Double elimination
# -----------------------------------------------------------------------------


def generate_double_elimination_matches(
    team_ids: List[str],
    field_count: Any = 1,
    id_scope: str = "double-elimination",
) -> StageGenerationResult:
    """
    Fixed 4-team double elimination bracket (caller order = seed order).

    Matches:
        1. Winners Semi 1:  seed 1 vs seed 4
        2. Winners Semi 2:  seed 2 vs seed 3
        3. Winners Final:   W(1) vs W(2)
        4. Losers Round 1:  L(1) vs L(2)
        5. Losers Final:    L(3) vs W(4)
        6. Grand Final:     W(3) vs W(5)

    Raises:
        ConfigurationError: team count is not exactly 4
    """
    if len(team_ids) != DOUBLE_ELIMINATION_TEAM_COUNT:
        raise ConfigurationError(
            f"Double elimination currently supports exactly {DOUBLE_ELIMINATION_TEAM_COUNT} teams in the stage "
            f"(received {len(team_ids)})."
        )

    normalized_fields = normalize_field_count(field_count)
    match_ids = [build_match_id(id_scope, number) for number in range(1, 7)]
    labels = {match_id: f"Match {index}" for index, match_id in enumerate(match_ids, start=1)}
    semi_one, semi_two, winners_final, losers_one, losers_final, grand_final = match_ids

    def placeholder(outcome: DependencyOutcome, source_id: str) -> str:
        prefix = "Winner" if outcome == DependencyOutcome.winner else "Loser"
        return f"{prefix} of {labels[source_id]}"

    def dependency(target: str, side: MatchSide, source: str, outcome: DependencyOutcome) -> MatchDependency:
        return MatchDependency(
            target_match_id=target,
            target_side=side,
            source_match_id=source,
            source_outcome=outcome,
            placeholder=placeholder(outcome, source),
        )

    win = DependencyOutcome.winner
    lose = DependencyOutcome.loser
    home = MatchSide.home
    away = MatchSide.away
    dependencies = [
        dependency(winners_final, home, semi_one, win),
        dependency(winners_final, away, semi_two, win),
        dependency(losers_one, home, semi_one, lose),
        dependency(losers_one, away, semi_two, lose),
        dependency(losers_final, home, winners_final, lose),
        dependency(losers_final, away, losers_one, win),
        dependency(grand_final, home, winners_final, win),
        dependency(grand_final, away, losers_final, win),
    ]
    graph = DependencyGraph(dependencies)

    # (match id, round label, bracket, round index, match index, seeded home, seeded away)
    layout = [
        (semi_one, "Winners Semi 1", BRACKET_WINNERS, 1, 1, team_ids[0], team_ids[3]),
        (semi_two, "Winners Semi 2", BRACKET_WINNERS, 1, 2, team_ids[1], team_ids[2]),
        (winners_final, "Winners Final", BRACKET_WINNERS, 2, 1, None, None),
        (losers_one, "Losers Round 1", BRACKET_LOSERS, 1, 1, None, None),
        (losers_final, "Losers Final", BRACKET_LOSERS, 2, 1, None, None),
        (grand_final, "Grand Final", BRACKET_FINALS, 1, 1, None, None),
    ]

    seeds: List[StageMatchSeed] = []
    for order, (match_id, round_name, bracket, round_index, match_index, home_id, away_id) in enumerate(
        layout, start=1
    ):
        incoming = graph.upstream(match_id)
        placeholders = {dep.target_side: dep.placeholder for dep in incoming}
        seeds.append(
            StageMatchSeed(
                id=match_id,
                round=round_name,
                round_number=round_index,
                match_number=order,
                home_team_id=home_id,
                away_team_id=away_id,
                home_placeholder=placeholders.get(MatchSide.home),
                away_placeholder=placeholders.get(MatchSide.away),
                metadata={
                    "format": StageFormat.double_elimination.value,
                    "label": labels[match_id],
                    "bracket": bracket,
                    "round_index": round_index,
                    "match_index": match_index,
                    "field_number": compute_field_number(order, normalized_fields),
                    "sources": [
                        {
                            "match_id": dep.source_match_id,
                            "outcome": dep.source_outcome.value,
                            "target": dep.target_side.value,
                            "label": dep.placeholder,
                        }
                        for dep in incoming
                    ],
                },
            )
        )

    return StageGenerationResult(
        matches=seeds,
        dependencies=dependencies,
        configuration=create_default_stage_configuration(team_order=list(team_ids)),
    )


# -----------------------------------------------------------------------------
# Dispatch
# -----------------------------------------------------------------------------


def resolve_stage_settings(stage_type: Any) -> StageTypeSettings:
    try:
        return STAGE_TYPE_SETTINGS[StageType(stage_type)]
    except (KeyError, ValueError):
        raise ConfigurationError(f"Unsupported stage type: {stage_type}")


def build_stage_generation(
    stage_type: Any,
    team_ids: List[str],
    field_count: Any = 1,
    rounds: Optional[int] = None,
    teams_per_alliance: Optional[int] = None,
    min_match_gap: Optional[int] = None,
    allow_surrogates: Optional[bool] = None,
    id_scope: str = "stage",
) -> StageGenerationResult:
    """
    Generate seeds for a stage type. Format dispatch is exhaustive over StageFormat;
    an unhandled format raises instead of silently producing no matches.
    """
    settings = resolve_stage_settings(stage_type)

    if settings.format == StageFormat.round_robin:
        return generate_round_robin_matches(
            team_ids,
            matches_per_team=rounds or settings.default_rounds,
            round_label=settings.round_label,
            field_count=field_count,
            teams_per_alliance=teams_per_alliance,
            min_match_gap=min_match_gap,
            allow_surrogates=allow_surrogates,
            id_scope=id_scope,
        )
    if settings.format == StageFormat.double_elimination:
        return generate_double_elimination_matches(team_ids, field_count=field_count, id_scope=id_scope)

    raise ConfigurationError(f"Unhandled stage format: {settings.format}")
