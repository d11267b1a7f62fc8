"""
Match Scheduler: constraint-based alliance slot assignment.

Turns a team list into an ordered match plan, round by round:
1. Every team appears exactly once officially per round
2. Leftover capacity is filled with surrogate appearances (not counted officially)
3. A minimum rest gap between appearances is honored where possible
4. Color, station and partner/opponent usage are balanced by a scoring heuristic

Pure computation: no database access, no randomness. Identical inputs produce identical output.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from stage_engine.services.errors import ConfigurationError, SchedulingInvariantError

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

RED = "RED"
BLUE = "BLUE"
ALLIANCE_COLORS = (RED, BLUE)

DEFAULT_TEAMS_PER_ALLIANCE = 1
DEFAULT_MIN_MATCH_GAP = 4

# A team may appear at most once officially and once as surrogate in a round
SURROGATE_ELIGIBLE_ROUND_USAGE = 1

# Scoring weights
REMAINING_OFFICIAL_WEIGHT = 5
GAP_WEIGHT = 2
GAP_CAP = 5
COLOR_BALANCE_WEIGHT = 4
STATION_BALANCE_WEIGHT = 2
PARTNER_PENALTY_WEIGHT = 4
OPPONENT_PENALTY_WEIGHT = 3
SURROGATE_BASE_PENALTY = 15
SURROGATE_REPEAT_PENALTY = 4

MATCH_ID_NAMESPACE = uuid.UUID("6f1c2d0e-8a4b-4f57-9a51-3c0e2b7d9e10")

GAP_RELAXED_WARNING = (
    "Match separation gap could not be honored for every assignment. Review closely scheduled teams."
)
DUPLICATE_PAIRINGS_WARNING = (
    "Some alliances or opponent pairings repeat more than once. "
    "Consider manual adjustments if diversity is critical."
)


# -----------------------------------------------------------------------------
# Data Models
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ScheduledSlot:
    """One team in one alliance station of one match."""

    team_id: str
    station: str
    color: str
    is_surrogate: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "station": self.station,
            "color": self.color,
            "is_surrogate": self.is_surrogate,
        }


@dataclass
class ScheduledMatchPlan:
    id: str
    round_number: int
    match_number: int
    slots: List[ScheduledSlot]

    @property
    def red_alliance(self) -> List[ScheduledSlot]:
        return [slot for slot in self.slots if slot.color == RED]

    @property
    def blue_alliance(self) -> List[ScheduledSlot]:
        return [slot for slot in self.slots if slot.color == BLUE]

    @property
    def has_surrogate(self) -> bool:
        return any(slot.is_surrogate for slot in self.slots)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "round_number": self.round_number,
            "match_number": self.match_number,
            "slots": [slot.to_dict() for slot in self.slots],
        }


@dataclass
class ScheduleMetadata:
    """Everything needed to rebuild the schedule without re-running the scheduler."""

    rounds: int
    teams_per_alliance: int
    min_match_gap: int
    stations: List[str]
    matches: List[ScheduledMatchPlan]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rounds": self.rounds,
            "teams_per_alliance": self.teams_per_alliance,
            "min_match_gap": self.min_match_gap,
            "stations": list(self.stations),
            "matches": [match.to_dict() for match in self.matches],
        }


@dataclass
class ScheduleResult:
    matches: List[ScheduledMatchPlan]
    warnings: List[str]
    metadata: ScheduleMetadata


@dataclass
class SchedulerConfig:
    """Normalized scheduler input."""

    team_ids: List[str]
    rounds: int
    teams_per_alliance: int = DEFAULT_TEAMS_PER_ALLIANCE
    min_match_gap: int = DEFAULT_MIN_MATCH_GAP
    allow_surrogates: bool = True
    id_scope: str = "schedule"


@dataclass
class TeamStats:
    official_appearances: int = 0
    surrogate_appearances: int = 0
    total_appearances: int = 0
    red_appearances: int = 0
    blue_appearances: int = 0
    last_match_number: int = 0  # 0 = never played
    station_counts: Dict[str, int] = field(default_factory=dict)


@dataclass
class SchedulerState:
    """
    Mutable counters for one scheduling run.

    Created per call and threaded through round/match building, so concurrent runs never share state.
    """

    stations: List[str]
    matches_per_round: int
    total_slots_per_round: int
    surrogate_slots_per_round: int
    team_stats: Dict[str, TeamStats]
    partner_history: Dict[Tuple[str, str], int] = field(default_factory=dict)
    opponent_history: Dict[Tuple[str, str], int] = field(default_factory=dict)
    current_match_number: int = 0
    gap_relaxed: bool = False
    duplicate_pairings: bool = False


@dataclass
class RoundState:
    round_number: int
    primary_queue: Set[str]
    round_usage: Dict[str, int]
    surrogate_budget: int
    slots_scheduled: int = 0


@dataclass
class CandidateSelection:
    team_id: str
    is_surrogate: bool
    ignore_gap: bool


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def station_color(station: str) -> str:
    return BLUE if station.startswith(BLUE) else RED


def build_station_order(teams_per_alliance: int) -> List[str]:
    """RED1, BLUE1, RED2, BLUE2, ... up to teams_per_alliance pairs."""
    stations: List[str] = []
    for index in range(1, teams_per_alliance + 1):
        stations.append(f"{RED}{index}")
        stations.append(f"{BLUE}{index}")
    return stations


def build_match_id(id_scope: str, match_number: int) -> str:
    return str(uuid.uuid5(MATCH_ID_NAMESPACE, f"{id_scope}:{match_number}"))


def _pair_key(team_a: str, team_b: str) -> Tuple[str, str]:
    return (team_a, team_b) if team_a <= team_b else (team_b, team_a)


def normalize_config(
    team_ids: Iterable[str],
    rounds: Optional[int],
    teams_per_alliance: Optional[int] = None,
    min_match_gap: Optional[int] = None,
    allow_surrogates: Optional[bool] = None,
    id_scope: str = "schedule",
) -> SchedulerConfig:
    """
    Deduplicate teams (first occurrence wins) and clamp numeric parameters.

    Raises:
        ConfigurationError: fewer than 2 teams, or too few teams to fill a single match
    """
    unique_team_ids: List[str] = []
    seen: Set[str] = set()
    for team_id in team_ids:
        if team_id in seen:
            continue
        seen.add(team_id)
        unique_team_ids.append(team_id)

    if len(unique_team_ids) < 2:
        raise ConfigurationError("At least two teams are required to build a schedule.")

    normalized_rounds = max(1, int(rounds)) if rounds else 1
    normalized_alliance = max(1, int(teams_per_alliance)) if teams_per_alliance else DEFAULT_TEAMS_PER_ALLIANCE
    normalized_gap = max(0, int(min_match_gap)) if min_match_gap is not None else DEFAULT_MIN_MATCH_GAP
    normalized_surrogates = True if allow_surrogates is None else bool(allow_surrogates)

    if len(unique_team_ids) < normalized_alliance * 2:
        raise ConfigurationError(
            "Not enough teams to populate a full match. Reduce teams per alliance or add more teams."
        )

    return SchedulerConfig(
        team_ids=unique_team_ids,
        rounds=normalized_rounds,
        teams_per_alliance=normalized_alliance,
        min_match_gap=normalized_gap,
        allow_surrogates=normalized_surrogates,
        id_scope=id_scope,
    )


def _init_state(config: SchedulerConfig) -> SchedulerState:
    stations = build_station_order(config.teams_per_alliance)
    match_size = len(stations)
    matches_per_round = max(1, math.ceil(len(config.team_ids) / match_size))
    total_slots = matches_per_round * match_size
    return SchedulerState(
        stations=stations,
        matches_per_round=matches_per_round,
        total_slots_per_round=total_slots,
        surrogate_slots_per_round=max(0, total_slots - len(config.team_ids)),
        team_stats={team_id: TeamStats() for team_id in config.team_ids},
    )


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------


def build_match_schedule(
    team_ids: Iterable[str],
    rounds: int,
    teams_per_alliance: Optional[int] = None,
    min_match_gap: Optional[int] = None,
    allow_surrogates: Optional[bool] = None,
    id_scope: str = "schedule",
) -> ScheduleResult:
    """
    Build a full multi-round schedule.

    Args:
        team_ids: Team identifiers; order is significant only for determinism
        rounds: Official appearances per team
        teams_per_alliance: Stations per color (default 1)
        min_match_gap: Matches a team must sit out between appearances (default 4)
        allow_surrogates: Fill leftover capacity with surrogate appearances (default True)
        id_scope: Namespace for deterministic match ids

    Returns:
        ScheduleResult with ordered matches, relaxation warnings and reconstruction metadata

    Raises:
        ConfigurationError: input cannot produce a valid schedule
        SchedulingInvariantError: no candidate found at any fallback step (defect)
    """
    config = normalize_config(
        team_ids,
        rounds,
        teams_per_alliance=teams_per_alliance,
        min_match_gap=min_match_gap,
        allow_surrogates=allow_surrogates,
        id_scope=id_scope,
    )
    state = _init_state(config)

    if state.surrogate_slots_per_round and not config.allow_surrogates:
        raise ConfigurationError(
            f"{len(config.team_ids)} teams cannot fill {state.matches_per_round} matches of "
            f"{len(state.stations)} stations without surrogates. Enable surrogates or adjust the team count."
        )

    logger.debug(
        "Scheduling %d teams: stations=%s matches_per_round=%d surrogate_slots_per_round=%d",
        len(config.team_ids),
        state.stations,
        state.matches_per_round,
        state.surrogate_slots_per_round,
    )

    matches: List[ScheduledMatchPlan] = []
    for round_number in range(1, config.rounds + 1):
        matches.extend(_schedule_round(config, state, round_number))

    warnings = _collect_warnings(state)
    if warnings:
        logger.info("Schedule built with %d warning(s) for %d teams", len(warnings), len(config.team_ids))

    metadata = ScheduleMetadata(
        rounds=config.rounds,
        teams_per_alliance=config.teams_per_alliance,
        min_match_gap=config.min_match_gap,
        stations=list(state.stations),
        matches=[
            ScheduledMatchPlan(
                id=match.id,
                round_number=match.round_number,
                match_number=match.match_number,
                slots=list(match.slots),
            )
            for match in matches
        ],
    )
    return ScheduleResult(matches=matches, warnings=warnings, metadata=metadata)


# -----------------------------------------------------------------------------
# Round / match construction
# -----------------------------------------------------------------------------


def _schedule_round(config: SchedulerConfig, state: SchedulerState, round_number: int) -> List[ScheduledMatchPlan]:
    round_state = RoundState(
        round_number=round_number,
        primary_queue=set(config.team_ids),
        round_usage={},
        surrogate_budget=state.surrogate_slots_per_round,
    )
    matches: List[ScheduledMatchPlan] = []
    for _ in range(state.matches_per_round):
        state.current_match_number += 1
        matches.append(_build_match(config, state, round_state))
    return matches


def _build_match(config: SchedulerConfig, state: SchedulerState, round_state: RoundState) -> ScheduledMatchPlan:
    assignments: List[ScheduledSlot] = []
    assigned_teams: Set[str] = set()

    for station in state.stations:
        selection = _select_team_for_slot(config, state, round_state, station, assignments, assigned_teams)
        assignments.append(
            ScheduledSlot(
                team_id=selection.team_id,
                station=station,
                color=station_color(station),
                is_surrogate=selection.is_surrogate,
            )
        )
        assigned_teams.add(selection.team_id)
        round_state.slots_scheduled += 1
        round_state.round_usage[selection.team_id] = round_state.round_usage.get(selection.team_id, 0) + 1
        if selection.is_surrogate:
            round_state.surrogate_budget -= 1
        else:
            round_state.primary_queue.discard(selection.team_id)

    match = ScheduledMatchPlan(
        id=build_match_id(config.id_scope, state.current_match_number),
        round_number=round_state.round_number,
        match_number=state.current_match_number,
        slots=assignments,
    )
    _update_stats(state, match)
    _update_pair_history(state, match)
    return match


def _select_team_for_slot(
    config: SchedulerConfig,
    state: SchedulerState,
    round_state: RoundState,
    station: str,
    assignments: List[ScheduledSlot],
    assigned_teams: Set[str],
) -> CandidateSelection:
    """
    Fallback ladder, first success wins:
    1. official respecting gap
    2. surrogate respecting gap
    3. official, gap relaxed
    4. surrogate, gap relaxed
    """
    surrogates_allowed = (
        not _should_force_official(state, round_state)
        and round_state.surrogate_budget > 0
        and config.allow_surrogates
    )

    def choose(pool: Iterable[str], is_surrogate: bool, ignore_gap: bool) -> Optional[CandidateSelection]:
        return _choose_candidate(
            config,
            state,
            pool=pool,
            station=station,
            assignments=assignments,
            assigned_teams=assigned_teams,
            is_surrogate=is_surrogate,
            ignore_gap=ignore_gap,
        )

    official = choose(round_state.primary_queue, is_surrogate=False, ignore_gap=False)
    if official:
        return official

    if surrogates_allowed:
        surrogate = choose(_surrogate_pool(config, round_state), is_surrogate=True, ignore_gap=False)
        if surrogate:
            return surrogate

    relaxed_official = choose(round_state.primary_queue, is_surrogate=False, ignore_gap=True)
    if relaxed_official:
        state.gap_relaxed = True
        return relaxed_official

    if surrogates_allowed:
        relaxed_surrogate = choose(_surrogate_pool(config, round_state), is_surrogate=True, ignore_gap=True)
        if relaxed_surrogate:
            state.gap_relaxed = True
            return relaxed_surrogate

    raise SchedulingInvariantError(
        f"Unable to satisfy scheduling constraints with the provided teams "
        f"(round {round_state.round_number}, match {state.current_match_number}, station {station})."
    )


def _should_force_official(state: SchedulerState, round_state: RoundState) -> bool:
    """True when skipping an official now would leave a team without its appearance this round."""
    if not round_state.primary_queue:
        return False
    slots_left = state.total_slots_per_round - (round_state.slots_scheduled + 1)
    return len(round_state.primary_queue) > slots_left


def _surrogate_pool(config: SchedulerConfig, round_state: RoundState) -> List[str]:
    return [
        team_id
        for team_id in config.team_ids
        if round_state.round_usage.get(team_id, 0) == SURROGATE_ELIGIBLE_ROUND_USAGE
    ]


def _choose_candidate(
    config: SchedulerConfig,
    state: SchedulerState,
    pool: Iterable[str],
    station: str,
    assignments: List[ScheduledSlot],
    assigned_teams: Set[str],
    is_surrogate: bool,
    ignore_gap: bool,
) -> Optional[CandidateSelection]:
    candidates: List[Tuple[float, str]] = []
    for team_id in pool:
        if team_id in assigned_teams:
            continue
        if not (ignore_gap or _respects_gap(config, state, team_id)):
            continue
        score = _score_candidate(config, state, team_id, station, assignments, is_surrogate)
        candidates.append((score, team_id))

    if not candidates:
        return None

    # Highest score first; team id ascending breaks ties
    candidates.sort(key=lambda c: (-c[0], c[1]))
    return CandidateSelection(team_id=candidates[0][1], is_surrogate=is_surrogate, ignore_gap=ignore_gap)


def _respects_gap(config: SchedulerConfig, state: SchedulerState, team_id: str) -> bool:
    if config.min_match_gap <= 0:
        return True
    stats = state.team_stats.get(team_id)
    if stats is None or not stats.last_match_number:
        return True
    gap = state.current_match_number - stats.last_match_number - 1
    return gap >= config.min_match_gap


# -----------------------------------------------------------------------------
# Scoring
# -----------------------------------------------------------------------------


def _score_candidate(
    config: SchedulerConfig,
    state: SchedulerState,
    team_id: str,
    station: str,
    assignments: List[ScheduledSlot],
    is_surrogate: bool,
) -> float:
    stats = state.team_stats.get(team_id)
    if stats is None:
        return float("-inf")

    color = station_color(station)
    score = 0
    score += (config.rounds - stats.official_appearances) * REMAINING_OFFICIAL_WEIGHT
    score += min(_gap_value(config, state, stats), GAP_CAP) * GAP_WEIGHT
    score += _color_balance_score(color, stats)
    score += _station_balance_score(state, station, stats)
    score -= _pairing_penalty(state, team_id, color, assignments)
    if is_surrogate:
        score -= SURROGATE_BASE_PENALTY + stats.surrogate_appearances * SURROGATE_REPEAT_PENALTY
    return score


def _gap_value(config: SchedulerConfig, state: SchedulerState, stats: TeamStats) -> int:
    if not stats.last_match_number:
        return config.min_match_gap + 1
    return state.current_match_number - stats.last_match_number - 1


def _color_balance_score(color: str, stats: TeamStats) -> int:
    if color == RED:
        diff = stats.blue_appearances - stats.red_appearances
    else:
        diff = stats.red_appearances - stats.blue_appearances
    return diff * COLOR_BALANCE_WEIGHT


def _station_balance_score(state: SchedulerState, station: str, stats: TeamStats) -> int:
    if not state.stations:
        return 0
    current = stats.station_counts.get(station, 0)
    min_usage = min(stats.station_counts.get(key, 0) for key in state.stations)
    return (min_usage - current) * STATION_BALANCE_WEIGHT


def _pairing_penalty(state: SchedulerState, team_id: str, color: str, assignments: List[ScheduledSlot]) -> int:
    penalty = 0
    for slot in assignments:
        key = _pair_key(team_id, slot.team_id)
        if slot.color == color:
            penalty += state.partner_history.get(key, 0) * PARTNER_PENALTY_WEIGHT
        else:
            penalty += state.opponent_history.get(key, 0) * OPPONENT_PENALTY_WEIGHT
    return penalty


# -----------------------------------------------------------------------------
# Bookkeeping
# -----------------------------------------------------------------------------


def _update_stats(state: SchedulerState, match: ScheduledMatchPlan) -> None:
    for slot in match.slots:
        stats = state.team_stats.get(slot.team_id)
        if stats is None:
            continue
        stats.total_appearances += 1
        if slot.is_surrogate:
            stats.surrogate_appearances += 1
        else:
            stats.official_appearances += 1
        if slot.color == RED:
            stats.red_appearances += 1
        else:
            stats.blue_appearances += 1
        stats.station_counts[slot.station] = stats.station_counts.get(slot.station, 0) + 1
        stats.last_match_number = match.match_number


def _update_pair_history(state: SchedulerState, match: ScheduledMatchPlan) -> None:
    red = match.red_alliance
    blue = match.blue_alliance
    for alliance in (red, blue):
        for i, first in enumerate(alliance):
            for second in alliance[i + 1 :]:
                _increment_pair(state, state.partner_history, first.team_id, second.team_id)
    for red_slot in red:
        for blue_slot in blue:
            _increment_pair(state, state.opponent_history, red_slot.team_id, blue_slot.team_id)


def _increment_pair(state: SchedulerState, store: Dict[Tuple[str, str], int], team_a: str, team_b: str) -> None:
    key = _pair_key(team_a, team_b)
    store[key] = store.get(key, 0) + 1
    if store[key] > 1:
        state.duplicate_pairings = True


def _collect_warnings(state: SchedulerState) -> List[str]:
    warnings: List[str] = []
    if state.gap_relaxed:
        warnings.append(GAP_RELAXED_WARNING)
    if state.duplicate_pairings:
        warnings.append(DUPLICATE_PAIRINGS_WARNING)

    red_blue_skew: List[str] = []
    station_skew: List[str] = []
    surrogate_usage: List[str] = []
    for team_id, stats in state.team_stats.items():
        if abs(stats.red_appearances - stats.blue_appearances) > 1:
            red_blue_skew.append(team_id)
        usages = [stats.station_counts.get(station, 0) for station in state.stations]
        if max(usages) - min(usages) > 1:
            station_skew.append(team_id)
        if stats.surrogate_appearances > 0:
            surrogate_usage.append(f"{team_id} ({stats.surrogate_appearances} surrogate)")

    if red_blue_skew:
        warnings.append(f"Red/blue assignments remain unbalanced for: {', '.join(red_blue_skew)}.")
    if station_skew:
        warnings.append(f"Station rotations need review for: {', '.join(station_skew)}.")
    if surrogate_usage:
        warnings.append(f"Surrogate appearances were assigned to: {', '.join(surrogate_usage)}.")
    return warnings


# -----------------------------------------------------------------------------
# Metadata parsing
# -----------------------------------------------------------------------------


def _parse_slot(raw: Any) -> Optional[ScheduledSlot]:
    if not isinstance(raw, dict):
        return None
    team_id = raw.get("team_id")
    station = raw.get("station")
    color = raw.get("color")
    is_surrogate = raw.get("is_surrogate")
    if not isinstance(team_id, str) or not isinstance(station, str):
        return None
    if color not in ALLIANCE_COLORS or not isinstance(is_surrogate, bool):
        return None
    return ScheduledSlot(team_id=team_id, station=station, color=color, is_surrogate=is_surrogate)


def _parse_match(raw: Any) -> Optional[ScheduledMatchPlan]:
    if not isinstance(raw, dict):
        return None
    match_id = raw.get("id")
    round_number = raw.get("round_number")
    match_number = raw.get("match_number")
    raw_slots = raw.get("slots")
    if not isinstance(match_id, str) or not isinstance(raw_slots, list):
        return None
    if not isinstance(round_number, int) or not isinstance(match_number, int):
        return None
    slots: List[ScheduledSlot] = []
    for raw_slot in raw_slots:
        slot = _parse_slot(raw_slot)
        if slot is None:
            return None
        slots.append(slot)
    return ScheduledMatchPlan(id=match_id, round_number=round_number, match_number=match_number, slots=slots)


def parse_schedule_metadata(value: Any) -> Optional[ScheduleMetadata]:
    """
    Rebuild ScheduleMetadata from its dict form.

    All-or-nothing: any malformed field or match yields None.
    """
    if not isinstance(value, dict):
        return None
    rounds = value.get("rounds")
    teams_per_alliance = value.get("teams_per_alliance")
    min_match_gap = value.get("min_match_gap")
    stations = value.get("stations")
    raw_matches = value.get("matches")
    if not all(isinstance(v, int) for v in (rounds, teams_per_alliance, min_match_gap)):
        return None
    if not isinstance(stations, list) or not all(isinstance(s, str) for s in stations):
        return None
    if not isinstance(raw_matches, list):
        return None

    matches: List[ScheduledMatchPlan] = []
    for raw_match in raw_matches:
        match = _parse_match(raw_match)
        if match is None:
            return None
        matches.append(match)

    return ScheduleMetadata(
        rounds=rounds,
        teams_per_alliance=teams_per_alliance,
        min_match_gap=min_match_gap,
        stations=list(stations),
        matches=matches,
    )
