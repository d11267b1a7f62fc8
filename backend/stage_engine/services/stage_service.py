"""
Stage orchestration: team assignment, match regeneration, result updates,
completion and deletion.

Every function here runs inside the caller's transaction and never commits.
Routes commit once, then announce (cache sync + stage events) so readers never
observe a completed match without its propagation and ranking recompute.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlmodel import Session, select

from stage_engine.models.match import Match, MatchStatus, MatchType
from stage_engine.models.match_dependency import StageMatchDependency
from stage_engine.models.stage import Stage, StageFormat, StageStatus, StageType
from stage_engine.models.stage_ranking import StageRanking
from stage_engine.models.stage_team import StageTeam
from stage_engine.models.team import Team
from stage_engine.models.tournament import Tournament
from stage_engine.services.advancement_service import (
    apply_advancement_for_completed_match,
    determine_match_outcome,
    ensure_scores_for_completion,
    load_dependency_graph,
)
from stage_engine.services.bracket_generator import (
    StageGenerationResult,
    build_stage_generation,
    resolve_stage_settings,
)
from stage_engine.services.errors import ConfigurationError
from stage_engine.services.rankings import recalculate_stage_rankings
from stage_engine.utils.stage_configuration import (
    create_default_stage_configuration,
    parse_stage_configuration,
)

logger = logging.getLogger(__name__)

MATCH_UPDATE_FIELDS = ("status", "home_score", "away_score")


@dataclass
class StageTeamInput:
    team_id: str
    seed: Optional[int] = None


@dataclass
class StageMutationResult:
    """What changed in one transactional stage operation; routes announce it after commit."""

    stage_id: int
    rankings: List[StageRanking] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    generation: Optional[StageGenerationResult] = None
    teams_advanced: int = 0


# -----------------------------------------------------------------------------
# Team assignment
# -----------------------------------------------------------------------------


def _dedupe_team_inputs(teams: Sequence[StageTeamInput]) -> List[StageTeamInput]:
    seen = set()
    unique: List[StageTeamInput] = []
    for item in teams:
        if item.team_id in seen:
            continue
        seen.add(item.team_id)
        unique.append(item)
    return unique


def assign_stage_teams(session: Session, stage: Stage, teams: Sequence[StageTeamInput]) -> List[str]:
    """
    Replace the stage's team list. Caller order becomes the stored team order.

    Raises:
        ConfigurationError: any team id does not exist
    """
    unique = _dedupe_team_inputs(teams)
    requested_ids = [item.team_id for item in unique]
    if requested_ids:
        found = set(session.exec(select(Team.id).where(Team.id.in_(requested_ids))).all())
        missing = [team_id for team_id in requested_ids if team_id not in found]
        if missing:
            raise ConfigurationError(f"Unknown team ids: {', '.join(missing)}")

    for existing in session.exec(select(StageTeam).where(StageTeam.stage_id == stage.id)).all():
        session.delete(existing)
    session.flush()

    for item in unique:
        session.add(StageTeam(stage_id=stage.id, team_id=item.team_id, seed=item.seed))

    configuration = parse_stage_configuration(stage.configuration)
    configuration["team_order"] = requested_ids
    stage.configuration = configuration
    session.add(stage)
    session.flush()
    return requested_ids


def get_stage_team_ids(session: Session, stage: Stage) -> List[str]:
    """
    Stage teams in scheduling order: stored team_order first, then any remaining
    teams by seed (unseeded last), then team id.
    """
    rows = session.exec(select(StageTeam).where(StageTeam.stage_id == stage.id)).all()
    assigned = {row.team_id: row for row in rows}

    ordered = [
        team_id
        for team_id in parse_stage_configuration(stage.configuration)["team_order"]
        if team_id in assigned
    ]
    remaining = sorted(
        (row for team_id, row in assigned.items() if team_id not in ordered),
        key=lambda row: (row.seed is None, row.seed or 0, row.team_id),
    )
    return ordered + [row.team_id for row in remaining]


# -----------------------------------------------------------------------------
# Match generation
# -----------------------------------------------------------------------------


def _clear_stage_matches(session: Session, stage_id: int) -> None:
    # Dependencies reference matches, so they go first
    for dependency in session.exec(
        select(StageMatchDependency).where(StageMatchDependency.stage_id == stage_id)
    ).all():
        session.delete(dependency)
    session.flush()
    for match in session.exec(select(Match).where(Match.stage_id == stage_id)).all():
        session.delete(match)
    session.flush()


def regenerate_stage_matches(
    session: Session, stage: Stage, team_order: Optional[List[str]] = None
) -> StageMutationResult:
    """
    Bulk-replace the stage's matches and dependencies, save configuration, recompute rankings.

    `team_order` reorders the stage's current teams (it must list exactly those teams).
    Each regeneration bumps `stage.generation`, so new match ids never collide with old ones.

    Raises:
        ConfigurationError: bad team order, team count, or stage parameters
    """
    assigned = get_stage_team_ids(session, stage)
    if team_order is not None:
        if len(set(team_order)) != len(team_order) or set(team_order) != set(assigned):
            raise ConfigurationError("Team order must list exactly the teams assigned to the stage.")
        team_ids = list(team_order)
    else:
        team_ids = assigned

    tournament = session.get(Tournament, stage.tournament_id)
    field_count = tournament.field_count if tournament else 1
    next_generation = (stage.generation or 0) + 1

    generation = build_stage_generation(
        stage.stage_type,
        team_ids,
        field_count=field_count,
        rounds=stage.rounds,
        teams_per_alliance=stage.teams_per_alliance,
        min_match_gap=stage.min_match_gap,
        allow_surrogates=stage.allow_surrogates,
        id_scope=f"stage:{stage.id}:{next_generation}",
    )

    _clear_stage_matches(session, stage.id)

    for seed in generation.matches:
        session.add(
            Match(
                id=seed.id,
                tournament_id=stage.tournament_id,
                stage_id=stage.id,
                round=seed.round,
                round_number=seed.round_number,
                match_number=seed.match_number,
                status=MatchStatus.ready if seed.home_team_id and seed.away_team_id else MatchStatus.scheduled,
                match_type=seed.match_type,
                home_team_id=seed.home_team_id,
                away_team_id=seed.away_team_id,
                home_placeholder=seed.home_placeholder,
                away_placeholder=seed.away_placeholder,
                match_metadata=seed.metadata,
                slots=seed.slots,
            )
        )
    session.flush()

    for dependency in generation.dependencies:
        session.add(
            StageMatchDependency(
                stage_id=stage.id,
                target_match_id=dependency.target_match_id,
                target_side=dependency.target_side,
                source_match_id=dependency.source_match_id,
                source_outcome=dependency.source_outcome,
                placeholder=dependency.placeholder,
            )
        )

    previous = parse_stage_configuration(stage.configuration)
    configuration = dict(generation.configuration)
    configuration["team_order"] = team_ids
    configuration["leaderboard_order"] = previous["leaderboard_order"]
    stage.configuration = configuration
    stage.generation = next_generation
    if stage.status == StageStatus.pending:
        stage.status = StageStatus.active
    stage.completed_at = None
    session.add(stage)
    session.flush()

    logger.info(
        "Generated %d matches and %d dependencies for stage %s (generation %d)",
        len(generation.matches),
        len(generation.dependencies),
        stage.id,
        next_generation,
    )
    if generation.warnings:
        logger.info("Stage %s schedule warnings: %s", stage.id, generation.warnings)

    rankings = recalculate_stage_rankings(session, stage.id)
    return StageMutationResult(
        stage_id=stage.id,
        rankings=rankings,
        warnings=list(generation.warnings),
        generation=generation,
    )


def prepare_stage_matches(session: Session, stage: Stage, generate: bool) -> StageMutationResult:
    """Generate matches now, or only store a default configuration for later generation."""
    if generate:
        return regenerate_stage_matches(session, stage)

    previous = parse_stage_configuration(stage.configuration)
    stage.configuration = create_default_stage_configuration(
        team_order=get_stage_team_ids(session, stage),
        leaderboard_order=previous["leaderboard_order"],
    )
    session.add(stage)
    session.flush()
    rankings = recalculate_stage_rankings(session, stage.id)
    return StageMutationResult(stage_id=stage.id, rankings=rankings)


# -----------------------------------------------------------------------------
# Match results
# -----------------------------------------------------------------------------


def is_elimination_stage(stage: Stage) -> bool:
    return resolve_stage_settings(stage.stage_type).format == StageFormat.double_elimination


def update_match_result(
    session: Session, stage: Stage, match: Match, updates: Dict[str, Any]
) -> StageMutationResult:
    """
    Apply a score/status update to one match, propagate on completion, recompute rankings.

    Unspecified fields keep their current stored values, so a completion that only
    sends a status still uses the scores already on the row.

    Raises:
        ConfigurationError: completion without both scores, or a draw in an elimination stage
    """
    changes = {key: value for key, value in updates.items() if key in MATCH_UPDATE_FIELDS}
    next_status = MatchStatus(changes.get("status", match.status))
    next_home = changes["home_score"] if "home_score" in changes else match.home_score
    next_away = changes["away_score"] if "away_score" in changes else match.away_score

    ensure_scores_for_completion(next_status, next_home, next_away)

    if next_status == MatchStatus.completed and is_elimination_stage(stage):
        determine_match_outcome(match.home_team_id, match.away_team_id, next_home, next_away)

    was_completed = MatchStatus(match.status) == MatchStatus.completed
    match.status = next_status
    match.home_score = next_home
    match.away_score = next_away
    if next_status == MatchStatus.completed:
        if not was_completed or match.completed_at is None:
            match.completed_at = datetime.utcnow()
    else:
        match.completed_at = None
    session.add(match)
    session.flush()

    teams_advanced = 0
    if next_status == MatchStatus.completed:
        graph = load_dependency_graph(session, stage.id)
        teams_advanced = apply_advancement_for_completed_match(session, match, graph)
        session.flush()

    rankings = recalculate_stage_rankings(session, stage.id)
    return StageMutationResult(stage_id=stage.id, rankings=rankings, teams_advanced=teams_advanced)


def advance_match(session: Session, stage: Stage, match: Match) -> StageMutationResult:
    """
    Re-run propagation for one completed match (repair path). Idempotent.

    Raises:
        ConfigurationError: match is not completed
    """
    if MatchStatus(match.status) != MatchStatus.completed:
        raise ConfigurationError("Only completed matches can be advanced.")
    teams_advanced = apply_advancement_for_completed_match(session, match)
    session.flush()
    return StageMutationResult(stage_id=stage.id, teams_advanced=teams_advanced)


# -----------------------------------------------------------------------------
# Stage lifecycle
# -----------------------------------------------------------------------------


def has_unfinished_stage_matches(session: Session, stage_id: int) -> bool:
    return (
        session.exec(
            select(Match.id).where(Match.stage_id == stage_id, Match.status != MatchStatus.completed.value)
        ).first()
        is not None
    )


def complete_stage(session: Session, stage: Stage) -> Stage:
    """
    Raises:
        ConfigurationError: stage still has matches that are not COMPLETED
    """
    if has_unfinished_stage_matches(session, stage.id):
        raise ConfigurationError("Stage cannot be completed while matches are still unfinished.")
    stage.status = StageStatus.completed
    stage.completed_at = datetime.utcnow()
    session.add(stage)
    session.flush()
    return stage


def delete_stage(session: Session, stage: Stage) -> int:
    """Remove the stage with its rankings, dependencies, matches and team assignments."""
    stage_id = stage.id
    for ranking in session.exec(select(StageRanking).where(StageRanking.stage_id == stage_id)).all():
        session.delete(ranking)
    _clear_stage_matches(session, stage_id)
    for stage_team in session.exec(select(StageTeam).where(StageTeam.stage_id == stage_id)).all():
        session.delete(stage_team)
    session.flush()
    session.delete(stage)
    session.flush()
    logger.info("Deleted stage %s", stage_id)
    return stage_id


def stage_match_counts(session: Session, stage_id: int) -> Dict[str, int]:
    matches = session.exec(select(Match).where(Match.stage_id == stage_id)).all()
    return {
        "total": len(matches),
        "completed": sum(1 for m in matches if MatchStatus(m.status) == MatchStatus.completed),
        "surrogate": sum(1 for m in matches if MatchType(m.match_type) == MatchType.surrogate),
    }


def default_stage_name(stage_type: StageType) -> str:
    return resolve_stage_settings(stage_type).round_label
