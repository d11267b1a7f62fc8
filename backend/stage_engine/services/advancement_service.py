"""
Outcome propagation: when a match is completed, fill the downstream bracket slots
that depend on its winner or loser.

Only writes home/away team ids and placeholders on target matches; targets that are
already COMPLETED are never touched. Nothing here commits; the caller owns the transaction.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlmodel import Session, select

from stage_engine.models.match import Match, MatchStatus
from stage_engine.models.match_dependency import DependencyOutcome, MatchSide, StageMatchDependency
from stage_engine.services.bracket_generator import DependencyGraph, MatchDependency
from stage_engine.services.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchOutcome:
    winner_team_id: str
    loser_team_id: str

    def team_for(self, outcome: DependencyOutcome) -> str:
        if DependencyOutcome(outcome) == DependencyOutcome.winner:
            return self.winner_team_id
        return self.loser_team_id


def ensure_scores_for_completion(
    status: MatchStatus, home_score: Optional[int], away_score: Optional[int]
) -> None:
    """Raise ConfigurationError if a COMPLETED status is requested without both scores."""
    if MatchStatus(status) == MatchStatus.completed and (home_score is None or away_score is None):
        raise ConfigurationError("Scores must be provided to complete a match.")


def determine_match_outcome(
    home_team_id: Optional[str],
    away_team_id: Optional[str],
    home_score: Optional[int],
    away_score: Optional[int],
) -> MatchOutcome:
    """
    Winner/loser of a finished match.

    Raises:
        ConfigurationError: missing team or score, or equal scores
    """
    if not home_team_id or not away_team_id or home_score is None or away_score is None:
        raise ConfigurationError("Scores must be provided to determine match outcome.")
    if home_score == away_score:
        raise ConfigurationError("Matches cannot end in a draw for advancement stages.")
    if home_score > away_score:
        return MatchOutcome(winner_team_id=home_team_id, loser_team_id=away_team_id)
    return MatchOutcome(winner_team_id=away_team_id, loser_team_id=home_team_id)


def _to_dependency(row: StageMatchDependency) -> MatchDependency:
    return MatchDependency(
        target_match_id=row.target_match_id,
        target_side=MatchSide(row.target_side),
        source_match_id=row.source_match_id,
        source_outcome=DependencyOutcome(row.source_outcome),
        placeholder=row.placeholder,
    )


def load_dependency_graph(session: Session, stage_id: int) -> DependencyGraph:
    rows = session.exec(
        select(StageMatchDependency)
        .where(StageMatchDependency.stage_id == stage_id)
        .order_by(StageMatchDependency.id)
    ).all()
    return DependencyGraph(_to_dependency(row) for row in rows)


def apply_advancement_for_completed_match(
    session: Session, match: Match, graph: Optional[DependencyGraph] = None
) -> int:
    """
    Push the outcome of a COMPLETED match into every downstream slot that depends on it.

    Returns count of target slots whose team changed.
    Idempotent: a second call with the same scores writes nothing.

    Raises:
        ConfigurationError: the match feeds a bracket and its outcome cannot be decided
    """
    if MatchStatus(match.status) != MatchStatus.completed:
        return 0

    if graph is None:
        graph = load_dependency_graph(session, match.stage_id)
    downstream = graph.downstream(match.id)
    if not downstream:
        return 0

    outcome = determine_match_outcome(match.home_team_id, match.away_team_id, match.home_score, match.away_score)

    updated_count = 0
    for dependency in downstream:
        target = session.get(Match, dependency.target_match_id)
        if target is None:
            logger.warning(
                "Dependency target %s missing for source %s", dependency.target_match_id, match.id
            )
            continue
        if MatchStatus(target.status) == MatchStatus.completed:
            logger.info("Skipping completed target match %s (source %s)", target.id, match.id)
            continue

        team_id = outcome.team_for(dependency.source_outcome)
        if dependency.target_side == MatchSide.home:
            changed = target.home_team_id != team_id or target.home_placeholder is not None
            target.home_team_id = team_id
            target.home_placeholder = None
        else:
            changed = target.away_team_id != team_id or target.away_placeholder is not None
            target.away_team_id = team_id
            target.away_placeholder = None

        if changed:
            if target.home_team_id and target.away_team_id and MatchStatus(target.status) == MatchStatus.scheduled:
                target.status = MatchStatus.ready
            session.add(target)
            updated_count += 1
            logger.debug(
                "Advanced %s of %s into %s.%s",
                dependency.source_outcome.value,
                match.id,
                target.id,
                dependency.target_side.value,
            )

    return updated_count


def resolve_all_dependencies(session: Session, stage_id: int) -> Dict:
    """
    Bulk re-apply propagation for every completed match in a stage.

    Returns:
        Dict with:
        - matches_processed: completed source matches visited
        - teams_advanced: downstream slots changed
        - unknown_before / unknown_after: matches with an unresolved side

    Guarantees:
        - Idempotent (safe to call multiple times)
        - Deterministic ordering (processes by match_number)
    """
    all_matches = _stage_matches(session, stage_id)
    unknown_before = _count_unknown(all_matches)

    graph = load_dependency_graph(session, stage_id)
    matches_processed = 0
    teams_advanced = 0

    for match in all_matches:
        if MatchStatus(match.status) != MatchStatus.completed or not graph.downstream(match.id):
            continue
        teams_advanced += apply_advancement_for_completed_match(session, match, graph)
        matches_processed += 1

    session.flush()
    unknown_after = _count_unknown(_stage_matches(session, stage_id))

    return {
        "matches_processed": matches_processed,
        "teams_advanced": teams_advanced,
        "unknown_before": unknown_before,
        "unknown_after": unknown_after,
    }


def _stage_matches(session: Session, stage_id: int) -> List[Match]:
    return list(
        session.exec(select(Match).where(Match.stage_id == stage_id).order_by(Match.match_number)).all()
    )


def _count_unknown(matches: List[Match]) -> int:
    return sum(1 for m in matches if m.home_team_id is None or m.away_team_id is None)
