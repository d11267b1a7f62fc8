"""Leaderboard cache.

Read-optimized, per-stage Redis sorted set of team ids, kept in sync with the
persisted ranking snapshot after every recompute.

Scores follow a sorted-set scheme: with total = len(entries) + 1, a team at
rank r gets score max(total - r, 0) + 1, so rank 1 has the highest score.
Non-positive ranks sort last.

Reads the LEADERBOARD_CACHE_ENABLED environment variable; when disabled,
syncs are no-ops and reads return an empty order so callers fall back to
the persisted rank order. Redis failures are logged and never raised.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import redis

from stage_engine.redis_client import get_redis_client

logger = logging.getLogger(__name__)

STAGE_LEADERBOARD_PREFIX = "leaderboard:stage"


@dataclass(frozen=True)
class LeaderboardSyncEntry:
    team_id: str
    rank: int


def get_stage_leaderboard_key(stage_id: int) -> str:
    return f"{STAGE_LEADERBOARD_PREFIX}:{stage_id}"


def compute_leaderboard_scores(entries: Iterable[LeaderboardSyncEntry]) -> Dict[str, int]:
    entries = list(entries)
    total_entries = len(entries) + 1
    scores: Dict[str, int] = {}
    for entry in entries:
        normalized_rank = entry.rank if entry.rank > 0 else total_entries
        scores[entry.team_id] = max(total_entries - normalized_rank, 0) + 1
    return scores


def _env_enabled(value: Optional[str]) -> bool:
    if value is None:
        return True
    return value.strip().lower() not in ("0", "false", "no", "off")


class LeaderboardCache:
    """Sorted sets keyed by `leaderboard:stage:<id>`."""

    def __init__(self, client: Optional[redis.Redis] = None, enabled: Optional[bool] = None):
        if enabled is None:
            enabled = _env_enabled(os.getenv("LEADERBOARD_CACHE_ENABLED"))
        self.enabled = enabled
        self._client = client
        if not self.enabled:
            logger.info("Leaderboard cache disabled; reads fall back to persisted rankings.")

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis_client()
        return self._client

    def sync_stage_leaderboard(self, stage_id: int, entries: Iterable[LeaderboardSyncEntry]) -> None:
        """Replace the stage's cached order wholesale. Empty entries clear it."""
        if not self.enabled:
            return
        try:
            key = get_stage_leaderboard_key(stage_id)
            scores = compute_leaderboard_scores(entries)
            pipe = self.client.pipeline()
            pipe.delete(key)
            if scores:
                pipe.zadd(key, scores)
            pipe.execute()
        except Exception:
            logger.exception("Failed to sync stage leaderboard cache (stage=%s)", stage_id)

    def read_stage_leaderboard_order(self, stage_id: int, limit: int = 0) -> List[str]:
        """
        Team ids best-first.

        `limit` <= 0 returns every member.
        """
        if not self.enabled:
            return []
        try:
            stop = limit - 1 if limit > 0 else -1
            return list(self.client.zrevrange(get_stage_leaderboard_key(stage_id), 0, stop))
        except Exception:
            logger.exception("Failed to read stage leaderboard order (stage=%s)", stage_id)
            return []

    def clear_stage(self, stage_id: int) -> None:
        if not self.enabled:
            return
        try:
            self.client.delete(get_stage_leaderboard_key(stage_id))
        except Exception:
            logger.exception("Failed to clear stage leaderboard cache (stage=%s)", stage_id)


# Singleton instance
_leaderboard_cache: Optional[LeaderboardCache] = None


def get_leaderboard_cache() -> LeaderboardCache:
    """Get or create the singleton LeaderboardCache instance."""
    global _leaderboard_cache
    if _leaderboard_cache is None:
        _leaderboard_cache = LeaderboardCache()
    return _leaderboard_cache


def sync_stage_leaderboard(stage_id: int, entries: Iterable[LeaderboardSyncEntry]) -> None:
    get_leaderboard_cache().sync_stage_leaderboard(stage_id, entries)


def read_stage_leaderboard_order(stage_id: int, limit: int = 0) -> List[str]:
    return get_leaderboard_cache().read_stage_leaderboard_order(stage_id, limit)


def clear_stage_leaderboard(stage_id: int) -> None:
    get_leaderboard_cache().clear_stage(stage_id)
