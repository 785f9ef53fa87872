"""Daily tool-call and session counters.

Counters roll over on the first increment of a new calendar day. The set of
session keys already counted lives for the whole process and is not cleared
by the daily reset.
"""

import asyncio
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .models import StatsSnapshot, TodayStats

logger = logging.getLogger(__name__)


def local_now() -> datetime:
    """Timezone-aware current local time."""
    return datetime.now().astimezone()


def is_same_day(earlier: datetime, now: datetime) -> bool:
    """Compare calendar days in now's timezone."""
    if earlier.tzinfo is not None and now.tzinfo is not None:
        earlier = earlier.astimezone(now.tzinfo)
    return earlier.date() == now.date()


class StatsStore:
    """JSON file persistence for TodayStats.

    Writes go to a temp file in the same directory followed by a rename so
    readers never see partial content.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Optional[TodayStats]:
        if not self.path.exists():
            return None
        try:
            return TodayStats.model_validate_json(self.path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable stats file {self.path}: {e}")
            return None

    def save(self, stats: TodayStats) -> None:
        temp_path = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(stats.model_dump_json())
            os.replace(temp_path, self.path)
        except OSError as e:
            logger.warning(f"Failed to save stats to {self.path}: {e}")
            if temp_path.exists():
                temp_path.unlink()


class DailyStatsTracker:
    """Counts tool calls and unique sessions per calendar day."""

    def __init__(
        self,
        store: Optional[StatsStore] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.store = store
        self.clock = clock
        self._seen_sessions: set[str] = set()
        self._save_task: Optional[asyncio.Task] = None
        self._dirty = False
        self._stats = self._load()

    def _load(self) -> TodayStats:
        stats = self.store.load() if self.store else None
        if stats is None:
            return TodayStats(last_reset=self.clock())

        logger.info(
            f"Loaded stats: {stats.tool_calls} tool calls, "
            f"{stats.sessions_count} sessions since {stats.last_reset:%Y-%m-%d}"
        )
        now = self.clock()
        if not is_same_day(stats.last_reset, now):
            stats = TodayStats(last_reset=now)
            self._save(stats)
        return stats

    def _save(self, stats: TodayStats) -> None:
        """Persist the counters, off the event loop when one is running.

        Saves requested while a write is in flight are coalesced into one
        follow-up write of the latest counters.
        """
        if not self.store:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.store.save(stats)
            return

        self._dirty = True
        if self._save_task is None or self._save_task.done():
            self._save_task = loop.create_task(self._save_pending())

    async def _save_pending(self) -> None:
        while self._dirty:
            self._dirty = False
            await asyncio.to_thread(self.store.save, self._stats.model_copy())

    async def flush(self) -> None:
        """Wait for any scheduled save to finish."""
        task = self._save_task
        if task is not None:
            await task

    @property
    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            tool_calls=self._stats.tool_calls,
            sessions_count=self._stats.sessions_count,
            last_reset=self._stats.last_reset,
        )

    def check_and_reset_if_new_day(self) -> bool:
        """Zero both counters if last_reset falls on an earlier day.

        Returns:
            True if a reset happened
        """
        now = self.clock()
        if is_same_day(self._stats.last_reset, now):
            return False
        logger.info(
            f"New day: resetting stats (was {self._stats.tool_calls} tool calls, "
            f"{self._stats.sessions_count} sessions)"
        )
        self._stats = TodayStats(last_reset=now)
        return True

    def increment_tool_calls(self) -> None:
        self.check_and_reset_if_new_day()
        self._stats.tool_calls += 1
        self._save(self._stats)

    def increment_sessions(self) -> None:
        self.check_and_reset_if_new_day()
        self._stats.sessions_count += 1
        self._save(self._stats)

    def record_session(self, key: str) -> bool:
        """Count a session key the first time this process sees it.

        Returns:
            True if the key was new
        """
        if key in self._seen_sessions:
            return False
        self._seen_sessions.add(key)
        self.increment_sessions()
        return True
