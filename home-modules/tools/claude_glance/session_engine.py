"""Session lifecycle engine for the Claude Glance monitor.

This module implements the per-session state machine that turns hook events
into a bounded list of sessions for display. It owns the session map and the
daily stats; everything outside reads immutable snapshots.

State Machine:
    PreToolUse   → reading / writing / thinking (by tool)
    PostToolUse  → thinking, tool appended to history
    Notification → waiting, or error on error keywords
    Stop         → completed (arms the silent period), or error

Silent period:
    After a Stop, PreToolUse events for the same key are dropped for 10s as
    speculative read-ahead. The first PreToolUse after that window deletes a
    session that is still completed instead of reopening it.

Expiry (every 10s):
    completed / error   removed after 5s
    reading / writing / thinking   forced to completed after 60s
    waiting             removed after 90s

All methods run on the asyncio loop thread, so the engine needs no locking.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import SessionTimings
from .formatting import (
    format_action,
    format_metadata,
    is_error_notification,
    is_error_stop,
    map_tool_to_status,
)
from .models import (
    AlertKind,
    EngineUpdate,
    EventKind,
    HookMessage,
    SessionRecord,
    SessionSnapshot,
    SessionStatus,
    StatsSnapshot,
    ToolEvent,
    ToolStatus,
)
from .stats import DailyStatsTracker, local_now

logger = logging.getLogger(__name__)

SessionObserver = Callable[[EngineUpdate], None]
AlertSink = Callable[[AlertKind, SessionSnapshot], None]


class SessionEngine:
    """Owns the session map and publishes the active session list.

    Observers are called synchronously with an EngineUpdate after every
    mutation. Alerts go to alert_sink on state entry when sound is enabled.
    """

    def __init__(
        self,
        timings: Optional[SessionTimings] = None,
        stats: Optional[DailyStatsTracker] = None,
        clock: Callable[[], datetime] = local_now,
        alert_sink: Optional[AlertSink] = None,
        sound_enabled: bool = True,
    ) -> None:
        """Initialize the session engine.

        Args:
            timings: Debounce and expiry windows
            stats: Daily counters (a fresh in-memory tracker if None)
            clock: Returns the current timezone-aware time
            alert_sink: Called with (kind, snapshot) on alert-worthy transitions
            sound_enabled: Whether alerts fire at all
        """
        self.timings = timings or SessionTimings()
        self.clock = clock
        self.stats = stats or DailyStatsTracker(clock=clock)
        self.alert_sink = alert_sink
        self.sound_enabled = sound_enabled

        # Session storage: key -> record
        self._sessions: dict[str, SessionRecord] = {}

        # Stop stamps of removed sessions, kept until their silent period ends
        self._recent_stops: dict[str, datetime] = {}

        self._active: tuple[SessionSnapshot, ...] = ()
        self._observers: list[SessionObserver] = []

        # Background tasks
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._sweep_task: Optional[asyncio.Task] = None
        self._fade_task: Optional[asyncio.Task] = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the expiry sweep; the fade timer starts on demand."""
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._sweep_task = self._loop.create_task(self._sweep_loop())
        self._update_fade_timer_state(self.clock())
        logger.info("Session engine started")

    async def stop(self) -> None:
        """Cancel all timers and wait for pending stats writes."""
        self._running = False
        tasks = [t for t in (self._sweep_task, self._fade_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._sweep_task = None
        self._fade_task = None
        await self.stats.flush()
        logger.info("Session engine stopped")

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def active_sessions(self) -> tuple[SessionSnapshot, ...]:
        return self._active

    @property
    def stats_snapshot(self) -> StatsSnapshot:
        return self.stats.snapshot

    @property
    def session_keys(self) -> frozenset[str]:
        return frozenset(self._sessions)

    @property
    def fade_timer_running(self) -> bool:
        return self._fade_task is not None and not self._fade_task.done()

    def get_session(self, key: str) -> Optional[SessionSnapshot]:
        """Snapshot of a tracked session, displayed or not."""
        session = self._sessions.get(key)
        if session is None:
            return None
        return session.to_snapshot(self.clock(), self.timings)

    def add_observer(self, observer: SessionObserver) -> None:
        self._observers.append(observer)

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------

    def handle_message(self, message: HookMessage) -> None:
        """Apply one decoded hook message."""
        kind = message.event_kind
        if kind is None:
            logger.debug(f"Ignoring unknown event '{message.event}' for {message.session_id}")
            return

        key = message.session_id
        now = self.clock()

        if self.stats.record_session(key):
            logger.info(f"New session {key} ({message.terminal}, {message.project})")

        session = self._sessions.get(key)
        if session is None:
            session = SessionRecord(
                key=key,
                terminal=message.terminal,
                project=message.project,
                cwd=message.cwd,
                last_update=now,
                display_after=now + timedelta(seconds=self.timings.display_delay),
                stopped_at=self._recent_stops.get(key),
            )
        previous_status = session.status
        alert: Optional[AlertKind] = None

        if kind == EventKind.PRE_TOOL_USE:
            if not self._apply_pre_tool_use(session, message, now):
                return
        elif kind == EventKind.POST_TOOL_USE:
            self._apply_post_tool_use(session, message, now)
        elif kind == EventKind.NOTIFICATION:
            alert = self._apply_notification(session, message)
        elif kind == EventKind.STOP:
            alert = self._apply_stop(session, message, now)

        session.terminal = message.terminal
        session.project = message.project
        session.cwd = message.cwd
        session.last_update = now
        self._sessions[key] = session
        self._recent_stops.pop(key, None)

        if session.status != previous_status:
            logger.info(f"Session {key}: {previous_status.value} → {session.status.value}")
        logger.debug(f"Updated session {key}: {session.status.value} - {session.current_action}")

        if alert is not None and session.status != previous_status:
            self._fire_alert(alert, session, now)

        self._recompute()

    def _apply_pre_tool_use(
        self, session: SessionRecord, message: HookMessage, now: datetime
    ) -> bool:
        """Apply PreToolUse.

        Returns:
            False if the event was dropped (the session may have been deleted)
        """
        tool = message.data.tool_name or "Unknown"
        previous_status = session.status
        since_update = session.elapsed(now)

        if session.stopped_at is not None:
            since_stop = (now - session.stopped_at).total_seconds()
            if since_stop < self.timings.silent_period:
                logger.debug(
                    f"Ignoring PreToolUse ({tool}) during "
                    f"{self.timings.silent_period - since_stop:.1f}s silent period: {session.key}"
                )
                return False

            session.stopped_at = None
            self._recent_stops.pop(session.key, None)

            if previous_status == SessionStatus.COMPLETED:
                if session.key in self._sessions:
                    self._remove(session.key)
                    self._recompute()
                logger.info(f"Silent period ended, removing completed session: {session.key}")
                return False

            logger.info(f"Silent period ended, starting new interaction: {session.key}")
            session.tool_history.clear()

        if previous_status == SessionStatus.WAITING:
            if since_update < self.timings.speculative_waiting:
                logger.debug(f"Ignoring speculative PreToolUse for waiting session: {session.key}")
                return False
            if since_update > self.timings.speculative_waiting:
                logger.info(f"New interaction detected for {session.key}, clearing history")
                session.tool_history.clear()

        session.status = map_tool_to_status(tool)
        session.current_action = format_action(tool, message.data)
        session.metadata = format_metadata(tool, message.data)
        self.stats.increment_tool_calls()
        return True

    def _apply_post_tool_use(
        self, session: SessionRecord, message: HookMessage, now: datetime
    ) -> None:
        tool = message.data.tool_name or "Unknown"
        session.status = SessionStatus.THINKING
        session.current_action = "Processing..."
        session.append_tool_event(
            ToolEvent(
                tool=tool,
                target=format_metadata(tool, message.data),
                status=ToolStatus.COMPLETED,
                timestamp=now,
            )
        )

    def _apply_notification(
        self, session: SessionRecord, message: HookMessage
    ) -> Optional[AlertKind]:
        text = message.data.message or "Waiting for input"
        notification_type = message.data.notification_type or ""

        if is_error_notification(text, notification_type):
            session.status = SessionStatus.ERROR
            session.current_action = text
            session.metadata = "Error"
        else:
            session.status = SessionStatus.WAITING
            session.current_action = text
            session.metadata = notification_type
        return AlertKind.ATTENTION

    def _apply_stop(
        self, session: SessionRecord, message: HookMessage, now: datetime
    ) -> Optional[AlertKind]:
        text = message.data.message or ""

        if is_error_stop(text):
            session.status = SessionStatus.ERROR
            session.current_action = text or "Task failed"
            session.metadata = "Error"
            return AlertKind.ATTENTION

        session.status = SessionStatus.COMPLETED
        session.current_action = "Task completed"
        session.metadata = ""
        session.stopped_at = now
        logger.debug(f"Session completed: {session.key}, silent period armed")
        return AlertKind.COMPLETION

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    def toggle_expand(self, key: str) -> bool:
        """Flip the expanded flag.

        Returns:
            False if the session is unknown
        """
        session = self._sessions.get(key)
        if session is None:
            return False
        session.is_expanded = not session.is_expanded
        self._recompute()
        return True

    def dismiss_session(self, key: str) -> bool:
        """Remove a session regardless of its state.

        Returns:
            False if the session is unknown
        """
        if key not in self._sessions:
            return False
        self._remove(key)
        logger.info(f"Dismissed session: {key}")
        self._recompute()
        return True

    def toggle_sound(self) -> bool:
        self.sound_enabled = not self.sound_enabled
        logger.info(f"Sound {'enabled' if self.sound_enabled else 'disabled'}")
        return self.sound_enabled

    def refresh(self) -> None:
        """Recompute opacity and the active list without any state change."""
        self._recompute()

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def sweep_expired(self) -> None:
        """Expire or force-complete sessions past their inactivity window."""
        now = self.clock()
        expired: list[str] = []

        for key, session in self._sessions.items():
            elapsed = session.elapsed(now)

            if session.status.is_finished:
                if elapsed > self.timings.completed_timeout:
                    expired.append(key)
            elif session.status.is_working:
                if elapsed > self.timings.active_timeout:
                    session.status = SessionStatus.COMPLETED
                    session.current_action = "Task completed"
                    session.metadata = ""
                    session.last_update = now
                    logger.info(f"Auto-completed stale session: {key} (idle {elapsed:.0f}s)")
                    self._fire_alert(AlertKind.COMPLETION, session, now)
            elif session.status == SessionStatus.WAITING:
                if elapsed > self.timings.waiting_timeout:
                    expired.append(key)
            elif elapsed > self.timings.idle_timeout:
                expired.append(key)

        for key in expired:
            logger.info(f"Session {key} expired ({self._sessions[key].status.value})")
            self._remove(key)

        for key, stopped_at in list(self._recent_stops.items()):
            if (now - stopped_at).total_seconds() >= self.timings.silent_period:
                del self._recent_stops[key]

        self._recompute()

    def _remove(self, key: str) -> None:
        session = self._sessions.pop(key, None)
        if session is not None and session.stopped_at is not None:
            self._recent_stops[key] = session.stopped_at

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    def _recompute(self) -> None:
        """Rebuild the active list, publish it, and start/stop the fade timer."""
        now = self.clock()
        for session in self._sessions.values():
            session.opacity = session.calculated_opacity(now, self.timings)

        visible = [
            session
            for session in self._sessions.values()
            if session.is_ready_to_display(now)
            and session.opacity > 0
            and session.is_active(now, self.timings)
        ]
        visible.sort(key=lambda s: s.last_update, reverse=True)
        self._active = tuple(s.to_snapshot(now, self.timings) for s in visible)

        self._publish(now)
        self._update_fade_timer_state(now)

    def _publish(self, now: datetime) -> None:
        update = EngineUpdate(
            sessions=self._active,
            stats=self.stats.snapshot,
            timestamp=int(now.timestamp()),
        )
        for observer in list(self._observers):
            try:
                observer(update)
            except Exception as e:
                logger.error(f"Session observer failed: {e}", exc_info=True)

    def _fire_alert(self, kind: AlertKind, session: SessionRecord, now: datetime) -> None:
        if not self.sound_enabled or self.alert_sink is None:
            return
        try:
            self.alert_sink(kind, session.to_snapshot(now, self.timings))
        except Exception as e:
            logger.error(f"Alert sink failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def needs_fade_timer(self, now: Optional[datetime] = None) -> bool:
        """True while any record fades, shows elapsed time, or awaits display."""
        now = now or self.clock()
        return any(
            session.status.is_finished
            or session.is_still_thinking(now, self.timings)
            or session.is_still_waiting(now, self.timings)
            or not session.is_ready_to_display(now)
            for session in self._sessions.values()
        )

    def _update_fade_timer_state(self, now: datetime) -> None:
        if not self._running or self._loop is None:
            return

        needed = self.needs_fade_timer(now)
        if needed and not self.fade_timer_running:
            self._fade_task = self._loop.create_task(self._fade_loop())
            logger.debug("Fade timer started")
        elif not needed and self._fade_task is not None:
            self._fade_task.cancel()
            self._fade_task = None
            logger.debug("Fade timer stopped")

    async def _fade_loop(self) -> None:
        """Recompute once per interval while something needs animating."""
        while self._running:
            try:
                await asyncio.sleep(self.timings.fade_interval)
                self._recompute()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Fade timer error: {e}", exc_info=True)

    async def _sweep_loop(self) -> None:
        """Periodically expire stale sessions."""
        while self._running:
            try:
                await asyncio.sleep(self.timings.sweep_interval)
                self.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Expiry sweep error: {e}", exc_info=True)
