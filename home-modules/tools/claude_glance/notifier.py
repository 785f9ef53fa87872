"""Alert side effects for session transitions.

Plays an event sound through canberra-gtk-play (libcanberra) and optionally
sends a desktop notification through notify-send. Both run as fire-and-forget
subprocesses so the session engine never waits on them.
"""

import asyncio
import logging
import shutil
from typing import Optional

from .models import AlertKind, SessionSnapshot, SessionStatus

logger = logging.getLogger(__name__)

# freedesktop sound theme event ids
SOUND_IDS = {
    AlertKind.ATTENTION: "message-new-instant",
    AlertKind.COMPLETION: "complete",
}


def build_notification(kind: AlertKind, session: SessionSnapshot) -> tuple[str, str]:
    """Title and body for a desktop notification."""
    if session.status == SessionStatus.ERROR:
        title = "Claude Code Error"
    elif kind == AlertKind.ATTENTION:
        title = "Claude Code Needs Input"
    else:
        title = "Claude Code Ready"

    where = f"{session.project} ({session.terminal})" if session.project else session.terminal
    body = f"{session.current_action} in {where}" if session.current_action else where
    return title, body


class AlertNotifier:
    """Alert sink for SessionEngine."""

    def __init__(self, notifications_enabled: bool = False) -> None:
        self.notifications_enabled = notifications_enabled
        self._sound_player: Optional[str] = shutil.which("canberra-gtk-play")
        self._notify_send: Optional[str] = shutil.which("notify-send")
        self._tasks: set[asyncio.Task] = set()

        if self._sound_player is None:
            logger.warning("canberra-gtk-play not found, alert sounds disabled")
        if notifications_enabled and self._notify_send is None:
            logger.warning("notify-send not found, desktop notifications disabled")

    def __call__(self, kind: AlertKind, session: SessionSnapshot) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, skipping {kind.value} alert for {session.key}")
            return
        task = loop.create_task(self.alert(kind, session))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def alert(self, kind: AlertKind, session: SessionSnapshot) -> None:
        """Play the sound and send the notification for one alert."""
        if self._sound_player:
            await self._run([self._sound_player, f"--id={SOUND_IDS[kind]}"])

        if self.notifications_enabled and self._notify_send:
            title, body = build_notification(kind, session)
            await self._run(
                [
                    self._notify_send,
                    "--app-name=Claude Glance",
                    "--urgency=normal",
                    title,
                    body,
                ]
            )

    async def _run(self, cmd: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await process.wait()
            logger.debug(f"Alert command finished: {cmd[0]} (exit {process.returncode})")
        except OSError as e:
            logger.error(f"Error running alert command {cmd[0]}: {e}")
