"""Tool labels and error detection for hook events."""

from pathlib import PurePath
from typing import Optional

from .models import HookData, SessionStatus


COMMAND_PREVIEW_LENGTH = 40

TOOL_STATUS: dict[str, SessionStatus] = {
    "Read": SessionStatus.READING,
    "Glob": SessionStatus.READING,
    "Grep": SessionStatus.READING,
    "WebFetch": SessionStatus.READING,
    "WebSearch": SessionStatus.READING,
    "Write": SessionStatus.WRITING,
    "Edit": SessionStatus.WRITING,
    "NotebookEdit": SessionStatus.WRITING,
    "Bash": SessionStatus.THINKING,
    "Task": SessionStatus.THINKING,
    "TodoWrite": SessionStatus.THINKING,
}

TOOL_ACTIONS: dict[str, str] = {
    "Read": "Reading file",
    "Write": "Writing file",
    "Edit": "Editing file",
    "Bash": "Running command",
    "Glob": "Searching files",
    "Grep": "Searching content",
    "Task": "Spawning agent",
    "WebFetch": "Fetching web",
    "WebSearch": "Searching web",
    "TodoWrite": "Updating todos",
    "NotebookEdit": "Editing notebook",
}

NOTIFICATION_ERROR_KEYWORDS = ("error", "failed", "api error")
STOP_ERROR_KEYWORDS = ("error", "failed", "aborted")


def map_tool_to_status(tool: str) -> SessionStatus:
    """Unrecognized tools count as thinking."""
    return TOOL_STATUS.get(tool, SessionStatus.THINKING)


def format_action(tool: str, data: Optional[HookData]) -> str:
    """Human readable label for what the session is doing."""
    if tool == "Bash" and data is not None:
        description = data.input_string("description")
        if description:
            return description
    if tool == "Task" and data is not None:
        subagent = data.input_string("subagent_type")
        if subagent is not None:
            return f"Agent: {subagent}"
    return TOOL_ACTIONS.get(tool, tool)


def format_metadata(tool: str, data: Optional[HookData]) -> str:
    """Short detail shown next to the action: file, command, pattern or agent."""
    if data is None or data.tool_input is None:
        return ""

    if tool in ("Read", "Write", "Edit"):
        path = data.input_string("file_path")
        if path is not None:
            return PurePath(path).name
    elif tool == "Bash":
        command = data.input_string("command")
        if command is not None:
            preview = command[:COMMAND_PREVIEW_LENGTH]
            return preview + ("..." if len(command) > COMMAND_PREVIEW_LENGTH else "")
    elif tool in ("Glob", "Grep"):
        pattern = data.input_string("pattern")
        if pattern is not None:
            return pattern
    elif tool == "Task":
        subagent = data.input_string("subagent_type")
        if subagent is not None:
            return subagent
    return ""


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def is_error_notification(message: str, notification_type: str) -> bool:
    return "error" in notification_type.lower() or _contains_any(
        message, NOTIFICATION_ERROR_KEYWORDS
    )


def is_error_stop(message: str) -> bool:
    return _contains_any(message, STOP_ERROR_KEYWORDS)
