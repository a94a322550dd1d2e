"""Text helpers shared by the report renderers."""

from datetime import datetime

from powa_sentinel.domain import LOCAL_SERVER_NAME, HealthStatus, Severity

SAFE_MESSAGE_BYTES = 4000

_STATUS_EMOJI = {
    HealthStatus.HEALTHY: "✅",
    HealthStatus.WARNING: "⚠️",
    HealthStatus.DEGRADED: "🟠",
    HealthStatus.CRITICAL: "🔴",
}

_SEVERITY_ICON = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🔵",
}


def status_emoji(status: HealthStatus) -> str:
    return _STATUS_EMOJI.get(status, "🔴")


def severity_icon(severity: Severity) -> str:
    return _SEVERITY_ICON.get(severity, "🔵")


def location_label(server_name: str, database_name: str) -> str:
    """``server/database`` for remote servers, the database alone otherwise."""
    if server_name and server_name != LOCAL_SERVER_NAME:
        return f"{server_name}/{database_name}"
    return database_name


def truncate_query(query: str, max_length: int) -> str:
    collapsed = " ".join(query.split())
    if len(collapsed) <= max_length:
        return collapsed
    return collapsed[: max_length - 3] + "..."


def format_minute(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def _split_oversized_line(line: str, limit: int) -> list[str]:
    pieces: list[str] = []
    current: list[str] = []
    size = 0
    for char in line:
        char_size = _byte_length(char)
        if size + char_size > limit and current:
            pieces.append("".join(current))
            current = []
            size = 0
        current.append(char)
        size += char_size
    if current:
        pieces.append("".join(current))
    return pieces


def split_message(message: str, limit: int = SAFE_MESSAGE_BYTES) -> list[str]:
    """Split ``message`` on line boundaries into chunks of at most ``limit`` UTF-8 bytes.

    A single line longer than ``limit`` is cut into limit-sized pieces.
    """
    if _byte_length(message) <= limit:
        return [message]

    chunks: list[str] = []
    current: list[str] = []
    size = 0

    for line in message.split("\n"):
        line_size = _byte_length(line)
        separator = 1 if current else 0

        if size + separator + line_size > limit:
            if current:
                chunks.append("\n".join(current))
                current = []
                size = 0
            if line_size > limit:
                *full, line = _split_oversized_line(line, limit)
                chunks.extend(full)
                line_size = _byte_length(line)
            separator = 0

        current.append(line)
        size += separator + line_size

    if current:
        chunks.append("\n".join(current))
    return chunks
