"""Deterministic classification of external tool completions."""

from __future__ import annotations

from realtime_osm.server.models import ToolKind, ToolOutcome, ToolStatus

_UPDATE_NOOP_PATTERNS: tuple[str, ...] = ("your osm file is already up-to-date",)
_UPDATE_SUCCESS_PATTERNS: tuple[str, ...] = ("completed successfully",)
_DETAIL_TAIL_CHARS = 500


def classify_tool_exit(*, kind: ToolKind, exit_code: int, output: str) -> ToolOutcome:
    """Map exit code and combined stdout/stderr to a tool outcome.

    osmupdate exits non-zero when there is nothing to merge, so the up-to-date
    message is checked before the exit code.
    """

    haystack = output.lower()
    if kind is ToolKind.UPDATE:
        pattern = _first_match(haystack, _UPDATE_NOOP_PATTERNS)
        if pattern is not None:
            return ToolOutcome(status=ToolStatus.NOOP, exit_code=exit_code, detail=pattern)
        if exit_code == 0 and _first_match(haystack, _UPDATE_SUCCESS_PATTERNS) is not None:
            return ToolOutcome(status=ToolStatus.SUCCESS, exit_code=exit_code)
        return ToolOutcome(
            status=ToolStatus.FAILED,
            exit_code=exit_code,
            detail=_tail(output) or f"exit code {exit_code}",
        )

    if exit_code == 0:
        return ToolOutcome(status=ToolStatus.SUCCESS, exit_code=exit_code)
    return ToolOutcome(
        status=ToolStatus.FAILED,
        exit_code=exit_code,
        detail=_tail(output) or f"exit code {exit_code}",
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None


def _tail(output: str) -> str:
    return output.strip()[-_DETAIL_TAIL_CHARS:]
