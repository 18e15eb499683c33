"""Worker lifecycle states and external tool outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class WorkerState(str, Enum):
    """Per-task worker lifecycle states."""

    IDLE = "idle"
    ACQUIRING_INITIAL = "acquiring_initial"
    CLIPPING = "clipping"
    UPDATING = "updating"
    TERMINATED = "terminated"


class WorkerEvent(str, Enum):
    """Inputs that move a worker between states."""

    ACQUIRE = "acquire"
    START_UPDATE = "start_update"
    START_CLIP = "start_clip"
    FINISH = "finish"
    TERMINATE = "terminate"


class InvalidTransitionError(RuntimeError):
    """Event is not allowed in the worker's current state."""

    def __init__(self, state: WorkerState, event: WorkerEvent) -> None:
        super().__init__(f"Can't apply {event.value} while {state.value}.")
        self.state = state
        self.event = event


_TRANSITIONS: dict[tuple[WorkerState, WorkerEvent], WorkerState] = {
    (WorkerState.IDLE, WorkerEvent.ACQUIRE): WorkerState.ACQUIRING_INITIAL,
    (WorkerState.IDLE, WorkerEvent.START_UPDATE): WorkerState.UPDATING,
    (WorkerState.ACQUIRING_INITIAL, WorkerEvent.START_CLIP): WorkerState.CLIPPING,
    (WorkerState.ACQUIRING_INITIAL, WorkerEvent.FINISH): WorkerState.IDLE,
    (WorkerState.UPDATING, WorkerEvent.START_CLIP): WorkerState.CLIPPING,
    (WorkerState.UPDATING, WorkerEvent.FINISH): WorkerState.IDLE,
    (WorkerState.CLIPPING, WorkerEvent.FINISH): WorkerState.IDLE,
}


def transition(state: WorkerState, event: WorkerEvent) -> WorkerState:
    """Return the state ``event`` leads to from ``state``.

    ``TERMINATE`` is accepted from every state and ``TERMINATED`` is absorbing.

    Raises:
        InvalidTransitionError: the pair is not in the transition table.
    """

    if event is WorkerEvent.TERMINATE:
        return WorkerState.TERMINATED
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(state, event) from None


class ToolKind(str, Enum):
    """External operations a worker can run."""

    DOWNLOAD = "download"
    CLIP = "clip"
    UPDATE = "update"
    PLANET_EXTRACT = "planet_extract"


class ToolStatus(str, Enum):
    """Classified completion of one tool run."""

    SUCCESS = "success"
    NOOP = "noop"
    KILLED = "killed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ToolOutcome:
    """Exactly one outcome is produced per started tool."""

    status: ToolStatus
    exit_code: int | None = None
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status is ToolStatus.SUCCESS
