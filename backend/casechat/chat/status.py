"""Session status enum and the single transition table.

A chat moves ``started -> in_progress`` and then into exactly one of the
four terminal states. Nothing leaves a terminal state.
"""

from enum import Enum

from ..core.errors import InvalidStateError


class ChatStatus(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    ABANDONED = "abandoned"
    CANCELED = "canceled"
    KILLED = "killed"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


LIVE_STATUSES = frozenset({ChatStatus.STARTED, ChatStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset({
    ChatStatus.ABANDONED,
    ChatStatus.CANCELED,
    ChatStatus.KILLED,
    ChatStatus.COMPLETED,
})

# Plain string values for SQL ``IN`` clauses.
LIVE_VALUES = tuple(s.value for s in LIVE_STATUSES)

TRANSITIONS: dict[ChatStatus, frozenset[ChatStatus]] = {
    ChatStatus.STARTED: frozenset({ChatStatus.IN_PROGRESS}) | TERMINAL_STATUSES,
    ChatStatus.IN_PROGRESS: TERMINAL_STATUSES,
    ChatStatus.ABANDONED: frozenset(),
    ChatStatus.CANCELED: frozenset(),
    ChatStatus.KILLED: frozenset(),
    ChatStatus.COMPLETED: frozenset(),
}


def can_transition(current: ChatStatus | str, target: ChatStatus | str) -> bool:
    """Return True when ``current -> target`` is an edge of the state machine."""
    current = ChatStatus(current)
    target = ChatStatus(target)
    if current == target == ChatStatus.IN_PROGRESS:
        # Heartbeats re-assert in_progress.
        return True
    return target in TRANSITIONS[current]


def require_transition(session_id: str, current: ChatStatus | str, target: ChatStatus | str, action: str) -> None:
    """Raise InvalidStateError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidStateError(session_id, ChatStatus(current).value, action)


class PositionType(str, Enum):
    INITIAL = "initial"
    FINAL = "final"


class RecordedBy(str, Enum):
    STUDENT = "student"
    AI = "ai"
    INSTRUCTOR = "instructor"


class PositionMethod(str, Enum):
    EXPLICIT = "explicit"
    AI_INFERRED = "ai_inferred"
    INSTRUCTOR_MANUAL = "instructor_manual"

    @classmethod
    def for_recorder(cls, recorded_by: RecordedBy | str) -> "PositionMethod":
        return {
            RecordedBy.STUDENT: cls.EXPLICIT,
            RecordedBy.AI: cls.AI_INFERRED,
            RecordedBy.INSTRUCTOR: cls.INSTRUCTOR_MANUAL,
        }[RecordedBy(recorded_by)]
