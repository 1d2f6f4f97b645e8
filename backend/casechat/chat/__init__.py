"""Chat-session core: state machine, timer, sweeper, eligibility, positions."""

from .status import ChatStatus, PositionMethod, PositionType, RecordedBy

__all__ = ["ChatStatus", "PositionMethod", "PositionType", "RecordedBy"]
