"""Flow engine module."""

from .engine import FlowEngine, IFlowEngine
from .formatting import (
    MAX_ROUNDS_RESPONSE,
    TIMEOUT_MESSAGE,
    format_failure,
    format_final_response,
    format_forwarded_message,
    requester_from_sender,
)
from .locks import FlowLocks
from .sweeper import SweepResult, TimeoutSweeper

__all__ = [
    "FlowEngine",
    "IFlowEngine",
    "FlowLocks",
    "TimeoutSweeper",
    "SweepResult",
    "MAX_ROUNDS_RESPONSE",
    "TIMEOUT_MESSAGE",
    "format_failure",
    "format_final_response",
    "format_forwarded_message",
    "requester_from_sender",
]
