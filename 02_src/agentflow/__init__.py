"""Agent flow orchestration engine."""

from .app import Application
from .engine import FlowEngine, TimeoutSweeper
from .inbound import InboundEmail, InboundRouter

__all__ = ["Application", "FlowEngine", "TimeoutSweeper", "InboundEmail", "InboundRouter"]
