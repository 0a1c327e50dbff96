"""Inbound routing module."""

from .router import InboundEmail, InboundResult, InboundRouter

__all__ = ["InboundEmail", "InboundResult", "InboundRouter"]
