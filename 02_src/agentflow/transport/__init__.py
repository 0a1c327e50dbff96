"""Transport module."""

from .http import HttpTransport
from .outbox import OutboxTransport
from .transport import IMessageTransport, IToolTransport, format_request_subject

__all__ = [
    "IMessageTransport",
    "IToolTransport",
    "OutboxTransport",
    "HttpTransport",
    "format_request_subject",
]
