"""Exceptions raised by the flow engine and its collaborators."""


class FlowError(Exception):
    """Base class for rejected flow operations.

    ``status_code`` is the HTTP status the API layer maps the error to.
    """

    status_code = 400

    def __init__(self, message: str, flow_id: str | None = None):
        super().__init__(message)
        self.flow_id = flow_id


class FlowNotFoundError(FlowError):
    status_code = 404


class FlowOwnershipError(FlowError):
    status_code = 403


class InvalidFlowStateError(FlowError):
    """Operation is not legal in the flow's current status."""

    status_code = 409


class RoundLimitError(FlowError):
    status_code = 409


class CorrelationMismatchError(FlowError):
    """A reply does not belong to the wait state on record."""

    status_code = 409


class FlowConflictError(FlowError):
    """A conditional write lost against a concurrent writer."""

    status_code = 409


class AgentNotFoundError(FlowError):
    status_code = 404


class PolicyError(Exception):
    """The decision policy produced output that cannot be acted upon."""
