"""Storage module."""

from .codec import flow_from_record, flow_to_record
from .storage import FlowStore, IFlowStore

__all__ = ["FlowStore", "IFlowStore", "flow_from_record", "flow_to_record"]
