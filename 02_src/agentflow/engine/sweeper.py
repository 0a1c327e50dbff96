"""Periodic sweep that moves overdue flows to ``timeout``."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..directory import IAgentDirectory
from ..errors import FlowConflictError
from ..logging_config import get_logger
from ..models import OPEN_STATUSES
from ..storage import IFlowStore
from .engine import FlowEngine

logger = get_logger(__name__)


@dataclass
class SweepResult:
    checked: int = 0
    timed_out: int = 0
    timed_out_ids: list[str] = field(default_factory=list)


class TimeoutSweeper:
    """Scans open flows of every known agent and times out overdue ones.

    Agents are the union of the directory and the agents that own stored
    flows, so flows of agents removed from the directory still expire.
    Running the sweep twice over the same state changes nothing the
    second time.
    """

    def __init__(self, engine: FlowEngine, directory: IAgentDirectory, storage: IFlowStore):
        self._engine = engine
        self._directory = directory
        self._storage = storage

    async def _agent_ids(self) -> list[str]:
        ids = {agent.id for agent in await self._directory.list_agents()}
        ids.update(await self._storage.list_agent_ids())
        return sorted(ids)

    async def process_timeouts(self, now: datetime | None = None) -> SweepResult:
        now = now or datetime.now(timezone.utc)
        result = SweepResult()

        for agent_id in await self._agent_ids():
            flows = await self._storage.list_flows(agent_id, OPEN_STATUSES)
            for flow in flows:
                result.checked += 1
                if not flow.is_overdue(now):
                    continue
                try:
                    if await self._engine.timeout_flow(flow.id, agent_id, now):
                        result.timed_out += 1
                        result.timed_out_ids.append(flow.id)
                except FlowConflictError:
                    logger.warning("Flow %s changed during the timeout sweep, skipping", flow.id)

        if result.timed_out:
            logger.info("Timed out %s of %s open flows", result.timed_out, result.checked)
        return result
