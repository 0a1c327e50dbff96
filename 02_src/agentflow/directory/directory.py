"""Agent directory: read-only lookup of agent profiles."""

import json
from pathlib import Path
from typing import Iterable, Protocol

from ..logging_config import get_logger
from ..models import AgentProfile, MultiRoundConfig

logger = get_logger(__name__)


class IAgentDirectory(Protocol):
    """Resolves agent ids and addresses to profiles."""

    async def get_agent(self, agent_id: str) -> AgentProfile | None:
        """Get an agent by ID."""
        ...

    async def find_by_email(self, email: str) -> AgentProfile | None:
        """Get an agent by email address (case-insensitive)."""
        ...

    async def list_agents(self) -> list[AgentProfile]:
        """All known agents."""
        ...


def profile_from_dict(data: dict) -> AgentProfile:
    """Build a profile from an ``agents.json`` entry."""
    mr = data.get("multi_round") or data.get("multiRoundConfig") or {}
    return AgentProfile(
        id=data["id"],
        name=data.get("name", data["id"]),
        email=data["email"],
        role=data.get("role", ""),
        prompt=data.get("prompt"),
        team_id=data.get("team_id"),
        tool_server_ids=list(data.get("tool_server_ids") or []),
        multi_round=MultiRoundConfig(
            max_rounds=mr.get("max_rounds"),
            timeout_minutes=mr.get("timeout_minutes"),
            can_message_agents=bool(mr.get("can_message_agents", False)),
            allowed_agent_emails=list(mr.get("allowed_agent_emails") or []),
        ),
    )


class AgentDirectory:
    """In-memory agent directory."""

    def __init__(self, agents: Iterable[AgentProfile] = ()):
        self._agents: dict[str, AgentProfile] = {}
        for agent in agents:
            self.register(agent)

    @classmethod
    def from_json_file(cls, path: str | Path) -> "AgentDirectory":
        """Load profiles from a JSON list; a missing file gives an empty directory."""
        path = Path(path)
        if not path.exists():
            logger.warning("Agents file %s not found, directory is empty", path)
            return cls()

        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)

        agents = [profile_from_dict(entry) for entry in entries if entry.get("id")]
        logger.info("Loaded %s agents from %s", len(agents), path)
        return cls(agents)

    def register(self, agent: AgentProfile) -> None:
        """Add or replace an agent."""
        self._agents[agent.id] = agent

    async def get_agent(self, agent_id: str) -> AgentProfile | None:
        return self._agents.get(agent_id)

    async def find_by_email(self, email: str) -> AgentProfile | None:
        wanted = email.strip().lower()
        for agent in self._agents.values():
            if agent.email.strip().lower() == wanted:
                return agent
        return None

    async def list_agents(self) -> list[AgentProfile]:
        return list(self._agents.values())
