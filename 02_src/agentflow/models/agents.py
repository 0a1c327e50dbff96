"""Agent-related data models."""

from dataclasses import dataclass, field


@dataclass
class MultiRoundConfig:
    """Per-agent limits and permissions for multi-round flows."""

    max_rounds: int | None = None
    timeout_minutes: int | None = None
    can_message_agents: bool = False
    allowed_agent_emails: list[str] = field(default_factory=list)

    def may_contact(self, email: str) -> bool:
        """Check the allow-list; an empty list allows every agent."""
        if not self.can_message_agents:
            return False
        if not self.allowed_agent_emails:
            return True
        wanted = email.strip().lower()
        return any(a.strip().lower() == wanted for a in self.allowed_agent_emails)


@dataclass
class AgentProfile:
    """Directory entry for an agent."""

    id: str
    name: str
    email: str
    role: str = ""
    prompt: str | None = None
    team_id: str | None = None
    tool_server_ids: list[str] = field(default_factory=list)
    multi_round: MultiRoundConfig = field(default_factory=MultiRoundConfig)
