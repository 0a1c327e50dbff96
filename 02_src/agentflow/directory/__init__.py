"""Agent directory module."""

from .directory import AgentDirectory, IAgentDirectory, profile_from_dict

__all__ = ["AgentDirectory", "IAgentDirectory", "profile_from_dict"]
