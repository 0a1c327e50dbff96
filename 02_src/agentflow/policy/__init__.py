"""Decision policy module."""

from .policy import IDecisionPolicy, LLMDecisionPolicy, parse_decision
from .prompt import build_decision_prompt, summarize_actions, summarize_information

__all__ = [
    "IDecisionPolicy",
    "LLMDecisionPolicy",
    "parse_decision",
    "build_decision_prompt",
    "summarize_actions",
    "summarize_information",
]
