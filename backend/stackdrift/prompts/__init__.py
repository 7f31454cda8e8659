"""LLM prompts for various tasks."""

from stackdrift.prompts.policy_change import POLICY_CHANGE_PROMPT

__all__ = [
    "POLICY_CHANGE_PROMPT",
]
