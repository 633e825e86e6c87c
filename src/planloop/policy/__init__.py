"""Agent policy model and loaders."""

from .agent_policy import AgentPolicy, PolicyLoadError, default_agent_policy, load_policy

__all__ = ["AgentPolicy", "PolicyLoadError", "default_agent_policy", "load_policy"]
