"""planloop: a plan, execute, retry and replan task orchestrator."""

__version__ = "0.1.0"
