"""Multi-round tool orchestration."""

from hustle.orchestrator.core import ChatStream, Orchestrator, RoundState

__all__ = ["ChatStream", "Orchestrator", "RoundState"]
