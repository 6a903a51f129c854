from .orchestrator import InboundMessage, ResponseOrchestrator, TurnOutcome, TurnState

__all__ = ["InboundMessage", "ResponseOrchestrator", "TurnOutcome", "TurnState"]
