"""Write calls against the settlement engine."""

from .orchestrator import ClaimFailure, ClaimOrchestrator, ClaimSummary

__all__ = ["ClaimFailure", "ClaimOrchestrator", "ClaimSummary"]
