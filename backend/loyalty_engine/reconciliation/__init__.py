"""Reconciliation engine components."""

from .candidate_finder import CandidateFinder
from .scorer import MatchScorer
from .events import EventDispatcher
from .ledger import LedgerSideEffects
from .orchestrator import ReconciliationOrchestrator
from .review import ManualReviewService

__all__ = [
    "CandidateFinder",
    "MatchScorer",
    "EventDispatcher",
    "LedgerSideEffects",
    "ReconciliationOrchestrator",
    "ManualReviewService",
]
