"""
Match Scorer.

Confidence of a (reference, unverified record) pair in [0, 1]:

    amount_score = max(0, 1 - |amount_delta| / 10)
    date_score   = max(0, 1 - |time_delta| / 24h)
    confidence   = 0.7 * amount_score + 0.3 * date_score

Amount dominates: invoice amounts are rarely ambiguous while OCR-parsed
timestamps are noisy.
"""

from typing import Iterable, Optional

from ..config import Settings, get_settings
from ..models import MatchCandidate, ReferenceRecord, UnverifiedRecord
from ..utils.dates import delta_ms


class MatchScorer:
    """Scores candidates and picks the best one of a source."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.amount_range = self.settings.amount_score_range
        self.window_ms = float(self.settings.candidate_window_ms)
        self.amount_weight = self.settings.amount_weight
        self.date_weight = self.settings.date_weight

    def score_deltas(self, amount_delta: float, time_delta_ms: float) -> float:
        amount_score = max(0.0, 1.0 - abs(amount_delta) / self.amount_range)
        date_score = max(0.0, 1.0 - abs(time_delta_ms) / self.window_ms)
        confidence = self.amount_weight * amount_score + self.date_weight * date_score
        return min(1.0, max(0.0, confidence))

    def score(self, reference: ReferenceRecord, record: UnverifiedRecord) -> float:
        return self.evaluate(reference, record).confidence

    def evaluate(self, reference: ReferenceRecord, record: UnverifiedRecord) -> MatchCandidate:
        amount_delta = reference.amount - record.amount
        time_delta = delta_ms(reference.occurred_at, record.occurred_at)
        return MatchCandidate(
            reference_type=reference.source,
            reference_id=reference.id,
            amount_delta=amount_delta,
            time_delta=time_delta,
            confidence=self.score_deltas(amount_delta, time_delta),
            reference=reference,
        )

    def best_candidate(
        self,
        references: Iterable[ReferenceRecord],
        record: UnverifiedRecord,
    ) -> Optional[MatchCandidate]:
        """Highest-confidence candidate; on ties the first seen wins."""
        best = None
        for reference in references:
            candidate = self.evaluate(reference, record)
            if best is None or candidate.confidence > best.confidence:
                best = candidate
        return best
