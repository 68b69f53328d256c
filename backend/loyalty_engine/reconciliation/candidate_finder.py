"""
Candidate Finder.

Pulls reference records that plausibly correspond to an unverified record,
independently from each reference source:

- same user
- same store, when the source models stores
- amount within +/- amount_tolerance (0.01)
- date within +/- candidate_window_hours (24h)

Lookups are bounded by a timeout and retried on transient failures.
"""

import asyncio
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import Settings, get_settings
from ..exceptions import NotFoundError, TransientError
from ..models import RecordKind, ReferenceRecord, ReferenceSource, UnverifiedRecord
from ..storage.base import ReferenceQuery, ReferenceRecordSource

logger = structlog.get_logger()


class CandidateFinder:
    """Queries every configured reference source for match candidates."""

    def __init__(
        self,
        sources: Iterable[ReferenceRecordSource],
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.sources: Dict[ReferenceSource, ReferenceRecordSource] = {}
        for source in sources:
            self.sources[source.source_type] = source

    def sources_for(self, kind: RecordKind) -> List[ReferenceSource]:
        """Sources an unverified record of this kind is matched against."""
        return [
            source_type for source_type in self.sources
            if source_type.value != kind.value
        ]

    def build_query(
        self,
        record: UnverifiedRecord,
        models_store: bool = True,
    ) -> ReferenceQuery:
        tolerance = self.settings.amount_tolerance
        window = timedelta(hours=self.settings.candidate_window_hours)
        return ReferenceQuery(
            user_id=record.user_id,
            store_id=record.store_id if models_store else None,
            min_amount=record.amount - tolerance,
            max_amount=record.amount + tolerance,
            start=record.occurred_at - window,
            end=record.occurred_at + window,
        )

    async def find(
        self,
        record: UnverifiedRecord,
        source_type: ReferenceSource,
    ) -> List[ReferenceRecord]:
        """
        Candidates from one source. An empty list is a valid outcome.

        Raises:
            NotFoundError: the source is not configured
            TransientError: the source timed out on every attempt
        """
        source = self.sources.get(source_type)
        if source is None:
            raise NotFoundError(
                f"Reference source not configured: {source_type.value}",
                {"source": source_type.value},
            )

        query = self.build_query(record, models_store=source.models_store)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.lookup_retry_attempts),
            wait=wait_exponential(
                multiplier=self.settings.lookup_retry_wait_seconds,
                max=self.settings.lookup_retry_wait_seconds * 10,
            ),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
        ):
            with attempt:
                candidates = await self._query(source, query)

        logger.debug(
            "Candidates found",
            record_id=record.id,
            source=source_type.value,
            count=len(candidates),
        )
        return candidates

    async def find_all(
        self,
        record: UnverifiedRecord,
        source_types: Optional[Iterable[ReferenceSource]] = None,
    ) -> Dict[ReferenceSource, List[ReferenceRecord]]:
        """Candidates from each source, in source registration order."""
        if source_types is None:
            source_types = self.sources_for(record.kind)
        results = {}
        for source_type in source_types:
            results[source_type] = await self.find(record, source_type)
        return results

    async def _query(
        self,
        source: ReferenceRecordSource,
        query: ReferenceQuery,
    ) -> List[ReferenceRecord]:
        try:
            return list(await asyncio.wait_for(
                source.find_candidates(query),
                timeout=self.settings.lookup_timeout_seconds,
            ))
        except asyncio.TimeoutError:
            logger.warning(
                "Reference lookup timed out",
                source=source.source_type.value,
                timeout=self.settings.lookup_timeout_seconds,
            )
            raise TransientError(
                f"Lookup on {source.source_type.value} timed out",
                {"source": source.source_type.value},
            )
