"""
Analysis Store
Durable storage of analysis records with a cache-aside read path.

Cache keys:
    analysis:{id}              single record, ANALYSIS_CACHE_TTL_SECONDS
    owner-analyses:{owner_id}  owner's full list, OWNER_LIST_CACHE_TTL_SECONDS

Every mutation commits first and then invalidates both keys before returning.
A record owned by someone else is reported exactly like a missing record.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, List, Optional

from pydantic import ValidationError
from sqlalchemy import delete, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.errors import NotFoundOrUnauthorized, QuotaExceeded
from app.db.models.contract_analysis import ContractAnalysis
from app.schemas.analysis import AnalysisRecord, Feedback, Tier
from app.services.cache_service import DELETED_MARKER, CacheService, analysis_key, owner_list_key

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AnalysisStore:
    """Persists analysis records and keeps the cache consistent with them"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        cache: CacheService,
        free_tier_limit: Optional[int] = None,
        record_ttl: Optional[int] = None,
        list_ttl: Optional[int] = None
    ):
        """
        Initialize analysis store.

        Args:
            session_factory: Async session factory for the durable store
            cache: Cache service
            free_tier_limit: Max stored analyses for free owners (defaults to FREE_TIER_MAX_ANALYSES)
            record_ttl: TTL of analysis:{id} entries
            list_ttl: TTL of owner-analyses:{owner_id} entries
        """
        self.session_factory = session_factory
        self.cache = cache
        self.free_tier_limit = free_tier_limit if free_tier_limit is not None else settings.FREE_TIER_MAX_ANALYSES
        self.record_ttl = record_ttl or settings.ANALYSIS_CACHE_TTL_SECONDS
        self.list_ttl = list_ttl or settings.OWNER_LIST_CACHE_TTL_SECONDS
        self._owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(record: AnalysisRecord) -> ContractAnalysis:
        data = record.model_dump(mode="json")
        return ContractAnalysis(
            id=record.id,
            owner_id=record.owner_id,
            project_id=record.project_id,
            tier=record.tier.value,
            contract_text=record.contract_text,
            contract_type=record.contract_type,
            language=record.language,
            risks=data["risks"],
            opportunities=data["opportunities"],
            summary=record.summary,
            overall_score=record.overall_score,
            recommendations=data["recommendations"],
            key_clauses=data["key_clauses"],
            legal_compliance=record.legal_compliance,
            negotiation_points=data["negotiation_points"],
            contract_duration=record.contract_duration,
            termination_conditions=record.termination_conditions,
            financial_terms=data["financial_terms"],
            performance_metrics=data["performance_metrics"],
            specific_clauses=record.specific_clauses,
            expiration_date=record.expiration_date,
            degraded=record.degraded,
            feedback=data["feedback"],
            created_at=record.created_at,
        )

    @staticmethod
    def _to_record(row: ContractAnalysis) -> AnalysisRecord:
        return AnalysisRecord(
            id=row.id,
            owner_id=row.owner_id,
            project_id=row.project_id,
            tier=Tier(row.tier),
            contract_text=row.contract_text,
            contract_type=row.contract_type,
            language=row.language,
            risks=row.risks or [],
            opportunities=row.opportunities or [],
            summary=row.summary or "",
            overall_score=row.overall_score or 0,
            recommendations=row.recommendations or [],
            key_clauses=row.key_clauses or [],
            legal_compliance=row.legal_compliance or "",
            negotiation_points=row.negotiation_points or [],
            contract_duration=row.contract_duration or "",
            termination_conditions=row.termination_conditions or "",
            financial_terms=row.financial_terms or {},
            performance_metrics=row.performance_metrics or [],
            specific_clauses=row.specific_clauses or "",
            expiration_date=_aware(row.expiration_date),
            feedback=row.feedback,
            degraded=bool(row.degraded),
            created_at=_aware(row.created_at),
        )

    @staticmethod
    def _from_cache(data: Any) -> Optional[AnalysisRecord]:
        try:
            return AnalysisRecord.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed cached analysis: {e.error_count()} errors")
            return None

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _owner_lock(self, owner_id: str) -> AsyncIterator[None]:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner_id] = lock
        async with lock:
            yield

    @staticmethod
    async def _lock_owner_in_transaction(session: AsyncSession, owner_id: str) -> None:
        """Serialize inserts for one owner across processes (PostgreSQL only)."""
        if session.bind.dialect.name == "postgresql":
            await session.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:owner_id))"),
                {"owner_id": owner_id}
            )

    @staticmethod
    async def _count(session: AsyncSession, owner_id: str) -> int:
        result = await session.execute(
            select(func.count()).select_from(ContractAnalysis).where(ContractAnalysis.owner_id == owner_id)
        )
        return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(self, record: AnalysisRecord) -> str:
        """
        Insert a record, enforcing the free-tier quota inside the transaction.

        Args:
            record: Fully built analysis record

        Returns:
            The record id

        Raises:
            QuotaExceeded: If a free owner already has the maximum number of analyses
            CacheUnavailable: If the cache could not be invalidated after the insert
        """
        async with self._owner_lock(record.owner_id):
            async with self.session_factory() as session:
                async with session.begin():
                    await self._lock_owner_in_transaction(session, record.owner_id)
                    if record.tier == Tier.FREE:
                        count = await self._count(session, record.owner_id)
                        if count >= self.free_tier_limit:
                            raise QuotaExceeded(
                                f"Free users are limited to {self.free_tier_limit} contract analyses. "
                                "Please upgrade to premium for unlimited uploads."
                            )
                    session.add(self._to_row(record))

        await self.cache.invalidate(analysis_key(record.id), owner_list_key(record.owner_id))
        logger.info(f"Stored analysis {record.id} for owner {record.owner_id}")
        return record.id

    async def count_by_owner(self, owner_id: str) -> int:
        """Number of stored analyses, read from the durable store"""
        async with self.session_factory() as session:
            return await self._count(session, owner_id)

    async def get_uncached(self, analysis_id: str, owner_id: str) -> AnalysisRecord:
        """
        Read a record straight from the durable store.

        Raises:
            NotFoundOrUnauthorized: If the record is missing or not owned by owner_id
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(ContractAnalysis).where(
                    ContractAnalysis.id == analysis_id,
                    ContractAnalysis.owner_id == owner_id
                )
            )
            row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundOrUnauthorized()
        return self._to_record(row)

    async def get(self, analysis_id: str, owner_id: str) -> AnalysisRecord:
        """
        Read a record, cache first.

        Raises:
            NotFoundOrUnauthorized: If the record is missing or not owned by owner_id
        """
        cached = await self.cache.get_json(analysis_key(analysis_id))
        if cached == DELETED_MARKER:
            raise NotFoundOrUnauthorized()
        if cached is not None:
            record = self._from_cache(cached)
            if record is not None:
                if record.owner_id != owner_id:
                    raise NotFoundOrUnauthorized()
                return record

        record = await self.get_uncached(analysis_id, owner_id)
        await self.cache.set_json(
            analysis_key(analysis_id), record.model_dump(mode="json"), self.record_ttl, only_if_absent=True
        )
        return record

    async def list_by_owner(self, owner_id: str, project_id: Optional[str] = None) -> List[AnalysisRecord]:
        """
        List an owner's records, newest first, optionally for one project.

        The cache holds the owner's full list; the project filter is applied
        after reading it.
        """
        records: Optional[List[AnalysisRecord]] = None
        cached = await self.cache.get_json(owner_list_key(owner_id))
        if isinstance(cached, list):
            parsed = [self._from_cache(item) for item in cached]
            if all(record is not None for record in parsed):
                records = parsed

        if records is None:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(ContractAnalysis)
                    .where(ContractAnalysis.owner_id == owner_id)
                    .order_by(ContractAnalysis.created_at.desc())
                )
                records = [self._to_record(row) for row in result.scalars().all()]
            await self.cache.set_json(
                owner_list_key(owner_id),
                [record.model_dump(mode="json") for record in records],
                self.list_ttl
            )

        if project_id:
            records = [record for record in records if record.project_id == project_id]
        return records

    async def delete(self, analysis_id: str, owner_id: str) -> None:
        """
        Delete an owned record, mark its cache entry deleted and evict the owner list.

        Raises:
            NotFoundOrUnauthorized: If the record is missing or not owned by owner_id
            CacheUnavailable: If the cache could not be updated
        """
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    delete(ContractAnalysis).where(
                        ContractAnalysis.id == analysis_id,
                        ContractAnalysis.owner_id == owner_id
                    )
                )
                deleted = result.rowcount
        if not deleted:
            raise NotFoundOrUnauthorized()

        await self.cache.mark_deleted(analysis_key(analysis_id), self.record_ttl)
        await self.cache.invalidate(owner_list_key(owner_id))
        logger.info(f"Deleted analysis {analysis_id} for owner {owner_id}")

    async def attach_feedback(self, analysis_id: str, owner_id: str, feedback: Feedback) -> AnalysisRecord:
        """
        Attach owner feedback to a record.

        Returns:
            The updated record

        Raises:
            NotFoundOrUnauthorized: If the record is missing or not owned by owner_id
        """
        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    select(ContractAnalysis)
                    .where(
                        ContractAnalysis.id == analysis_id,
                        ContractAnalysis.owner_id == owner_id
                    )
                    .with_for_update()
                )
                row = result.scalar_one_or_none()
                if row is None:
                    raise NotFoundOrUnauthorized()
                row.feedback = feedback.model_dump(mode="json")
            record = self._to_record(row)

        await self.cache.invalidate(analysis_key(analysis_id), owner_list_key(owner_id))
        return record
