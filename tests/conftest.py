"""Shared fixtures: in-memory redis fake, scripted generators and a SQLite-backed store."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine

from app.db.base import Base, build_session_factory
from app.db.models import contract_analysis  # noqa: F401
from app.schemas.analysis import AnalysisRecord, Tier
from app.services.analysis_store import AnalysisStore
from app.services.cache_service import CacheService
from app.services.contract_analysis_pipeline import ContractAnalysisPipeline
from app.services.detection_service import DetectionService
from app.services.rate_limiter import RateLimiter


class FakeRedis:
    """Subset of redis.asyncio.Redis (decode_responses=True) kept in a dict."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail_on: Set[str] = set()
        self.calls: List[tuple] = []

    def _maybe_fail(self, op: str) -> None:
        self.calls.append((op,))
        if op in self.fail_on:
            raise RedisConnectionError(f"{op} failed")

    async def get(self, key: str) -> Optional[str]:
        self._maybe_fail("get")
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False) -> Optional[bool]:
        self._maybe_fail("set")
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._maybe_fail("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        self._maybe_fail("incr")
        value = int(self.data.get(key, "0")) + 1
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._maybe_fail("expire")
        self.ttls[key] = seconds
        return key in self.data

    async def ttl(self, key: str) -> int:
        self._maybe_fail("ttl")
        if key not in self.data:
            return -2
        return self.ttls.get(key, -1)

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self) -> None:
        pass


class FakePipeline:
    """Queues commands and runs them against FakeRedis on execute()."""

    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands: List[tuple] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands = []

    def incr(self, key: str) -> "FakePipeline":
        self.commands.append(("incr", key))
        return self

    def ttl(self, key: str) -> "FakePipeline":
        self.commands.append(("ttl", key))
        return self

    async def execute(self) -> List[Any]:
        return [await getattr(self.redis, name)(key) for name, key in self.commands]


class ScriptedLLM:
    """
    Text generator answering from a script.

    Detection prompts get `language` / `contract_type`; every other prompt
    consumes the next entry of `responses` (an exception entry is raised).
    """

    def __init__(
        self,
        responses: Optional[List[Any]] = None,
        language: Any = "en",
        contract_type: Any = "Employment",
        delay: float = 0.0
    ):
        self.responses = list(responses or [])
        self.language = language
        self.contract_type = contract_type
        self.delay = delay
        self.prompts: List[str] = []
        self.system_messages: List[Optional[str]] = []

    @property
    def generation_calls(self) -> int:
        return sum(1 for prompt in self.prompts if not self._is_detection(prompt))

    @staticmethod
    def _is_detection(prompt: str) -> bool:
        return prompt.startswith("Identify the")

    @staticmethod
    def _answer(value: Any) -> str:
        if isinstance(value, BaseException):
            raise value
        return value

    async def generate(self, prompt: str, system_message: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.system_messages.append(system_message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if prompt.startswith("Identify the language"):
            return self._answer(self.language)
        if prompt.startswith("Identify the type"):
            return self._answer(self.contract_type)
        if not self.responses:
            raise AssertionError("ScriptedLLM ran out of responses")
        return self._answer(self.responses.pop(0))


def analysis_json(**overrides: Any) -> str:
    """Well-formed premium-shaped model answer"""
    data = {
        "risks": [
            {"risk": "Broad non-compete", "explanation": "Covers all of Europe for 5 years", "severity": "high"},
            {"risk": "Unpaid overtime", "explanation": "Overtime included in salary", "severity": "medium"},
        ],
        "opportunities": [
            {"opportunity": "Stock options", "explanation": "Vesting over 4 years", "impact": "high"},
        ],
        "summary": "Standard employment agreement with a strict non-compete.",
        "recommendations": ["Narrow the non-compete"],
        "keyClauses": ["Non-compete", "Confidentiality"],
        "legalCompliance": "Mostly compliant",
        "negotiationPoints": ["Overtime pay"],
        "contractDuration": "2 years",
        "terminationConditions": "Three months notice",
        "financialTerms": {"description": "Fixed salary", "details": ["EUR 60,000 per year"]},
        "performanceMetrics": ["Quarterly review"],
        "specificClauses": "Employee inventions belong to the employer",
        "overallScore": 62,
    }
    data.update(overrides)
    return json.dumps(data)


def make_record(
    owner_id: str = "owner-1",
    tier: Tier = Tier.FREE,
    project_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
    **fields: Any
) -> AnalysisRecord:
    values = dict(
        id=str(uuid4()),
        owner_id=owner_id,
        project_id=project_id,
        tier=tier,
        contract_text="This Agreement is made between the parties.",
        contract_type="Employment",
        language="en",
        summary="A short summary",
        overall_score=70,
        created_at=created_at or datetime.now(timezone.utc),
    )
    values.update(fields)
    return AnalysisRecord(**values)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis) -> CacheService:
    return CacheService(fake_redis, invalidation_attempts=2)


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'analyses.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory, cache) -> AnalysisStore:
    return AnalysisStore(session_factory, cache, free_tier_limit=3, record_ttl=3600, list_ttl=300)


@pytest.fixture
def rate_limiter(cache) -> RateLimiter:
    return RateLimiter(cache, max_requests=10, window_seconds=900)


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def pipeline(llm, store, cache, rate_limiter) -> ContractAnalysisPipeline:
    return ContractAnalysisPipeline(
        llm=llm,
        store=store,
        cache=cache,
        rate_limiter=rate_limiter,
        detection=DetectionService(llm, sample_chars=500),
        free_tier_limit=3,
    )


@pytest.fixture
def past():
    """Factory for distinct, increasing timestamps in the past"""
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return lambda minutes: base + timedelta(minutes=minutes)


@pytest.fixture
def model_answer():
    return analysis_json


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def scripted_llm():
    return ScriptedLLM
