"""
Process-wide service handles.

Clients (redis, OpenAI, Mistral, the database engine) are created once on
first use and shared by every request.
"""

import logging
from functools import lru_cache
from typing import Optional

from redis.asyncio import Redis

from app.core.config import settings
from app.db.base import dispose_engine, get_session_factory
from app.services.analysis_store import AnalysisStore
from app.services.cache_service import CacheService
from app.services.contract_analysis_pipeline import ContractAnalysisPipeline
from app.services.contract_chat_service import ContractChatService
from app.services.detection_service import DetectionService
from app.services.llm_service import LLMService
from app.services.rate_limiter import RateLimiter
from app.services.text_extraction_service import TextExtractionService

logger = logging.getLogger(__name__)


@lru_cache
def get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)


@lru_cache
def get_llm_service() -> LLMService:
    return LLMService()


@lru_cache
def get_text_extractor() -> Optional[TextExtractionService]:
    if not settings.MISTRAL_API_KEY:
        logger.warning("MISTRAL_API_KEY not set, PDF uploads are disabled")
        return None
    return TextExtractionService()


@lru_cache
def get_cache_service() -> CacheService:
    return CacheService(get_redis())


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_cache_service())


@lru_cache
def get_analysis_store() -> AnalysisStore:
    return AnalysisStore(get_session_factory(), get_cache_service())


@lru_cache
def get_pipeline() -> ContractAnalysisPipeline:
    llm = get_llm_service()
    return ContractAnalysisPipeline(
        llm=llm,
        store=get_analysis_store(),
        cache=get_cache_service(),
        rate_limiter=get_rate_limiter(),
        detection=DetectionService(llm),
        extractor=get_text_extractor(),
    )


@lru_cache
def get_chat_service() -> ContractChatService:
    return ContractChatService(get_llm_service(), get_analysis_store(), get_rate_limiter())


async def close_resources() -> None:
    """Close shared clients created by this module"""
    if get_llm_service.cache_info().currsize:
        await get_llm_service().close()
    if get_redis.cache_info().currsize:
        await get_redis().aclose()
    await dispose_engine()

    for factory in (
        get_redis, get_llm_service, get_text_extractor, get_cache_service,
        get_rate_limiter, get_analysis_store, get_pipeline, get_chat_service,
    ):
        factory.cache_clear()
