"""
Health check endpoint
"""

from fastapi import APIRouter
from app.core.config import settings

router = APIRouter()


@router.get("")
async def health():
    """
    Health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "llm_configured": bool(settings.OPENAI_API_KEY),
        "llm_model": settings.OPENAI_MODEL,
        "text_extraction_configured": bool(settings.MISTRAL_API_KEY),
        "database_configured": bool(settings.DATABASE_URL),
        "api_key_required": bool(settings.API_KEY)
    }
