"""
Detection Service
Classifies a document's language and contract type with short model calls
on a bounded prefix of the text.
"""

import logging
import re
from typing import Optional

from app.core.config import settings
from app.core.errors import GenerationFailure
from app.services.llm_service import TextGenerator, generate_text
from app.services.prompt_builder import build_contract_type_prompt, build_language_prompt

logger = logging.getLogger(__name__)

UNKNOWN_CONTRACT_TYPE = "Unknown"
DEFAULT_LANGUAGE = "en"

# Stop-word heuristic used when the model's language answer is unusable
LANGUAGE_PATTERNS = {
    "en": re.compile(r"\b(the|and|or|but|shall|of)\b", re.IGNORECASE),
    "fr": re.compile(r"\b(le|la|les|et|ou|mais|des)\b", re.IGNORECASE),
    "es": re.compile(r"\b(el|los|las|y|pero|del)\b", re.IGNORECASE),
    "de": re.compile(r"\b(der|die|das|und|oder|aber)\b", re.IGNORECASE),
}

_ISO_CODE_RE = re.compile(r"^[a-z]{2}$")


def guess_language(text: str) -> str:
    """
    Guess the language from stop-word frequency.

    Args:
        text: Sample text

    Returns:
        ISO 639-1 code, "en" when nothing matches
    """
    best, best_hits = DEFAULT_LANGUAGE, 0
    for language, pattern in LANGUAGE_PATTERNS.items():
        hits = len(pattern.findall(text or ""))
        if hits > best_hits:
            best, best_hits = language, hits
    return best


def normalize_language_code(answer: str) -> Optional[str]:
    """Trim, lower-case and strip punctuation; None if not a two-letter code"""
    cleaned = re.sub(r"[^a-z]", " ", (answer or "").strip().lower()).split()
    if not cleaned:
        return None
    code = cleaned[0]
    return code if _ISO_CODE_RE.match(code) else None


def normalize_contract_type(answer: str) -> str:
    """First non-empty line of the answer without quotes, markdown emphasis or a final period"""
    lines = [line for line in (answer or "").splitlines() if line.strip()]
    if not lines:
        return UNKNOWN_CONTRACT_TYPE
    cleaned = lines[0].strip().strip("\"'`*").strip().rstrip(".").strip()
    return cleaned or UNKNOWN_CONTRACT_TYPE


class DetectionService:
    """Language and contract-type classifier"""

    def __init__(self, llm: TextGenerator, sample_chars: Optional[int] = None):
        """
        Initialize detection service.

        Args:
            llm: Text generator
            sample_chars: Prefix length sent to the model (defaults to DETECTION_SAMPLE_CHARS)
        """
        self.llm = llm
        self.sample_chars = sample_chars or settings.DETECTION_SAMPLE_CHARS

    def _sample(self, text: str) -> str:
        return (text or "")[:self.sample_chars]

    async def detect_language(self, text: str) -> str:
        """
        Detect the document language.

        Returns:
            ISO 639-1 code

        Raises:
            GenerationFailure: If the model call fails
        """
        sample = self._sample(text)
        answer = await generate_text(self.llm, build_language_prompt(sample))
        code = normalize_language_code(answer)
        if code is None:
            code = guess_language(sample)
            logger.info(f"Unusable language answer {answer[:20]!r}, heuristic chose {code}")
        return code

    async def detect_contract_type(self, text: str) -> str:
        """
        Detect the contract category.

        Never fails: an empty answer or a failed model call yields "Unknown".
        """
        try:
            answer = await generate_text(self.llm, build_contract_type_prompt(self._sample(text)))
        except GenerationFailure as e:
            logger.warning(f"Contract type detection failed, using {UNKNOWN_CONTRACT_TYPE}: {e.message}")
            return UNKNOWN_CONTRACT_TYPE
        return normalize_contract_type(answer)
