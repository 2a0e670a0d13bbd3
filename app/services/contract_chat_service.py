"""
Contract Chat Service
Answers follow-up questions about a stored analysis and suggests what to ask next.
"""

import logging
import re
from typing import List, Optional, Pattern, Sequence, Tuple

from app.core.config import settings
from app.core.errors import ValidationFailure
from app.schemas.analysis import AnalysisRecord, AskResponse
from app.services.analysis_store import AnalysisStore
from app.services.llm_service import TextGenerator, generate_text
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

NOT_RELATED_PHRASE = "not related to the contract"
LEGAL_ADVICE_PHRASE = "recommend consulting with a legal professional"

MAX_SUGGESTIONS = 3
MAX_QUESTION_CHARS = 2000

CHAT_SYSTEM_MESSAGE = (
    "You are a legal assistant answering questions about one specific contract. "
    "Base every answer on the contract text and analysis you are given."
)

GENERIC_SUGGESTIONS = (
    "What are the key points I should be aware of in this contract?",
    "Are there any unusual or potentially concerning clauses in this contract?",
    "How does this contract compare to industry standards?",
)


def _keyword_pattern(keyword: str) -> Pattern:
    # Short keywords ("ip") must be whole words; longer ones match anywhere
    escaped = re.escape(keyword)
    if len(keyword) <= 3:
        return re.compile(rf"\b{escaped}\b", re.IGNORECASE)
    return re.compile(escaped, re.IGNORECASE)


def _topic(keywords: Sequence[str], suggestion: str) -> Tuple[List[Pattern], str]:
    return [_keyword_pattern(keyword) for keyword in keywords], suggestion


# Ordered: suggestions are emitted in this order
SUGGESTION_RULES = [
    _topic(("compensation", "salary"), "Can you explain more about the compensation structure?"),
    _topic(("termination", "end of contract"), "What are the specific conditions for contract termination?"),
    _topic(("intellectual property", "ip"), "Can you elaborate on the intellectual property clauses?"),
    _topic(("benefits",), "What other benefits are included in the contract?"),
    _topic(("non-compete",), "Can you explain the non-compete clause in more detail?"),
    _topic(("performance",), "Are there any performance-related clauses or metrics in the contract?"),
]


def _mentions(text: str, patterns: Sequence[Pattern]) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def generate_follow_up_suggestions(answer: str, question: str) -> List[str]:
    """
    Suggest follow-up questions for topics the answer raised but the question did not.

    Args:
        answer: Model answer
        question: The question that was asked

    Returns:
        Up to three suggestions; three generic ones when no topic applies
    """
    suggestions = [
        suggestion
        for patterns, suggestion in SUGGESTION_RULES
        if not _mentions(question or "", patterns) and _mentions(answer or "", patterns)
    ]
    if not suggestions:
        suggestions = list(GENERIC_SUGGESTIONS)
    return suggestions[:MAX_SUGGESTIONS]


def build_context_summary(record: AnalysisRecord, max_items: Optional[int] = None) -> str:
    """Bounded summary of a stored analysis used to ground answers"""
    max_items = max_items or settings.QA_CONTEXT_MAX_ITEMS
    lines = [
        f"Contract type: {record.contract_type}",
        f"Overall score: {record.overall_score}/100",
    ]
    if record.summary:
        lines.append(f"Summary: {record.summary}")
    if record.key_clauses:
        lines.append("Key clauses:")
        lines.extend(f"- {clause}" for clause in record.key_clauses[:max_items])
    if record.contract_duration:
        lines.append(f"Contract duration: {record.contract_duration}")
    if record.financial_terms.description or record.financial_terms.details:
        lines.append(f"Financial terms: {record.financial_terms.description}")
        lines.extend(f"- {detail}" for detail in record.financial_terms.details[:max_items])
    if record.termination_conditions:
        lines.append(f"Termination conditions: {record.termination_conditions}")
    return "\n".join(lines)


def build_chat_prompt(record: AnalysisRecord, question: str) -> str:
    return f"""Answer the question below about this contract.

Analysis of the contract:
{build_context_summary(record)}

Full contract text:
{record.contract_text}

Rules:
- Answer only from the contract and its analysis.
- If the question has nothing to do with this contract, say "This question is {NOT_RELATED_PHRASE}." and stop.
- If the answer depends on legal interpretation beyond the text, end with "I {LEGAL_ADVICE_PHRASE}."
- Answer in the language of the contract.

Question: {question}"""


class ContractChatService:
    """Question answering grounded in one stored analysis"""

    def __init__(self, llm: TextGenerator, store: AnalysisStore, rate_limiter: Optional[RateLimiter] = None):
        self.llm = llm
        self.store = store
        self.rate_limiter = rate_limiter

    async def ask(self, analysis_id: str, owner_id: str, question: str, client_id: Optional[str] = None) -> AskResponse:
        """
        Answer a question about an owned analysis.

        Ownership is checked against the durable store, never the cache.

        Args:
            analysis_id: Analysis record id
            owner_id: Asking owner
            question: Free-text question
            client_id: Rate-limit identity (defaults to owner_id)

        Returns:
            Answer with derived signals and follow-up suggestions

        Raises:
            ValidationFailure: If the question is empty or too long
            NotFoundOrUnauthorized: If the record is missing or not owned by owner_id
            GenerationFailure: If the model call fails
        """
        question = (question or "").strip()
        if not question:
            raise ValidationFailure("A valid question is required")
        if len(question) > MAX_QUESTION_CHARS:
            raise ValidationFailure(f"Question must be at most {MAX_QUESTION_CHARS} characters")

        if self.rate_limiter is not None:
            await self.rate_limiter.check("ask", client_id or owner_id)

        record = await self.store.get_uncached(analysis_id, owner_id)
        answer = await generate_text(self.llm, build_chat_prompt(record, question), system_message=CHAT_SYSTEM_MESSAGE)
        answer = answer.strip()

        lowered = answer.lower()
        response = AskResponse(
            answer=answer,
            is_contract_related=NOT_RELATED_PHRASE not in lowered,
            requires_legal_advice=LEGAL_ADVICE_PHRASE in lowered,
            suggestions=generate_follow_up_suggestions(answer, question),
        )
        logger.info(
            f"Answered question on analysis {analysis_id} "
            f"(related={response.is_contract_related}, legal_advice={response.requires_legal_advice})"
        )
        return response
