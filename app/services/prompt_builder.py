"""
Prompt Builder
Tier- and type-specific instruction templates for contract analysis,
language/type detection and follow-up questions.
"""

from typing import Optional

from app.schemas.analysis import Tier


ANALYSIS_SYSTEM_MESSAGE = (
    "You are an experienced contract analyst. You read contracts carefully and "
    "report risks and opportunities for the party who uploaded the contract. "
    "You always answer with a single valid JSON object and nothing else."
)

PREMIUM_TEMPLATE = """Analyze the following {contract_type} contract and provide:
1. A list of at least 10 potential risks for the party receiving the contract, each with a brief explanation and severity level (low, medium, high).
2. A list of at least 10 potential opportunities or benefits, each with a brief explanation and impact level (low, medium, high).
3. A comprehensive summary of the contract, including key terms and conditions.
4. Recommendations for improving the contract from the receiving party's perspective.
5. A list of key clauses in the contract.
6. An assessment of the contract's legal compliance.
7. A list of potential negotiation points.
8. The contract duration or term.
9. A summary of termination conditions.
10. A breakdown of the compensation or financial terms.
11. Any performance metrics or KPIs mentioned.
12. A summary of clauses specific to a {contract_type} contract.
13. An overall score from 1 to 100 for how favorable the contract is.

Format your response as a JSON object with the following structure:
{{
  "risks": [{{"risk": "Risk description", "explanation": "Brief explanation", "severity": "low|medium|high"}}],
  "opportunities": [{{"opportunity": "Opportunity description", "explanation": "Brief explanation", "impact": "low|medium|high"}}],
  "summary": "Comprehensive summary of the contract",
  "recommendations": ["Recommendation 1", "Recommendation 2"],
  "keyClauses": ["Clause 1", "Clause 2"],
  "legalCompliance": "Assessment of legal compliance",
  "negotiationPoints": ["Point 1", "Point 2"],
  "contractDuration": "Duration of the contract",
  "terminationConditions": "Summary of termination conditions",
  "financialTerms": {{"description": "Overview of compensation or financial terms", "details": ["Detail 1", "Detail 2"]}},
  "performanceMetrics": ["Metric 1", "Metric 2"],
  "specificClauses": "Summary of clauses specific to this contract type",
  "overallScore": 75
}}"""

FREE_TEMPLATE = """Analyze the following {contract_type} contract and provide:
1. A list of up to 6 potential risks for the party receiving the contract, each with a brief explanation.
2. A list of up to 6 potential opportunities or benefits, each with a brief explanation.
3. A brief summary of the contract.
4. An overall score from 1 to 100 for how favorable the contract is.

Format your response as a JSON object with the following structure:
{{
  "risks": [{{"risk": "Risk description", "explanation": "Brief explanation"}}],
  "opportunities": [{{"opportunity": "Opportunity description", "explanation": "Brief explanation"}}],
  "summary": "Brief summary of the contract",
  "overallScore": 75
}}"""

OUTPUT_RULES = """
Important:
- Respond with a single JSON object only. Do not add any text before or after it and do not wrap it in markdown code fences.
- Use double quotes for all keys and string values.
- Write all descriptions, explanations and the summary in {language_instruction}.

Contract text:
{document_text}
"""


def _language_instruction(language: Optional[str]) -> str:
    if language:
        return f"the contract's own language (ISO 639-1 code: {language})"
    return "the same language the contract is written in"


def build_analysis_prompt(
    document_text: str,
    tier: Tier,
    contract_type: str,
    language: Optional[str] = None
) -> str:
    """
    Build the analysis prompt for a tier.

    Args:
        document_text: Extracted contract text
        tier: Entitlement tier selecting the template
        contract_type: Contract category label (e.g. "Employment")
        language: Detected ISO 639-1 code of the contract, if known

    Returns:
        Prompt text
    """
    template = PREMIUM_TEMPLATE if Tier(tier) == Tier.PREMIUM else FREE_TEMPLATE
    prompt = template.format(contract_type=contract_type)
    prompt += OUTPUT_RULES.format(
        language_instruction=_language_instruction(language),
        document_text=document_text
    )
    return prompt


def build_language_prompt(sample: str) -> str:
    return (
        "Identify the language of the following text. "
        "Respond with only the two-letter ISO 639-1 code (for example: en, de, fr) and nothing else.\n\n"
        f"Text:\n{sample}"
    )


def build_contract_type_prompt(sample: str) -> str:
    return (
        "Identify the type of the following contract "
        "(for example: Employment, Non-Disclosure Agreement, Lease, Sales, Service, Partnership). "
        "Respond with only the contract type as a short label and nothing else.\n\n"
        f"Contract text:\n{sample}"
    )
