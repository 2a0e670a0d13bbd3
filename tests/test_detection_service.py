"""Tests for language and contract-type detection."""

import pytest

from app.core.errors import GenerationFailure, LLMErrorType
from app.services.detection_service import (
    UNKNOWN_CONTRACT_TYPE,
    DetectionService,
    guess_language,
    normalize_contract_type,
    normalize_language_code,
)


@pytest.mark.parametrize("answer, expected", [
    ("en", "en"),
    (" DE.\n", "de"),
    ("`fr`", "fr"),
    ("English", None),
    ("", None),
])
def test_normalize_language_code(answer, expected):
    assert normalize_language_code(answer) == expected


@pytest.mark.parametrize("answer, expected", [
    ('"Non-Disclosure Agreement."', "Non-Disclosure Agreement"),
    ("**Employment**\nBecause it mentions salary", "Employment"),
    ("   ", UNKNOWN_CONTRACT_TYPE),
])
def test_normalize_contract_type(answer, expected):
    assert normalize_contract_type(answer) == expected


@pytest.mark.parametrize("text, expected", [
    ("The employee shall keep the information of the employer confidential and the", "en"),
    ("Der Arbeitnehmer und die Firma vereinbaren das Folgende oder", "de"),
    ("Le salarié et la société conviennent des conditions", "fr"),
    ("El arrendador y los inquilinos del edificio pero", "es"),
    ("12345 67890", "en"),
])
def test_guess_language(text, expected):
    assert guess_language(text) == expected


async def test_detect_language_uses_model_answer(scripted_llm):
    llm = scripted_llm(language="de")
    service = DetectionService(llm, sample_chars=10)

    assert await service.detect_language("Dieser Vertrag regelt die Arbeit") == "de"
    assert llm.prompts[0].endswith("Dieser Ver")


async def test_detect_language_falls_back_to_heuristic(scripted_llm):
    llm = scripted_llm(language="I think this is French")
    service = DetectionService(llm)

    assert await service.detect_language("Le contrat et les parties des deux côtés") == "fr"


async def test_detect_language_propagates_generation_failure(scripted_llm):
    llm = scripted_llm(language=GenerationFailure("down", LLMErrorType.SERVER_ERROR))
    service = DetectionService(llm)

    with pytest.raises(GenerationFailure):
        await service.detect_language("The contract")


async def test_detect_contract_type(scripted_llm):
    service = DetectionService(scripted_llm(contract_type="Lease."))
    assert await service.detect_contract_type("This lease...") == "Lease"


async def test_detect_contract_type_never_fails(scripted_llm):
    llm = scripted_llm(contract_type=GenerationFailure("timeout", LLMErrorType.TIMEOUT))
    service = DetectionService(llm)

    assert await service.detect_contract_type("This lease...") == UNKNOWN_CONTRACT_TYPE
