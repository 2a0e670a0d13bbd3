"""
Contract endpoints
Upload, analyze, list, delete and chat about contract analyses.
"""

import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile

from app.core.dependencies import get_chat_service, get_pipeline
from app.core.errors import ContractAnalysisError, RateLimited
from app.core.security import Principal, get_principal
from app.schemas.analysis import (
    AnalysisRecord,
    AnalysisRequest,
    AskRequest,
    AskResponse,
    CamelModel,
    DetectTypeResponse,
    Feedback,
)
from app.services.contract_analysis_pipeline import ContractAnalysisPipeline
from app.services.contract_chat_service import ContractChatService

logger = logging.getLogger(__name__)
router = APIRouter()


class AnalyzeTextRequest(CamelModel):
    """Analysis of already extracted text"""
    document_text: str
    contract_type: str
    project_id: Optional[str] = None
    language_hint: Optional[str] = None


def _client_id(request: Request, principal: Principal) -> str:
    return request.client.host if request.client else principal.owner_id


def _raise_http(error: ContractAnalysisError) -> NoReturn:
    headers = None
    if isinstance(error, RateLimited) and error.retry_after:
        headers = {"Retry-After": str(error.retry_after)}
    raise HTTPException(status_code=error.status_code, detail=error.message, headers=headers)


def _raise_internal(action: str, error: Exception) -> NoReturn:
    logger.error(f"Error {action}: {str(error)}", exc_info=True)
    raise HTTPException(status_code=500, detail=f"An error occurred while {action}")


@router.post("/detect-type", response_model=DetectTypeResponse)
async def detect_contract_type(
    request: Request,
    contract: UploadFile = File(...),
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    """
    Detect the contract type of an uploaded PDF.
    """
    try:
        content = await contract.read()
        detected = await pipeline.detect_type_from_upload(
            principal.owner_id, content, client_id=_client_id(request, principal)
        )
        return DetectTypeResponse(detected_type=detected)
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("detecting the contract type", e)


@router.post("/analyze", response_model=AnalysisRecord)
async def analyze_contract(
    request: Request,
    contract: UploadFile = File(...),
    contract_type: str = Form(..., alias="contractType"),
    project_id: Optional[str] = Form(None, alias="projectId"),
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    """
    Analyze an uploaded PDF and store the result.

    Free users are limited to a fixed number of stored analyses; premium
    users get the extended analysis.
    """
    try:
        content = await contract.read()
        return await pipeline.analyze_upload(
            owner_id=principal.owner_id,
            tier=principal.tier,
            content=content,
            contract_type=contract_type,
            project_id=project_id,
            client_id=_client_id(request, principal),
        )
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("analyzing the contract", e)


@router.post("/analyze-text", response_model=AnalysisRecord)
async def analyze_contract_text(
    body: AnalyzeTextRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    """
    Analyze contract text that was extracted elsewhere.
    """
    try:
        return await pipeline.analyze(AnalysisRequest(
            owner_id=principal.owner_id,
            project_id=body.project_id,
            document_text=body.document_text,
            tier=principal.tier,
            contract_type=body.contract_type,
            language_hint=body.language_hint,
            client_id=_client_id(request, principal),
        ))
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("analyzing the contract", e)


@router.get("", response_model=List[AnalysisRecord])
async def list_contracts(
    project_id: Optional[str] = Query(None, alias="projectId", description="Only analyses of this project"),
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    """
    List the caller's analyses, newest first.
    """
    try:
        return await pipeline.list_by_owner(principal.owner_id, project_id)
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("fetching contracts", e)


@router.get("/{analysis_id}", response_model=AnalysisRecord)
async def get_contract(
    analysis_id: str,
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    try:
        return await pipeline.get_by_id(analysis_id, principal.owner_id)
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("fetching the contract", e)


@router.delete("/{analysis_id}")
async def delete_contract(
    analysis_id: str,
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    try:
        await pipeline.delete(analysis_id, principal.owner_id)
        return {"message": "Contract deleted successfully"}
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("deleting the contract", e)


@router.post("/{analysis_id}/feedback", response_model=AnalysisRecord)
async def submit_feedback(
    analysis_id: str,
    feedback: Feedback,
    principal: Principal = Depends(get_principal),
    pipeline: ContractAnalysisPipeline = Depends(get_pipeline)
):
    try:
        return await pipeline.attach_feedback(analysis_id, principal.owner_id, feedback)
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("saving feedback", e)


@router.post("/{analysis_id}/ask", response_model=AskResponse)
async def ask_question(
    analysis_id: str,
    body: AskRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    chat_service: ContractChatService = Depends(get_chat_service)
):
    """
    Ask a question about one of the caller's analyses.
    """
    try:
        return await chat_service.ask(
            analysis_id,
            principal.owner_id,
            body.question,
            client_id=_client_id(request, principal),
        )
    except ContractAnalysisError as e:
        _raise_http(e)
    except Exception as e:
        _raise_internal("processing your question", e)
