"""Proposal pipeline REST API — FastAPI router over the orchestrator.

Every handler is a thin translation between HTTP and an orchestrator call.
Pipeline errors become JSON responses with the error's status code.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse

from wealthdesk.errors import PipelineError
from wealthdesk.pipeline.orchestrator import PipelineOrchestrator
from wealthdesk.schemas.matching import FuzzyMatch
from wealthdesk.schemas.proposal import (
    AnalysisJobRecord,
    IllustrationRecord,
    IllustrationUpdate,
    IncomingFile,
    PageContent,
    ProposalCreate,
    ProposalRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/proposals", tags=["proposals"])


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """FastAPI dependency — the orchestrator wired at startup."""
    return request.app.state.orchestrator


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    """Map PipelineError subclasses to their HTTP status."""
    if exc.status_code >= 500:
        logger.warning("%s %s → %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "details": exc.details},
    )


# ── Proposals ────────────────────────────────────────────────────────


@router.post("", response_model=ProposalRecord, status_code=status.HTTP_201_CREATED)
async def create_proposal(
    body: ProposalCreate,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ProposalRecord:
    return await orchestrator.create_proposal(body)


@router.get("/{proposal_id}", response_model=ProposalRecord)
async def get_proposal(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ProposalRecord:
    return await orchestrator.get_proposal(proposal_id)


@router.delete("/{proposal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_proposal(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response:
    await orchestrator.delete_proposal(proposal_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{proposal_id}/retry", response_model=ProposalRecord)
async def retry_proposal(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ProposalRecord:
    return await orchestrator.retry(proposal_id)


# ── Illustrations ────────────────────────────────────────────────────


@router.post(
    "/{proposal_id}/illustrations",
    response_model=list[IllustrationRecord],
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_illustrations(
    proposal_id: uuid.UUID,
    files: list[UploadFile] = File(...),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> list[IllustrationRecord]:
    """Upload up to five PDFs. Extraction continues in the background."""
    incoming = [
        IncomingFile(
            filename=upload.filename or "",
            content_type=upload.content_type,
            data=await upload.read(),
        )
        for upload in files
    ]
    return await orchestrator.upload(proposal_id, incoming)


@router.get("/{proposal_id}/illustrations", response_model=list[IllustrationRecord])
async def list_illustrations(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> list[IllustrationRecord]:
    return await orchestrator.list_illustrations(proposal_id)


@router.get("/{proposal_id}/illustrations/{illustration_id}", response_model=IllustrationRecord)
async def get_illustration(
    proposal_id: uuid.UUID,
    illustration_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> IllustrationRecord:
    return await orchestrator.get_illustration(proposal_id, illustration_id)


@router.patch("/{proposal_id}/illustrations/{illustration_id}", response_model=IllustrationRecord)
async def update_illustration(
    proposal_id: uuid.UUID,
    illustration_id: uuid.UUID,
    body: IllustrationUpdate,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> IllustrationRecord:
    return await orchestrator.update_illustration(proposal_id, illustration_id, body)


@router.delete("/{proposal_id}/illustrations/{illustration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_illustration(
    proposal_id: uuid.UUID,
    illustration_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response:
    await orchestrator.delete_illustration(proposal_id, illustration_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{proposal_id}/illustrations/{illustration_id}/retry",
    response_model=IllustrationRecord,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_extraction(
    proposal_id: uuid.UUID,
    illustration_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> IllustrationRecord:
    return await orchestrator.retry_extraction(proposal_id, illustration_id)


@router.get(
    "/{proposal_id}/illustrations/{illustration_id}/search-insurance",
    response_model=list[FuzzyMatch],
)
async def search_insurance(
    proposal_id: uuid.UUID,
    illustration_id: uuid.UUID,
    query: str = Query(...),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> list[FuzzyMatch]:
    """Catalog candidates for manual product selection."""
    return await orchestrator.search_products(proposal_id, illustration_id, query)


# ── Generation & output ──────────────────────────────────────────────


@router.post("/{proposal_id}/generate", response_model=ProposalRecord, status_code=status.HTTP_202_ACCEPTED)
async def start_generation(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> ProposalRecord:
    return await orchestrator.start_generation(proposal_id)


@router.get("/{proposal_id}/pages/{page_number}", response_model=PageContent)
async def get_page(
    proposal_id: uuid.UUID,
    page_number: int,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PageContent:
    return await orchestrator.get_page(proposal_id, page_number)


@router.get("/{proposal_id}/intelligent-analysis-status", response_model=AnalysisJobRecord | None)
async def get_intelligent_analysis_status(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> AnalysisJobRecord | None:
    """Poll the analysis job. ``null`` when the proposal needs no analysis."""
    return await orchestrator.get_intelligent_analysis_status(proposal_id)


@router.get("/{proposal_id}/download")
async def download(
    proposal_id: uuid.UUID,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response:
    document = await orchestrator.download(proposal_id)
    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )
