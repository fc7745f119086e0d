"""SQLAlchemy-backed Illustration Store (PostgreSQL via asyncpg).

Records are mapped to ORM rows on the way in and back to pydantic records on
the way out; JSONB columns hold the ExtractedData and DatabaseMatch payloads.
Each call runs in its own transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Collection
from typing import Any

from sqlalchemy import delete, select, update

from wealthdesk.db.engine import session_scope
from wealthdesk.models.analysis_job import AnalysisJob
from wealthdesk.models.enums import (
    AnalysisStatus,
    ExtractionStatus,
    ProposalStatus,
    ProposalType,
    ReviewStatus,
    TargetCurrency,
)
from wealthdesk.models.illustration import Illustration
from wealthdesk.models.proposal import Proposal
from wealthdesk.pipeline.store import IllustrationStore
from wealthdesk.schemas.extraction import ExtractedData
from wealthdesk.schemas.matching import DatabaseMatch
from wealthdesk.schemas.proposal import (
    AnalysisJobRecord,
    IllustrationRecord,
    ProposalRecord,
    utcnow,
)

logger = logging.getLogger(__name__)


# ── Row ⇄ record mapping ─────────────────────────────────────────────


def _proposal_values(record: ProposalRecord) -> dict[str, Any]:
    return {
        "client_name": record.client_name,
        "client_needs": record.client_needs,
        "proposal_type": record.proposal_type.value,
        "target_currency": record.target_currency.value,
        "status": record.status.value,
        "failed_from": record.failed_from.value if record.failed_from else None,
        "status_note": record.status_note,
        "generated_at": record.generated_at,
        "updated_at": record.updated_at,
    }


def _proposal_record(row: Proposal) -> ProposalRecord:
    return ProposalRecord(
        proposal_id=row.id,
        client_name=row.client_name,
        client_needs=row.client_needs,
        proposal_type=ProposalType(row.proposal_type),
        target_currency=TargetCurrency(row.target_currency),
        status=ProposalStatus(row.status),
        failed_from=ProposalStatus(row.failed_from) if row.failed_from else None,
        status_note=row.status_note,
        created_at=row.created_at,
        updated_at=row.updated_at,
        generated_at=row.generated_at,
    )


def _illustration_values(record: IllustrationRecord) -> dict[str, Any]:
    return {
        "proposal_id": record.proposal_id,
        "illustration_order": record.order,
        "original_filename": record.original_filename,
        "file_size_bytes": record.file_size_bytes,
        "blob_ref": record.blob_ref,
        "extracted_data": (
            record.extracted_data.model_dump(mode="json") if record.extracted_data else None
        ),
        "extraction_status": record.extraction_status.value,
        "extraction_confidence": record.extraction_confidence,
        "extraction_attempts": record.extraction_attempts,
        "processing_notes": record.processing_notes,
        "data_edited": record.data_edited,
        "database_match": (
            record.database_match.model_dump(mode="json") if record.database_match else None
        ),
        "selected_insurance_id": record.selected_insurance_id,
        "review_status": record.review_status.value,
        "user_notes": record.user_notes,
        "updated_at": record.updated_at,
    }


def _illustration_record(row: Illustration) -> IllustrationRecord:
    return IllustrationRecord(
        illustration_id=row.id,
        proposal_id=row.proposal_id,
        order=row.illustration_order,
        original_filename=row.original_filename,
        file_size_bytes=row.file_size_bytes,
        blob_ref=row.blob_ref,
        extracted_data=(
            ExtractedData.model_validate(row.extracted_data) if row.extracted_data else None
        ),
        database_match=(
            DatabaseMatch.model_validate(row.database_match) if row.database_match else None
        ),
        selected_insurance_id=row.selected_insurance_id,
        extraction_status=ExtractionStatus(row.extraction_status),
        extraction_confidence=row.extraction_confidence,
        extraction_attempts=row.extraction_attempts,
        processing_notes=row.processing_notes,
        data_edited=row.data_edited,
        review_status=ReviewStatus(row.review_status),
        user_notes=row.user_notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _job_record(row: AnalysisJob) -> AnalysisJobRecord:
    return AnalysisJobRecord(
        proposal_id=row.proposal_id,
        status=AnalysisStatus(row.status),
        selected_ages=list(row.selected_ages or []),
        rationale=row.rationale,
        error=row.error,
        created_at=row.created_at,
        updated_at=row.updated_at,
        finished_at=row.finished_at,
    )


# ── Store ────────────────────────────────────────────────────────────


class SqlIllustrationStore(IllustrationStore):
    """PostgreSQL store over the shared async session factory."""

    async def add_proposal(self, proposal: ProposalRecord) -> None:
        async with session_scope() as db:
            db.add(Proposal(id=proposal.proposal_id, created_at=proposal.created_at, **_proposal_values(proposal)))

    async def get_proposal(self, proposal_id: uuid.UUID) -> ProposalRecord | None:
        async with session_scope() as db:
            row = await db.get(Proposal, proposal_id)
            return _proposal_record(row) if row else None

    async def save_proposal(self, proposal: ProposalRecord) -> bool:
        proposal.updated_at = utcnow()
        async with session_scope() as db:
            result = await db.execute(
                update(Proposal)
                .where(Proposal.id == proposal.proposal_id)
                .values(**_proposal_values(proposal))
            )
            return result.rowcount > 0

    async def delete_proposal(self, proposal_id: uuid.UUID) -> bool:
        # Illustrations and the analysis job go with it (ON DELETE CASCADE)
        async with session_scope() as db:
            result = await db.execute(delete(Proposal).where(Proposal.id == proposal_id))
            return result.rowcount > 0

    async def list_proposals(self, statuses: Collection[ProposalStatus]) -> list[ProposalRecord]:
        async with session_scope() as db:
            result = await db.execute(
                select(Proposal).where(Proposal.status.in_([s.value for s in statuses]))
            )
            return [_proposal_record(row) for row in result.scalars().all()]

    async def add_illustrations(self, illustrations: list[IllustrationRecord]) -> None:
        async with session_scope() as db:
            db.add_all([
                Illustration(
                    id=record.illustration_id,
                    created_at=record.created_at,
                    **_illustration_values(record),
                )
                for record in illustrations
            ])
        logger.debug("Inserted %d illustration row(s)", len(illustrations))

    async def get_illustration(self, illustration_id: uuid.UUID) -> IllustrationRecord | None:
        async with session_scope() as db:
            row = await db.get(Illustration, illustration_id)
            return _illustration_record(row) if row else None

    async def list_illustrations(self, proposal_id: uuid.UUID) -> list[IllustrationRecord]:
        async with session_scope() as db:
            result = await db.execute(
                select(Illustration)
                .where(Illustration.proposal_id == proposal_id)
                .order_by(Illustration.illustration_order)
            )
            return [_illustration_record(row) for row in result.scalars().all()]

    async def save_illustration(self, illustration: IllustrationRecord) -> bool:
        illustration.updated_at = utcnow()
        async with session_scope() as db:
            result = await db.execute(
                update(Illustration)
                .where(Illustration.id == illustration.illustration_id)
                .values(**_illustration_values(illustration))
            )
            return result.rowcount > 0

    async def delete_illustration(self, illustration_id: uuid.UUID) -> bool:
        async with session_scope() as db:
            result = await db.execute(delete(Illustration).where(Illustration.id == illustration_id))
            return result.rowcount > 0

    async def get_analysis_job(self, proposal_id: uuid.UUID) -> AnalysisJobRecord | None:
        async with session_scope() as db:
            result = await db.execute(select(AnalysisJob).where(AnalysisJob.proposal_id == proposal_id))
            row = result.scalar_one_or_none()
            return _job_record(row) if row else None

    async def save_analysis_job(self, job: AnalysisJobRecord) -> bool:
        job.updated_at = utcnow()
        async with session_scope() as db:
            if await db.get(Proposal, job.proposal_id) is None:
                return False
            result = await db.execute(select(AnalysisJob).where(AnalysisJob.proposal_id == job.proposal_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = AnalysisJob(proposal_id=job.proposal_id, created_at=job.created_at)
                db.add(row)
            row.status = job.status.value
            row.selected_ages = list(job.selected_ages)
            row.rationale = job.rationale
            row.error = job.error
            row.finished_at = job.finished_at
            row.updated_at = job.updated_at
            return True

    async def delete_analysis_job(self, proposal_id: uuid.UUID) -> bool:
        async with session_scope() as db:
            result = await db.execute(delete(AnalysisJob).where(AnalysisJob.proposal_id == proposal_id))
            return result.rowcount > 0
