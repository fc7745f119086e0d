"""Pipeline Orchestrator — the single entry point for proposal operations.

Request handlers call the orchestrator; extraction, analysis and page
generation run as background asyncio tasks it owns. Callers never wait on
that work in-process: they poll the proposal, illustration and analysis
status, all of which are side-effect free reads.

Serialization:
    - per proposal_id: every mutation of the aggregate and every status
      transition (keeps the state machine monotonic under races)
    - per illustration_id: extraction attempts, so two attempts for the
      same illustration never overlap

A background result whose record was deleted in the meantime is discarded
(logged and emitted as EXTRACTION_DISCARDED), never written back.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from collections.abc import Coroutine
from typing import Any

from wealthdesk.audit.events import emit
from wealthdesk.config import settings
from wealthdesk.errors import (
    ConflictError,
    ExtractionError,
    FatalRenderError,
    NotFoundError,
    NotReadyError,
    TransientError,
    ValidationError,
)
from wealthdesk.integrations.catalog.base import ProductCatalog
from wealthdesk.integrations.renderer.client import PageRendererClient
from wealthdesk.integrations.storage.client import BlobStorageClient
from wealthdesk.models.enums import (
    AnalysisStatus,
    ExtractionStatus,
    ProposalPage,
    ProposalStatus,
)
from wealthdesk.pipeline.analysis import AnalysisCoordinator
from wealthdesk.pipeline.extractor import IllustrationExtractor
from wealthdesk.pipeline.fsm import ProposalStateMachine
from wealthdesk.pipeline.locks import KeyedLocks
from wealthdesk.pipeline.matcher import ProductMatcher
from wealthdesk.pipeline.page_cache import PageCache
from wealthdesk.pipeline.store import IllustrationStore
from wealthdesk.schemas.events import EventType, SystemEvent
from wealthdesk.schemas.matching import DatabaseMatch, FuzzyMatch
from wealthdesk.schemas.proposal import (
    AnalysisJobRecord,
    IllustrationRecord,
    IllustrationUpdate,
    IncomingFile,
    PageContent,
    ProposalCreate,
    ProposalDocument,
    ProposalRecord,
    utcnow,
)

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"
PDF_CONTENT_TYPES = frozenset({"application/pdf", "application/x-pdf", "application/octet-stream"})

PAGE3_PLACEHOLDER = (
    '<div class="analysis-pending">'
    "<p>Selecting the most informative ages for the cash value comparison.</p>"
    "<p>This page updates automatically once the analysis completes.</p>"
    "</div>"
)

_FILENAME_SAFE_RE = re.compile(r"[^a-z0-9]+")


class PipelineOrchestrator:
    """Façade over the store, extractor, matcher, state machine and analysis."""

    def __init__(
        self,
        store: IllustrationStore,
        catalog: ProductCatalog,
        blob_storage: BlobStorageClient,
        renderer: PageRendererClient,
        page_cache: PageCache,
        extractor: IllustrationExtractor | None = None,
        matcher: ProductMatcher | None = None,
        analysis: AnalysisCoordinator | None = None,
        max_illustrations: int | None = None,
        max_file_size_bytes: int | None = None,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._blobs = blob_storage
        self._renderer = renderer
        self._pages = page_cache
        self._extractor = extractor or IllustrationExtractor()
        self._matcher = matcher or ProductMatcher(catalog)
        self._proposal_locks = KeyedLocks()
        self._extraction_locks = KeyedLocks()
        self._analysis = analysis or AnalysisCoordinator(store, locks=self._proposal_locks)
        self.max_illustrations = max_illustrations or settings.extraction.max_illustrations
        self.max_file_size_bytes = max_file_size_bytes or settings.extraction.max_file_size_bytes
        self._tasks: set[asyncio.Task[Any]] = set()

    # ── Background task bookkeeping ──────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every background task (and any they spawn) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight background work."""
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("Orchestrator background tasks cancelled")

    # ── Helpers ──────────────────────────────────────────────────────

    async def _require_proposal(self, proposal_id: uuid.UUID) -> ProposalRecord:
        proposal = await self._store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError(f"Proposal {proposal_id} not found")
        return proposal

    async def _require_illustration(
        self,
        proposal_id: uuid.UUID,
        illustration_id: uuid.UUID,
    ) -> IllustrationRecord:
        illustration = await self._store.get_illustration(illustration_id)
        if illustration is None or illustration.proposal_id != proposal_id:
            raise NotFoundError(f"Illustration {illustration_id} not found in proposal {proposal_id}")
        return illustration

    async def _transition(self, proposal: ProposalRecord, trigger: str, note: str | None = None) -> None:
        """Run a state machine trigger against a proposal record (not saved)."""
        fsm = ProposalStateMachine(proposal.proposal_id, proposal.status, proposal.failed_from)
        proposal.status = await fsm.transition(trigger, note=note)
        proposal.failed_from = fsm.failed_from
        proposal.status_note = note

    # ── Proposals ────────────────────────────────────────────────────

    async def create_proposal(self, data: ProposalCreate) -> ProposalRecord:
        proposal = ProposalRecord(**data.model_dump())
        await self._store.add_proposal(proposal)

        await emit(SystemEvent(
            event_type=EventType.PROPOSAL_CREATED,
            proposal_id=proposal.proposal_id,
            data={
                "proposal_type": proposal.proposal_type.value,
                "target_currency": proposal.target_currency.value,
            },
            source_module="pipeline.orchestrator",
        ))
        logger.info("Proposal created: %s (%s)", proposal.proposal_id, proposal.client_name)
        return proposal

    async def get_proposal(self, proposal_id: uuid.UUID) -> ProposalRecord:
        return await self._require_proposal(proposal_id)

    async def delete_proposal(self, proposal_id: uuid.UUID) -> None:
        """Delete a proposal, its illustrations, analysis job and cached pages.

        Allowed in any status; in-flight background results are discarded.
        """
        async with self._proposal_locks.hold(proposal_id):
            await self._require_proposal(proposal_id)
            illustrations = await self._store.list_illustrations(proposal_id)
            await self._store.delete_proposal(proposal_id)

        await self._pages.invalidate(proposal_id)
        for illustration in illustrations:
            if illustration.blob_ref:
                await self._blobs.delete(illustration.blob_ref)

        await emit(SystemEvent(
            event_type=EventType.PROPOSAL_DELETED,
            proposal_id=proposal_id,
            data={"illustrations": len(illustrations)},
            source_module="pipeline.orchestrator",
        ))
        logger.info("Proposal deleted: %s (%d illustration(s))", proposal_id, len(illustrations))

    # ── Upload ───────────────────────────────────────────────────────

    def _validate_files(self, files: list[IncomingFile], existing: int) -> None:
        """Reject the whole batch if any file (or the batch size) is invalid."""
        if not files:
            raise ValidationError("No files provided")

        remaining = self.max_illustrations - existing
        if len(files) > remaining:
            raise ValidationError(
                f"A proposal holds at most {self.max_illustrations} illustrations; "
                f"{existing} uploaded, {max(remaining, 0)} slot(s) left, {len(files)} file(s) sent",
                details={"existing": existing, "remaining": max(remaining, 0), "received": len(files)},
            )

        problems: list[dict[str, str]] = []
        for file in files:
            reason = None
            if not file.filename.lower().endswith(".pdf"):
                reason = "only PDF files are accepted"
            elif file.content_type and file.content_type.split(";")[0].strip() not in PDF_CONTENT_TYPES:
                reason = f"unsupported content type {file.content_type}"
            elif file.size == 0:
                reason = "file is empty"
            elif file.size > self.max_file_size_bytes:
                reason = f"file exceeds {self.max_file_size_bytes // (1024 * 1024)} MB"
            elif not file.data.startswith(PDF_MAGIC):
                reason = "file is not a valid PDF"
            if reason:
                problems.append({"filename": file.filename, "reason": reason})

        if problems:
            summary = "; ".join(f"{p['filename']}: {p['reason']}" for p in problems)
            raise ValidationError(f"Upload rejected: {summary}", details={"files": problems})

    async def upload(self, proposal_id: uuid.UUID, files: list[IncomingFile]) -> list[IllustrationRecord]:
        """Validate and persist a batch of PDFs, then enqueue their extraction.

        Validation is atomic: if any file is rejected, nothing is stored.

        Raises:
            NotFoundError: Unknown proposal.
            ConflictError: Proposal status does not accept uploads.
            ValidationError: Bad file, or the batch would exceed the cap.
            TransientError: Blob storage unavailable (nothing is kept).
        """
        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._require_proposal(proposal_id)
            ProposalStateMachine(proposal_id, proposal.status).ensure_mutable("upload illustrations")

            existing = await self._store.list_illustrations(proposal_id)
            self._validate_files(files, len(existing))

            used = {i.order for i in existing}
            free_orders = [n for n in range(1, self.max_illustrations + 1) if n not in used]

            # Any failure up to the insert removes the blobs already stored
            refs: list[str] = []
            try:
                for file in files:
                    refs.append(await self._blobs.put(file.data, file.filename))
                records = [
                    IllustrationRecord(
                        proposal_id=proposal_id,
                        order=order,
                        original_filename=file.filename,
                        file_size_bytes=file.size,
                        blob_ref=ref,
                    )
                    for file, ref, order in zip(files, refs, free_orders, strict=False)
                ]
                await self._store.add_illustrations(records)
            except Exception:
                for ref in refs:
                    await self._blobs.delete(ref)
                raise

            for record in records:
                await emit(SystemEvent(
                    event_type=EventType.ILLUSTRATION_UPLOADED,
                    proposal_id=proposal_id,
                    illustration_id=record.illustration_id,
                    data={
                        "filename": record.original_filename,
                        "size_bytes": record.file_size_bytes,
                        "order": record.order,
                    },
                    source_module="pipeline.orchestrator",
                ))

            if proposal.status == ProposalStatus.DRAFT:
                await self._transition(proposal, "extraction_started")
            await self._store.save_proposal(proposal)

        await self._pages.invalidate(proposal_id)
        for record in records:
            self._spawn(self._run_extraction(record.illustration_id), name=f"extract-{record.illustration_id}")

        logger.info("Uploaded %d illustration(s) to proposal %s", len(records), proposal_id)
        return records

    # ── Illustrations ────────────────────────────────────────────────

    async def list_illustrations(self, proposal_id: uuid.UUID) -> list[IllustrationRecord]:
        await self._require_proposal(proposal_id)
        return await self._store.list_illustrations(proposal_id)

    async def get_illustration(self, proposal_id: uuid.UUID, illustration_id: uuid.UUID) -> IllustrationRecord:
        return await self._require_illustration(proposal_id, illustration_id)

    async def update_illustration(
        self,
        proposal_id: uuid.UUID,
        illustration_id: uuid.UUID,
        update: IllustrationUpdate,
    ) -> IllustrationRecord:
        """Apply advisor edits. Only fields present in the update are touched."""
        fields = update.model_fields_set

        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._require_proposal(proposal_id)
            ProposalStateMachine(proposal_id, proposal.status).ensure_mutable("edit illustrations")
            illustration = await self._require_illustration(proposal_id, illustration_id)

            if "extracted_data" in fields and update.extracted_data is not None:
                if not illustration.extraction_finished:
                    raise ConflictError(
                        "Extracted data can only be edited once extraction has finished",
                        details={"extraction_status": illustration.extraction_status.value},
                    )
                illustration.extracted_data = update.extracted_data
                illustration.data_edited = True

            if "selected_insurance_id" in fields:
                if update.selected_insurance_id is not None:
                    product = await self._catalog.get_product(update.selected_insurance_id)
                    if product is None:
                        raise ValidationError(
                            f"Unknown product {update.selected_insurance_id}",
                            details={"selected_insurance_id": update.selected_insurance_id},
                        )
                illustration.selected_insurance_id = update.selected_insurance_id

            if "review_status" in fields and update.review_status is not None:
                illustration.review_status = update.review_status
            if "user_notes" in fields:
                illustration.user_notes = update.user_notes

            await self._store.save_illustration(illustration)

        await self._pages.invalidate(proposal_id)
        await emit(SystemEvent(
            event_type=EventType.ILLUSTRATION_UPDATED,
            proposal_id=proposal_id,
            illustration_id=illustration_id,
            data={"fields": sorted(fields)},
            source_module="pipeline.orchestrator",
        ))
        return illustration

    async def delete_illustration(self, proposal_id: uuid.UUID, illustration_id: uuid.UUID) -> None:
        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._require_proposal(proposal_id)
            ProposalStateMachine(proposal_id, proposal.status).ensure_mutable("delete illustrations")
            illustration = await self._require_illustration(proposal_id, illustration_id)
            await self._store.delete_illustration(illustration_id)
            # Keep the aggregate's updated_at current
            await self._store.save_proposal(proposal)

        await self._pages.invalidate(proposal_id)
        if illustration.blob_ref:
            await self._blobs.delete(illustration.blob_ref)

        await emit(SystemEvent(
            event_type=EventType.ILLUSTRATION_DELETED,
            proposal_id=proposal_id,
            illustration_id=illustration_id,
            data={"filename": illustration.original_filename},
            source_module="pipeline.orchestrator",
        ))
        logger.info("Illustration %s deleted from proposal %s", illustration_id, proposal_id)

    async def retry_extraction(self, proposal_id: uuid.UUID, illustration_id: uuid.UUID) -> IllustrationRecord:
        """Re-run a failed extraction. Advisor edits on the record are kept."""
        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._require_proposal(proposal_id)
            if proposal.status not in (ProposalStatus.EXTRACTING, ProposalStatus.REVIEWING):
                raise ConflictError(
                    f"Cannot retry an extraction while proposal is {proposal.status.value}",
                    details={"status": proposal.status.value},
                )
            illustration = await self._require_illustration(proposal_id, illustration_id)
            if illustration.extraction_status != ExtractionStatus.FAILED:
                raise ConflictError(
                    "Only failed extractions can be retried",
                    details={"extraction_status": illustration.extraction_status.value},
                )
            illustration.extraction_status = ExtractionStatus.PENDING
            await self._store.save_illustration(illustration)

        self._spawn(self._run_extraction(illustration_id), name=f"extract-{illustration_id}")
        logger.info("Extraction retry queued for illustration %s", illustration_id)
        return illustration

    async def search_products(
        self,
        proposal_id: uuid.UUID,
        illustration_id: uuid.UUID,
        query: str,
    ) -> list[FuzzyMatch]:
        """Catalog products matching an advisor's query, for manual selection.

        The illustration's extracted provider breaks ties.

        Raises:
            ValidationError: Query shorter than two characters.
            TransientError: Catalog unavailable.
        """
        query = query.strip()
        if len(query) < 2:
            raise ValidationError("Search query must be at least 2 characters", details={"query": query})

        illustration = await self._require_illustration(proposal_id, illustration_id)
        provider = illustration.extracted_data.basic_info.insurance_provider if illustration.extracted_data else None
        return await self._matcher.search(query, provider)

    # ── Extraction (background) ──────────────────────────────────────

    async def _discarded(self, illustration: IllustrationRecord, stage: str) -> None:
        logger.info(
            "Illustration %s was deleted during %s; result discarded",
            illustration.illustration_id,
            stage,
        )
        await emit(SystemEvent(
            event_type=EventType.EXTRACTION_DISCARDED,
            proposal_id=illustration.proposal_id,
            illustration_id=illustration.illustration_id,
            data={"stage": stage},
            source_module="pipeline.orchestrator",
        ))

    async def _run_extraction(self, illustration_id: uuid.UUID) -> None:
        """Extract, match and persist one illustration, then advance the proposal."""
        async with self._extraction_locks.hold(illustration_id):
            illustration = await self._store.get_illustration(illustration_id)
            if illustration is None:
                return
            proposal_id = illustration.proposal_id

            async with self._proposal_locks.hold(proposal_id):
                illustration = await self._store.get_illustration(illustration_id)
                if illustration is None or illustration.extraction_status != ExtractionStatus.PENDING:
                    return
                illustration.extraction_status = ExtractionStatus.PROCESSING
                illustration.extraction_attempts += 1
                if not await self._store.save_illustration(illustration):
                    await self._discarded(illustration, "start")
                    return

            await emit(SystemEvent(
                event_type=EventType.EXTRACTION_STARTED,
                proposal_id=proposal_id,
                illustration_id=illustration_id,
                data={"attempt": illustration.extraction_attempts},
                source_module="pipeline.orchestrator",
            ))

            try:
                await self._extract_and_match(illustration)
            except Exception as exc:
                logger.exception("Unexpected error extracting illustration %s", illustration_id)
                await self._finish_extraction_failed(illustration, f"Unexpected extraction error: {exc}")

        await self._advance_after_extraction(proposal_id)

    async def _extract_and_match(self, illustration: IllustrationRecord) -> None:
        illustration_id = illustration.illustration_id

        try:
            if illustration.blob_ref is None:
                raise NotFoundError(f"Illustration {illustration_id} has no stored file")
            file_bytes = await self._blobs.get(illustration.blob_ref)
            extracted = await self._extractor.extract(file_bytes, illustration.original_filename, illustration_id)
        except ExtractionError as exc:
            await self._finish_extraction_failed(
                illustration, f"Extraction failed ({exc.kind.value}): {exc.message}"
            )
            return
        except TransientError as exc:
            await self._finish_extraction_failed(
                illustration,
                f"Extraction service unavailable after {self._extractor.max_attempts} attempt(s): {exc.message}",
            )
            return
        except NotFoundError as exc:
            await self._finish_extraction_failed(illustration, f"Uploaded file is missing: {exc.message}")
            return

        # Advisor edits win over a fresh extraction
        current = await self._store.get_illustration(illustration_id)
        if current is None:
            await self._discarded(illustration, "extraction")
            return
        data = current.extracted_data if current.data_edited and current.extracted_data else extracted

        notes = extracted.extraction_metadata.extraction_notes or None
        try:
            match = await self._matcher.match(data)
        except TransientError as exc:
            logger.warning("Catalog unavailable while matching %s: %s", illustration_id, exc.message)
            match = DatabaseMatch(requires_manual_input=True)
            notes = "Product catalog unavailable during matching; select the product manually"

        async with self._proposal_locks.hold(illustration.proposal_id):
            current = await self._store.get_illustration(illustration_id)
            if current is None:
                await self._discarded(illustration, "extraction")
                return
            if not current.data_edited:
                current.extracted_data = extracted
            current.extraction_confidence = extracted.confidence
            current.database_match = match
            if current.selected_insurance_id is None:
                current.selected_insurance_id = match.best_insurance_id
            current.processing_notes = notes
            current.extraction_status = ExtractionStatus.COMPLETED
            if not await self._store.save_illustration(current):
                await self._discarded(illustration, "extraction")
                return

        await emit(SystemEvent(
            event_type=EventType.EXTRACTION_COMPLETED,
            proposal_id=illustration.proposal_id,
            illustration_id=illustration_id,
            data={"confidence": extracted.confidence, "data_edited": current.data_edited},
            source_module="pipeline.orchestrator",
        ))
        await emit(SystemEvent(
            event_type=EventType.PRODUCT_MATCHED,
            proposal_id=illustration.proposal_id,
            illustration_id=illustration_id,
            data={
                "exact": match.exact_match is not None,
                "candidates": len(match.fuzzy_matches),
                "confidence": match.match_confidence,
                "requires_manual_input": match.requires_manual_input,
            },
            source_module="pipeline.orchestrator",
        ))
        logger.info(
            "Illustration %s extracted (confidence=%.2f, match=%.2f, manual=%s)",
            illustration_id,
            extracted.confidence,
            match.match_confidence,
            match.requires_manual_input,
        )

    async def _finish_extraction_failed(self, illustration: IllustrationRecord, note: str) -> None:
        async with self._proposal_locks.hold(illustration.proposal_id):
            current = await self._store.get_illustration(illustration.illustration_id)
            if current is None:
                await self._discarded(illustration, "extraction")
                return
            current.extraction_status = ExtractionStatus.FAILED
            current.processing_notes = note
            if not await self._store.save_illustration(current):
                await self._discarded(illustration, "extraction")
                return

        await emit(SystemEvent(
            event_type=EventType.EXTRACTION_FAILED,
            proposal_id=illustration.proposal_id,
            illustration_id=illustration.illustration_id,
            data={"note": note},
            source_module="pipeline.orchestrator",
        ))
        logger.warning("Illustration %s extraction failed: %s", illustration.illustration_id, note)

    async def _advance_after_extraction(self, proposal_id: uuid.UUID) -> None:
        """extracting → reviewing (≥1 completed) or failed (none), once all are terminal."""
        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._store.get_proposal(proposal_id)
            if proposal is None or proposal.status != ProposalStatus.EXTRACTING:
                return
            illustrations = await self._store.list_illustrations(proposal_id)
            if not all(i.extraction_finished for i in illustrations):
                return

            completed = sum(1 for i in illustrations if i.extraction_status == ExtractionStatus.COMPLETED)
            if completed:
                await self._transition(proposal, "extraction_finished")
            else:
                await self._transition(
                    proposal,
                    "extraction_failed",
                    note=f"All {len(illustrations)} illustration extraction(s) failed",
                )
            await self._store.save_proposal(proposal)

    # ── Generation ───────────────────────────────────────────────────

    async def start_generation(self, proposal_id: uuid.UUID) -> ProposalRecord:
        """reviewing → generating. Pages render in the background.

        Raises:
            ConflictError: Wrong status, or extractions still running.
            ValidationError: Nothing extracted, or product selections missing.
        """
        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._require_proposal(proposal_id)
            if proposal.status != ProposalStatus.REVIEWING:
                raise ConflictError(
                    f"Generation can only start from reviewing (proposal is {proposal.status.value})",
                    details={"status": proposal.status.value},
                )

            illustrations = await self._store.list_illustrations(proposal_id)
            running = [i for i in illustrations if not i.extraction_finished]
            if running:
                raise ConflictError(
                    f"{len(running)} illustration(s) are still being extracted",
                    details={"illustration_ids": [str(i.illustration_id) for i in running]},
                )
            completed = [i for i in illustrations if i.extraction_status == ExtractionStatus.COMPLETED]
            if not completed:
                raise ValidationError("No successfully extracted illustration to generate from")
            unresolved = [i for i in completed if i.needs_product_selection]
            if unresolved:
                raise ValidationError(
                    f"Select a product for {len(unresolved)} illustration(s) before generating",
                    details={"illustration_ids": [str(i.illustration_id) for i in unresolved]},
                )

            await self._transition(proposal, "generation_started")
            await self._store.save_proposal(proposal)
            await self._prepare_analysis(proposal_id, completed)

        await self._pages.invalidate(proposal_id)
        self._spawn(self._run_generation(proposal_id), name=f"generate-{proposal_id}")
        return proposal

    async def _prepare_analysis(self, proposal_id: uuid.UUID, completed: list[IllustrationRecord]) -> None:
        """Create a pending job when there are cash values to compare (caller holds the lock)."""
        has_cash_values = any(
            i.extracted_data is not None and i.extracted_data.cash_value_data.cash_values for i in completed
        )
        job = await self._store.get_analysis_job(proposal_id)
        if not has_cash_values:
            if job is not None:
                await self._store.delete_analysis_job(proposal_id)
            return
        if job is None or job.status != AnalysisStatus.COMPLETED:
            await self._analysis.create_job(proposal_id)

    async def _on_analysis_complete(self, job: AnalysisJobRecord) -> None:
        await self._pages.invalidate(job.proposal_id, ProposalPage.ILLUSTRATION)

    async def _run_generation(self, proposal_id: uuid.UUID) -> None:
        """Render every page; wait for the analysis before page 3."""
        try:
            proposal = await self._store.get_proposal(proposal_id)
            if proposal is None:
                return
            illustrations = await self._completed_illustrations(proposal_id)

            job = await self._store.get_analysis_job(proposal_id)
            analysis_task = None
            if job is not None and job.status == AnalysisStatus.PENDING:
                extractions = [i.extracted_data for i in illustrations if i.extracted_data is not None]
                analysis_task = self._spawn(
                    self._analysis.run(proposal_id, extractions, on_complete=self._on_analysis_complete),
                    name=f"analysis-{proposal_id}",
                )

            for page in (ProposalPage.TITLE, ProposalPage.FEATURES, ProposalPage.RECOMMENDATION):
                await self._cached_or_render(proposal, illustrations, page)

            if analysis_task is not None:
                await analysis_task
            await self._cached_or_render(proposal, illustrations, ProposalPage.ILLUSTRATION)

        except FatalRenderError as exc:
            await self._finish_generation(proposal_id, failed_note=f"Page rendering failed: {exc.message}")
            return
        except Exception as exc:
            logger.exception("Unexpected error generating proposal %s", proposal_id)
            await self._finish_generation(
                proposal_id, failed_note=f"Unexpected generation error: {exc}", trigger="fail"
            )
            return

        await self._finish_generation(proposal_id)

    async def _finish_generation(
        self,
        proposal_id: uuid.UUID,
        failed_note: str | None = None,
        trigger: str = "generation_failed",
    ) -> None:
        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._store.get_proposal(proposal_id)
            if proposal is None or proposal.status != ProposalStatus.GENERATING:
                logger.info("Generation result for proposal %s discarded", proposal_id)
                return
            if failed_note is None:
                await self._transition(proposal, "generation_finished")
                proposal.generated_at = utcnow()
            else:
                await self._transition(proposal, trigger, note=failed_note)
            await self._store.save_proposal(proposal)

    # ── Retry ────────────────────────────────────────────────────────

    async def retry(self, proposal_id: uuid.UUID) -> ProposalRecord:
        """failed → the status it failed from; re-runs only unfinished work."""
        to_extract: list[uuid.UUID] = []
        regenerate = False

        async with self._proposal_locks.hold(proposal_id):
            proposal = await self._require_proposal(proposal_id)
            await self._transition(proposal, "retry")

            if proposal.status == ProposalStatus.EXTRACTING:
                for illustration in await self._store.list_illustrations(proposal_id):
                    if illustration.extraction_status == ExtractionStatus.FAILED:
                        illustration.extraction_status = ExtractionStatus.PENDING
                        await self._store.save_illustration(illustration)
                    if illustration.extraction_status == ExtractionStatus.PENDING:
                        to_extract.append(illustration.illustration_id)
            elif proposal.status == ProposalStatus.GENERATING:
                completed = await self._completed_illustrations(proposal_id)
                await self._prepare_analysis(proposal_id, completed)
                regenerate = True

            await self._store.save_proposal(proposal)

        for illustration_id in to_extract:
            self._spawn(self._run_extraction(illustration_id), name=f"extract-{illustration_id}")
        if proposal.status == ProposalStatus.EXTRACTING and not to_extract:
            await self._advance_after_extraction(proposal_id)
        if regenerate:
            self._spawn(self._run_generation(proposal_id), name=f"generate-{proposal_id}")

        logger.info("Proposal %s retried from failed into %s", proposal_id, proposal.status.value)
        return proposal

    # ── Restart recovery ─────────────────────────────────────────────

    async def recover(self) -> int:
        """Resume background work a restart interrupted. Called once at startup.

        Illustrations left ``processing`` go back to ``pending`` and are
        extracted again. A proposal left ``generating`` renders again; its
        pending analysis job runs as part of that.

        Returns:
            Number of proposals with resumed work.
        """
        resumed = 0
        proposals = await self._store.list_proposals(
            (ProposalStatus.EXTRACTING, ProposalStatus.REVIEWING, ProposalStatus.GENERATING)
        )
        for proposal in proposals:
            proposal_id = proposal.proposal_id

            if proposal.status == ProposalStatus.GENERATING:
                self._spawn(self._run_generation(proposal_id), name=f"generate-{proposal_id}")
                resumed += 1
                continue

            to_extract: list[uuid.UUID] = []
            async with self._proposal_locks.hold(proposal_id):
                for illustration in await self._store.list_illustrations(proposal_id):
                    if illustration.extraction_status == ExtractionStatus.PROCESSING:
                        illustration.extraction_status = ExtractionStatus.PENDING
                        await self._store.save_illustration(illustration)
                    if illustration.extraction_status == ExtractionStatus.PENDING:
                        to_extract.append(illustration.illustration_id)

            for illustration_id in to_extract:
                self._spawn(self._run_extraction(illustration_id), name=f"extract-{illustration_id}")
            if to_extract:
                resumed += 1
            elif proposal.status == ProposalStatus.EXTRACTING:
                await self._advance_after_extraction(proposal_id)
                resumed += 1

        if resumed:
            logger.info("Resumed interrupted work for %d proposal(s)", resumed)
        return resumed

    # ── Pages & download ─────────────────────────────────────────────

    async def _completed_illustrations(self, proposal_id: uuid.UUID) -> list[IllustrationRecord]:
        return [
            i for i in await self._store.list_illustrations(proposal_id)
            if i.extraction_status == ExtractionStatus.COMPLETED
        ]

    async def _page_context(
        self,
        proposal: ProposalRecord,
        illustrations: list[IllustrationRecord],
        page: ProposalPage,
    ) -> dict[str, Any]:
        job = await self._store.get_analysis_job(proposal.proposal_id)
        completed_job = job is not None and job.status == AnalysisStatus.COMPLETED
        return {
            "page": {"number": page.value, "title": page.title},
            "proposal": proposal.model_dump(mode="json"),
            "illustrations": [
                {
                    "order": i.order,
                    "filename": i.original_filename,
                    "insurance_id": i.selected_insurance_id,
                    "data": i.extracted_data.model_dump(mode="json") if i.extracted_data else None,
                    "user_notes": i.user_notes,
                }
                for i in illustrations
            ],
            "analysis": {
                "selected_ages": job.selected_ages if completed_job else [],
                "rationale": job.rationale if completed_job else None,
                "show_comparison": completed_job,
            },
        }

    async def _render(
        self,
        proposal: ProposalRecord,
        illustrations: list[IllustrationRecord],
        page: ProposalPage,
    ) -> PageContent:
        context = await self._page_context(proposal, illustrations, page)
        html = await self._renderer.render(proposal.proposal_id, page.value, context)
        content = PageContent(
            proposal_id=proposal.proposal_id,
            page_number=page.value,
            title=page.title,
            content=html,
        )
        await self._pages.set(content)

        await emit(SystemEvent(
            event_type=EventType.PAGE_RENDERED,
            proposal_id=proposal.proposal_id,
            data={"page": page.value},
            source_module="pipeline.orchestrator",
        ))
        return content

    async def _cached_or_render(
        self,
        proposal: ProposalRecord,
        illustrations: list[IllustrationRecord],
        page: ProposalPage,
    ) -> PageContent:
        cached = await self._pages.get(proposal.proposal_id, page.value)
        if cached is not None:
            return cached
        return await self._render(proposal, illustrations, page)

    async def get_page(self, proposal_id: uuid.UUID, page_number: int) -> PageContent:
        """One logical page (1..4).

        Page 3 is a placeholder while the analysis job is pending. That is a
        normal response, not an error.

        Raises:
            ValidationError: Page number outside 1..4.
            NotReadyError: Generation has not started.
        """
        try:
            page = ProposalPage(page_number)
        except ValueError as exc:
            raise ValidationError(f"Page number must be 1-4, got {page_number}") from exc

        proposal = await self._require_proposal(proposal_id)
        if proposal.status not in (ProposalStatus.GENERATING, ProposalStatus.COMPLETED):
            raise NotReadyError(
                f"Pages are available once generation starts (proposal is {proposal.status.value})",
                details={"status": proposal.status.value},
            )

        if page == ProposalPage.ILLUSTRATION:
            job = await self._store.get_analysis_job(proposal_id)
            if job is not None and job.status == AnalysisStatus.PENDING:
                return PageContent(
                    proposal_id=proposal_id,
                    page_number=page.value,
                    title=page.title,
                    content=PAGE3_PLACEHOLDER,
                    is_placeholder=True,
                )

        illustrations = await self._completed_illustrations(proposal_id)
        return await self._cached_or_render(proposal, illustrations, page)

    async def get_intelligent_analysis_status(self, proposal_id: uuid.UUID) -> AnalysisJobRecord | None:
        """Current analysis job, or None when the proposal needs none."""
        await self._require_proposal(proposal_id)
        return await self._analysis.get_status(proposal_id)

    async def download(self, proposal_id: uuid.UUID) -> ProposalDocument:
        """Assemble the final document. Only a completed proposal can be downloaded."""
        proposal = await self._require_proposal(proposal_id)
        if proposal.status != ProposalStatus.COMPLETED:
            raise NotReadyError(
                f"Proposal is {proposal.status.value}; download requires completed",
                details={"status": proposal.status.value},
            )

        illustrations = await self._completed_illustrations(proposal_id)
        pages = [await self._cached_or_render(proposal, illustrations, page) for page in ProposalPage]
        context = await self._page_context(proposal, illustrations, ProposalPage.TITLE)
        content = await self._renderer.render_full(proposal_id, context, [p.content for p in pages])

        await emit(SystemEvent(
            event_type=EventType.DOCUMENT_DOWNLOADED,
            proposal_id=proposal_id,
            data={"size_bytes": len(content)},
            source_module="pipeline.orchestrator",
        ))

        slug = _FILENAME_SAFE_RE.sub("-", proposal.client_name.lower()).strip("-") or "client"
        return ProposalDocument(
            proposal_id=proposal_id,
            filename=f"proposal-{slug}.pdf",
            content=content,
        )
