"""Intelligent Analysis Coordinator — picks the ages shown on page 3.

Page 3 compares projected cash surrender values across the proposal's
illustrations at a handful of representative ages. Choosing those ages is
the "intelligent analysis": a background job per proposal that callers
detect by polling the job status.

Selection (deterministic):
    1. Breakeven age: first age whose cash value reaches the cumulative
       premium paid, else policy year breakeven_years counted from the first age
    2. Final projected age
    3. Horizon ages: first age + 10/20/30 years (nearest available age)
    → deduplicated, sorted, at most ``analysis_max_ages``

Optionally the LLM proposes its own selection; anything it proposes is
validated against the available ages and the deterministic selection is
used on any failure.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Awaitable, Callable

import httpx

from wealthdesk.audit.events import emit
from wealthdesk.config import settings
from wealthdesk.llm.client import LLMResponseError, OllamaClient, llm_client
from wealthdesk.models.enums import AnalysisStatus
from wealthdesk.pipeline.locks import KeyedLocks
from wealthdesk.pipeline.store import IllustrationStore
from wealthdesk.schemas.events import EventType, SystemEvent
from wealthdesk.schemas.extraction import CashValueData, ExtractedData
from wealthdesk.schemas.proposal import AnalysisJobRecord, utcnow

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[AnalysisJobRecord], Awaitable[None]]

_YEARS_RE = re.compile(r"\d+")

ANALYSIS_SYSTEM_PROMPT = """\
You select the policy ages shown in a cash surrender value comparison table.
Pick at most {max_ages} ages from the AVAILABLE list only. Favour the breakeven
age, short/medium/long term ages and the final projected age.
Answer with JSON only: {{"ages": [..], "rationale": "one sentence"}}"""


# ── Deterministic selection ──────────────────────────────────────────


def available_ages(extractions: list[ExtractedData]) -> list[int]:
    """Ages projected by every illustration, or by any if they share none."""
    age_sets = [
        {point.age for point in data.cash_value_data.cash_values}
        for data in extractions
        if data.cash_value_data.cash_values
    ]
    if not age_sets:
        return []
    common = set.intersection(*age_sets)
    return sorted(common or set.union(*age_sets))


def nearest_age(target: int, ages: list[int]) -> int:
    """Closest available age; the younger one wins a tie."""
    return min(ages, key=lambda age: (abs(age - target), age))


def _payment_years(period: str | None) -> int | None:
    if not period:
        return None
    match = _YEARS_RE.search(period)
    return int(match.group(0)) if match else None


def breakeven_age(data: ExtractedData) -> int | None:
    """First age at which the cash value covers the premiums paid so far."""
    cv: CashValueData = data.cash_value_data
    if not cv.cash_values:
        return None
    first_age = cv.cash_values[0].age
    financial = data.financial_data

    if financial.premium_per_year is not None:
        years_payable = _payment_years(financial.payment_period)
        for point in cv.cash_values:
            years_paid = point.age - first_age + 1
            if years_payable is not None:
                years_paid = min(years_paid, years_payable)
            if point.value >= financial.premium_per_year * years_paid:
                return point.age
    elif financial.total_premium is not None:
        for point in cv.cash_values:
            if point.value >= financial.total_premium:
                return point.age

    if cv.breakeven_years is not None:
        return first_age + cv.breakeven_years - 1
    return None


def select_representative_ages(
    extractions: list[ExtractedData],
    horizons: list[int] | None = None,
    max_ages: int | None = None,
) -> tuple[list[int], str]:
    """Deterministic age selection across a proposal's illustrations.

    Returns:
        (selected ages ascending, rationale). Empty when no illustration has
        cash values.
    """
    horizons = horizons if horizons is not None else settings.analysis.horizons
    max_ages = max_ages or settings.analysis.analysis_max_ages

    ages = available_ages(extractions)
    if not ages:
        return [], "No cash value projections to compare"

    first_age = ages[0]
    reasons: list[str] = []
    # Priority order when the cap forces a cut
    picks: list[int] = []

    breakevens = [age for age in (breakeven_age(data) for data in extractions) if age is not None]
    if breakevens:
        picks.append(nearest_age(min(breakevens), ages))
        reasons.append(f"breakeven at {picks[-1]}")

    picks.append(ages[-1])
    reasons.append(f"final age {ages[-1]}")

    for years in horizons:
        picks.append(nearest_age(first_age + years, ages))
        reasons.append(f"{years}-year horizon at {picks[-1]}")

    selected: list[int] = []
    for age in picks:
        if age not in selected:
            selected.append(age)
    selected = sorted(selected[:max_ages])

    return selected, "; ".join(reasons)


def validate_llm_ages(proposed: object, allowed: list[int], max_ages: int) -> list[int] | None:
    """Keep an LLM proposal only if it is a non-empty list of allowed ages."""
    if not isinstance(proposed, list) or not proposed:
        return None
    ages: list[int] = []
    for value in proposed:
        if isinstance(value, bool) or not isinstance(value, int) or value not in allowed:
            return None
        if value not in ages:
            ages.append(value)
    return sorted(ages)[:max_ages]


# ── Coordinator ──────────────────────────────────────────────────────


class AnalysisCoordinator:
    """Creates, runs and finalizes the per-proposal analysis job."""

    def __init__(
        self,
        store: IllustrationStore,
        locks: KeyedLocks | None = None,
        llm: OllamaClient | None = None,
        use_llm: bool | None = None,
    ) -> None:
        self._store = store
        self._locks = locks or KeyedLocks()
        self._llm = llm or llm_client
        self._use_llm = settings.analysis.analysis_use_llm if use_llm is None else use_llm

    async def create_job(self, proposal_id: uuid.UUID) -> AnalysisJobRecord:
        """Create a fresh pending job, replacing any finished one.

        A job that is still pending is returned as is: at most one live job
        per proposal.
        """
        existing = await self._store.get_analysis_job(proposal_id)
        if existing is not None and existing.status == AnalysisStatus.PENDING:
            return existing

        job = AnalysisJobRecord(proposal_id=proposal_id)
        await self._store.save_analysis_job(job)
        await emit(SystemEvent(
            event_type=EventType.ANALYSIS_STARTED,
            proposal_id=proposal_id,
            source_module="pipeline.analysis",
        ))
        logger.info("Analysis job created for proposal %s", proposal_id)
        return job

    async def get_status(self, proposal_id: uuid.UUID) -> AnalysisJobRecord | None:
        """Side-effect free job lookup."""
        return await self._store.get_analysis_job(proposal_id)

    async def run(
        self,
        proposal_id: uuid.UUID,
        extractions: list[ExtractedData],
        on_complete: CompletionCallback | None = None,
    ) -> AnalysisJobRecord | None:
        """Compute the selection and finalize the job exactly once.

        Never raises: any failure finalizes the job as failed.
        """
        try:
            ages, rationale = await self._select(extractions)
        except Exception as exc:
            logger.exception("Analysis failed for proposal %s", proposal_id)
            return await self._finish(proposal_id, AnalysisStatus.FAILED, [], None, str(exc), on_complete)

        if not ages:
            return await self._finish(proposal_id, AnalysisStatus.FAILED, [], None, rationale, on_complete)
        return await self._finish(proposal_id, AnalysisStatus.COMPLETED, ages, rationale, None, on_complete)

    async def _select(self, extractions: list[ExtractedData]) -> tuple[list[int], str]:
        ages, rationale = select_representative_ages(extractions)
        if not ages or not self._use_llm:
            return ages, rationale

        refined = await self._refine_with_llm(available_ages(extractions), ages)
        return refined or (ages, rationale)

    async def _refine_with_llm(
        self,
        allowed: list[int],
        baseline: list[int],
    ) -> tuple[list[int], str] | None:
        """Ask the LLM for a selection. None means use the baseline."""
        max_ages = settings.analysis.analysis_max_ages
        try:
            payload = await self._llm.chat_json(
                ANALYSIS_SYSTEM_PROMPT.format(max_ages=max_ages),
                json.dumps({"AVAILABLE": allowed, "SUGGESTED": baseline}),
            )
        except httpx.HTTPError:
            logger.warning("LLM age selection unavailable, using deterministic selection")
            return None
        except LLMResponseError as exc:
            logger.warning("LLM age selection unusable (%s), using deterministic selection", exc)
            return None

        ages = validate_llm_ages(payload.get("ages"), allowed, max_ages)
        if ages is None:
            logger.warning("LLM proposed invalid ages %r, using deterministic selection", payload.get("ages"))
            return None
        return ages, str(payload.get("rationale") or "Selected by analysis model")

    async def _finish(
        self,
        proposal_id: uuid.UUID,
        status: AnalysisStatus,
        ages: list[int],
        rationale: str | None,
        error: str | None,
        on_complete: CompletionCallback | None,
    ) -> AnalysisJobRecord | None:
        async with self._locks.hold(proposal_id):
            job = await self._store.get_analysis_job(proposal_id)
            if job is None:
                logger.info("Analysis result for deleted proposal %s discarded", proposal_id)
                return None
            if job.status != AnalysisStatus.PENDING:
                return job

            job.status = status
            job.selected_ages = ages
            job.rationale = rationale
            job.error = error
            job.finished_at = utcnow()
            if not await self._store.save_analysis_job(job):
                logger.info("Analysis result for deleted proposal %s discarded", proposal_id)
                return None

        completed = status == AnalysisStatus.COMPLETED
        await emit(SystemEvent(
            event_type=EventType.ANALYSIS_COMPLETED if completed else EventType.ANALYSIS_FAILED,
            proposal_id=proposal_id,
            data={"selected_ages": ages, "error": error},
            source_module="pipeline.analysis",
        ))
        logger.info(
            "Analysis %s for proposal %s: ages=%s",
            status.value,
            proposal_id,
            ages,
        )

        if on_complete is not None:
            await on_complete(job)
        return job
