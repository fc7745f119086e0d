"""Tests for the intelligent analysis stage.

Covers:
- Representative age selection (breakeven, horizons, final age, cap)
- LLM refinement validated against available ages, with fallback
- Job lifecycle: pending → completed|failed exactly once, idempotent reads
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest
from factories import make_extracted

from wealthdesk.llm.client import LLMResponseError
from wealthdesk.models.enums import AnalysisStatus
from wealthdesk.pipeline.analysis import (
    AnalysisCoordinator,
    available_ages,
    breakeven_age,
    nearest_age,
    select_representative_ages,
    validate_llm_ages,
)
from wealthdesk.pipeline.store import InMemoryIllustrationStore
from wealthdesk.schemas.proposal import ProposalRecord


class TestAgeHelpers:
    def test_available_ages_prefers_common_ages(self):
        a = make_extracted()
        b = make_extracted(cash_values=[(35, 10), (40, 20), (45, 30), (120, 40)])
        assert available_ages([a, b]) == [35, 40, 45]

    def test_available_ages_falls_back_to_union(self):
        a = make_extracted(cash_values=[(30, 1), (31, 2)])
        b = make_extracted(cash_values=[(50, 1)])
        assert available_ages([a, b]) == [30, 31, 50]

    def test_no_cash_values(self):
        assert available_ages([make_extracted(cash_values=[])]) == []

    def test_nearest_age_tie_prefers_younger(self):
        assert nearest_age(42, [40, 44, 60]) == 40
        assert nearest_age(59, [40, 44, 60]) == 60

    def test_breakeven_from_cumulative_premium(self):
        # value = (age - 30)^2 * 100 vs 1000 per year paid: equal at age 40
        assert breakeven_age(make_extracted()) == 40

    def test_breakeven_from_total_premium(self):
        data = make_extracted(premium_per_year=None, cash_values=[(40, 100), (41, 5000), (42, 9000)])
        data.financial_data.total_premium = 8000
        assert breakeven_age(data) == 42

    def test_breakeven_from_years(self):
        data = make_extracted(premium_per_year=None)
        data.cash_value_data.breakeven_years = 12
        assert breakeven_age(data) == 42

    def test_breakeven_rules_count_policy_years_alike(self):
        # Premium rule reaches breakeven in policy year 10 (age 40)
        by_premium = breakeven_age(make_extracted())
        data = make_extracted(premium_per_year=None)
        data.cash_value_data.breakeven_years = 10
        assert breakeven_age(data) == by_premium == 40


class TestSelectRepresentativeAges:
    def test_default_selection(self):
        ages, rationale = select_representative_ages([make_extracted()], horizons=[10, 20, 30], max_ages=5)

        assert ages == [40, 41, 51, 61, 99]
        assert "breakeven at 40" in rationale
        assert "final age 99" in rationale

    def test_cap_keeps_breakeven_and_final_first(self):
        ages, _ = select_representative_ages([make_extracted()], horizons=[10, 20, 30], max_ages=3)
        assert ages == [40, 41, 99]

    def test_duplicates_collapse(self):
        data = make_extracted(premium_per_year=None, cash_values=[(40, 1), (45, 2), (50, 3)])
        ages, _ = select_representative_ages([data], horizons=[10, 20, 30], max_ages=5)
        assert ages == [50]

    def test_sorted_and_within_available(self):
        extractions = [make_extracted(), make_extracted(cash_values=[(a, a) for a in range(35, 90, 5)])]
        ages, _ = select_representative_ages(extractions, horizons=[10, 20, 30], max_ages=5)
        assert ages == sorted(set(ages))
        assert set(ages) <= set(available_ages(extractions))

    def test_nothing_to_compare(self):
        ages, rationale = select_representative_ages([make_extracted(cash_values=[])])
        assert ages == []
        assert "No cash value" in rationale


class TestValidateLlmAges:
    def test_accepts_allowed_ages(self):
        assert validate_llm_ages([61, 40, 40], [40, 61, 99], 5) == [40, 61]

    @pytest.mark.parametrize("proposed", [[], "40,61", [40, 1000], [True], None, [40.5]])
    def test_rejects_invalid(self, proposed):
        assert validate_llm_ages(proposed, [40, 61, 99], 5) is None


# ── Coordinator ──────────────────────────────────────────────────────


@pytest.fixture()
def store() -> InMemoryIllustrationStore:
    return InMemoryIllustrationStore()


@pytest.fixture()
async def proposal(store) -> ProposalRecord:
    record = ProposalRecord(client_name="Aisyah", client_needs="Retirement savings for two kids")
    await store.add_proposal(record)
    return record


class TestCoordinator:
    @pytest.mark.asyncio()
    async def test_job_completes_once(self, store, proposal):
        coordinator = AnalysisCoordinator(store, use_llm=False)
        on_complete = AsyncMock()

        job = await coordinator.create_job(proposal.proposal_id)
        assert job.status == AnalysisStatus.PENDING

        done = await coordinator.run(proposal.proposal_id, [make_extracted()], on_complete=on_complete)
        assert done.status == AnalysisStatus.COMPLETED
        assert done.selected_ages == [40, 41, 51, 61, 99]
        assert done.finished_at is not None

        again = await coordinator.run(
            proposal.proposal_id,
            [make_extracted(cash_values=[(50, 1), (60, 2)])],
            on_complete=on_complete,
        )
        assert again.selected_ages == [40, 41, 51, 61, 99]
        on_complete.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_status_reads_are_idempotent(self, store, proposal):
        coordinator = AnalysisCoordinator(store, use_llm=False)
        await coordinator.create_job(proposal.proposal_id)

        first = await coordinator.get_status(proposal.proposal_id)
        second = await coordinator.get_status(proposal.proposal_id)
        assert first == second
        assert first.status == AnalysisStatus.PENDING

    @pytest.mark.asyncio()
    async def test_create_job_keeps_live_job(self, store, proposal):
        coordinator = AnalysisCoordinator(store, use_llm=False)
        first = await coordinator.create_job(proposal.proposal_id)
        second = await coordinator.create_job(proposal.proposal_id)
        assert first.created_at == second.created_at

    @pytest.mark.asyncio()
    async def test_no_cash_values_fails_with_note(self, store, proposal):
        coordinator = AnalysisCoordinator(store, use_llm=False)
        await coordinator.create_job(proposal.proposal_id)

        job = await coordinator.run(proposal.proposal_id, [make_extracted(cash_values=[])])

        assert job.status == AnalysisStatus.FAILED
        assert job.error

    @pytest.mark.asyncio()
    async def test_result_for_deleted_proposal_is_discarded(self, store, proposal):
        coordinator = AnalysisCoordinator(store, use_llm=False)
        await coordinator.create_job(proposal.proposal_id)
        await store.delete_proposal(proposal.proposal_id)

        assert await coordinator.run(proposal.proposal_id, [make_extracted()]) is None
        assert await store.get_analysis_job(proposal.proposal_id) is None


class TestLlmRefinement:
    @pytest.mark.asyncio()
    async def test_valid_llm_selection_used(self, store, proposal):
        llm = AsyncMock()
        llm.chat_json = AsyncMock(return_value={"ages": [99, 40], "rationale": "breakeven and maturity"})
        coordinator = AnalysisCoordinator(store, llm=llm, use_llm=True)
        await coordinator.create_job(proposal.proposal_id)

        job = await coordinator.run(proposal.proposal_id, [make_extracted()])

        assert job.selected_ages == [40, 99]
        assert job.rationale == "breakeven and maturity"

    @pytest.mark.asyncio()
    async def test_invalid_llm_selection_falls_back(self, store, proposal):
        llm = AsyncMock()
        llm.chat_json = AsyncMock(return_value={"ages": [12, 200]})
        coordinator = AnalysisCoordinator(store, llm=llm, use_llm=True)
        await coordinator.create_job(proposal.proposal_id)

        job = await coordinator.run(proposal.proposal_id, [make_extracted()])

        assert job.selected_ages == [40, 41, 51, 61, 99]

    @pytest.mark.asyncio()
    async def test_llm_outage_falls_back(self, store, proposal):
        llm = AsyncMock()
        llm.chat_json = AsyncMock(side_effect=httpx.ConnectError("refused"))
        coordinator = AnalysisCoordinator(store, llm=llm, use_llm=True)
        await coordinator.create_job(proposal.proposal_id)

        job = await coordinator.run(proposal.proposal_id, [make_extracted()])

        assert job.status == AnalysisStatus.COMPLETED
        assert job.selected_ages == [40, 41, 51, 61, 99]

    @pytest.mark.asyncio()
    async def test_non_json_reply_falls_back(self, store, proposal):
        llm = AsyncMock()
        llm.chat_json = AsyncMock(side_effect=LLMResponseError("No JSON object in model reply"))
        coordinator = AnalysisCoordinator(store, llm=llm, use_llm=True)
        await coordinator.create_job(proposal.proposal_id)

        job = await coordinator.run(proposal.proposal_id, [make_extracted()])

        assert job.selected_ages == [40, 41, 51, 61, 99]
