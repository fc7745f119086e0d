"""Illustration Store — proposals, their illustrations and analysis jobs.

The orchestrator is the only writer. Stores hand out copies of records, so a
caller mutating a record has no effect until it is saved back. Saving a
record whose row has been deleted is a no-op reported as ``False``; that is
how late background results are discarded after a delete.
"""

from __future__ import annotations

import abc
import uuid
from collections.abc import Collection

from wealthdesk.models.enums import ProposalStatus
from wealthdesk.schemas.proposal import (
    AnalysisJobRecord,
    IllustrationRecord,
    ProposalRecord,
    utcnow,
)


class IllustrationStore(abc.ABC):
    """Persistence interface used by the orchestrator."""

    # ── Proposals ────────────────────────────────────────────────────

    @abc.abstractmethod
    async def add_proposal(self, proposal: ProposalRecord) -> None: ...

    @abc.abstractmethod
    async def get_proposal(self, proposal_id: uuid.UUID) -> ProposalRecord | None: ...

    @abc.abstractmethod
    async def save_proposal(self, proposal: ProposalRecord) -> bool: ...

    @abc.abstractmethod
    async def delete_proposal(self, proposal_id: uuid.UUID) -> bool:
        """Delete a proposal with its illustrations and analysis job."""

    @abc.abstractmethod
    async def list_proposals(self, statuses: Collection[ProposalStatus]) -> list[ProposalRecord]:
        """Proposals currently in one of ``statuses``."""

    # ── Illustrations ────────────────────────────────────────────────

    @abc.abstractmethod
    async def add_illustrations(self, illustrations: list[IllustrationRecord]) -> None:
        """Insert several illustrations; all of them or none."""

    @abc.abstractmethod
    async def get_illustration(self, illustration_id: uuid.UUID) -> IllustrationRecord | None: ...

    @abc.abstractmethod
    async def list_illustrations(self, proposal_id: uuid.UUID) -> list[IllustrationRecord]:
        """Illustrations of a proposal ordered by ``order``."""

    @abc.abstractmethod
    async def save_illustration(self, illustration: IllustrationRecord) -> bool: ...

    @abc.abstractmethod
    async def delete_illustration(self, illustration_id: uuid.UUID) -> bool: ...

    # ── Analysis jobs ────────────────────────────────────────────────

    @abc.abstractmethod
    async def get_analysis_job(self, proposal_id: uuid.UUID) -> AnalysisJobRecord | None: ...

    @abc.abstractmethod
    async def save_analysis_job(self, job: AnalysisJobRecord) -> bool:
        """Insert or replace the job of a proposal. False if the proposal is gone."""

    @abc.abstractmethod
    async def delete_analysis_job(self, proposal_id: uuid.UUID) -> bool: ...


class InMemoryIllustrationStore(IllustrationStore):
    """Dict-backed store for development and tests."""

    def __init__(self) -> None:
        self._proposals: dict[uuid.UUID, ProposalRecord] = {}
        self._illustrations: dict[uuid.UUID, IllustrationRecord] = {}
        self._jobs: dict[uuid.UUID, AnalysisJobRecord] = {}

    async def add_proposal(self, proposal: ProposalRecord) -> None:
        self._proposals[proposal.proposal_id] = proposal.model_copy(deep=True)

    async def get_proposal(self, proposal_id: uuid.UUID) -> ProposalRecord | None:
        proposal = self._proposals.get(proposal_id)
        return proposal.model_copy(deep=True) if proposal else None

    async def save_proposal(self, proposal: ProposalRecord) -> bool:
        if proposal.proposal_id not in self._proposals:
            return False
        proposal.updated_at = utcnow()
        self._proposals[proposal.proposal_id] = proposal.model_copy(deep=True)
        return True

    async def delete_proposal(self, proposal_id: uuid.UUID) -> bool:
        if self._proposals.pop(proposal_id, None) is None:
            return False
        for illustration_id in [
            i.illustration_id for i in self._illustrations.values() if i.proposal_id == proposal_id
        ]:
            del self._illustrations[illustration_id]
        self._jobs.pop(proposal_id, None)
        return True

    async def list_proposals(self, statuses: Collection[ProposalStatus]) -> list[ProposalRecord]:
        wanted = set(statuses)
        return [p.model_copy(deep=True) for p in self._proposals.values() if p.status in wanted]

    async def add_illustrations(self, illustrations: list[IllustrationRecord]) -> None:
        for illustration in illustrations:
            if illustration.proposal_id not in self._proposals:
                raise KeyError(f"Unknown proposal {illustration.proposal_id}")
        for illustration in illustrations:
            self._illustrations[illustration.illustration_id] = illustration.model_copy(deep=True)

    async def get_illustration(self, illustration_id: uuid.UUID) -> IllustrationRecord | None:
        illustration = self._illustrations.get(illustration_id)
        return illustration.model_copy(deep=True) if illustration else None

    async def list_illustrations(self, proposal_id: uuid.UUID) -> list[IllustrationRecord]:
        owned = [i for i in self._illustrations.values() if i.proposal_id == proposal_id]
        return [i.model_copy(deep=True) for i in sorted(owned, key=lambda i: i.order)]

    async def save_illustration(self, illustration: IllustrationRecord) -> bool:
        if illustration.illustration_id not in self._illustrations:
            return False
        illustration.updated_at = utcnow()
        self._illustrations[illustration.illustration_id] = illustration.model_copy(deep=True)
        return True

    async def delete_illustration(self, illustration_id: uuid.UUID) -> bool:
        return self._illustrations.pop(illustration_id, None) is not None

    async def get_analysis_job(self, proposal_id: uuid.UUID) -> AnalysisJobRecord | None:
        job = self._jobs.get(proposal_id)
        return job.model_copy(deep=True) if job else None

    async def save_analysis_job(self, job: AnalysisJobRecord) -> bool:
        if job.proposal_id not in self._proposals:
            return False
        job.updated_at = utcnow()
        self._jobs[job.proposal_id] = job.model_copy(deep=True)
        return True

    async def delete_analysis_job(self, proposal_id: uuid.UUID) -> bool:
        return self._jobs.pop(proposal_id, None) is not None
