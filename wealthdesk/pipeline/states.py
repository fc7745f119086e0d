"""Proposal state definitions and transition map.

The proposal follows a strict state machine. Pipeline stages report what
happened via triggers; only the state machine decides the next status.
"""

from __future__ import annotations

from wealthdesk.models.enums import ProposalStatus

# Transition map: {current_state: {trigger_name: next_state}}
TRANSITIONS: dict[ProposalStatus, dict[str, ProposalStatus]] = {
    ProposalStatus.DRAFT: {
        "extraction_started": ProposalStatus.EXTRACTING,
    },
    ProposalStatus.EXTRACTING: {
        "extraction_finished": ProposalStatus.REVIEWING,
        "extraction_failed": ProposalStatus.FAILED,
    },
    ProposalStatus.REVIEWING: {
        "generation_started": ProposalStatus.GENERATING,
    },
    ProposalStatus.GENERATING: {
        "generation_finished": ProposalStatus.COMPLETED,
        "generation_failed": ProposalStatus.FAILED,
    },
    ProposalStatus.COMPLETED: {},
    # Leaving FAILED is the explicit retry edge, resolved against failed_from
    ProposalStatus.FAILED: {},
}

# Internal errors can fail any non-terminal state
UNIVERSAL_TRANSITIONS: dict[str, ProposalStatus] = {
    "fail": ProposalStatus.FAILED,
}

RETRY_TRIGGER = "retry"

TERMINAL_STATES: frozenset[ProposalStatus] = frozenset({ProposalStatus.COMPLETED, ProposalStatus.FAILED})

# Illustration uploads and deletes are only accepted here
MUTABLE_STATES: frozenset[ProposalStatus] = frozenset({ProposalStatus.DRAFT, ProposalStatus.REVIEWING})

