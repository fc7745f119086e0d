"""Finite state machine for proposal status control.

The FSM validates transitions and emits state-change events. Status is
monotonic along draft → extracting → reviewing → generating → completed;
the only way back is the explicit retry edge out of FAILED, which returns
to the status the proposal failed from.
"""

from __future__ import annotations

import logging
import uuid

from wealthdesk.audit.events import emit
from wealthdesk.errors import ConflictError
from wealthdesk.models.enums import ProposalStatus
from wealthdesk.pipeline.states import (
    MUTABLE_STATES,
    RETRY_TRIGGER,
    TERMINAL_STATES,
    TRANSITIONS,
    UNIVERSAL_TRANSITIONS,
)
from wealthdesk.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class ProposalStateMachine:
    """Manages status transitions for a single proposal."""

    def __init__(
        self,
        proposal_id: uuid.UUID,
        initial_state: ProposalStatus = ProposalStatus.DRAFT,
        failed_from: ProposalStatus | None = None,
    ) -> None:
        self.proposal_id = proposal_id
        self.current_state = initial_state
        self.failed_from = failed_from

    def can_transition(self, trigger: str) -> bool:
        """Check if a trigger is valid from the current state."""
        if trigger == RETRY_TRIGGER:
            return self.current_state == ProposalStatus.FAILED and self.failed_from is not None
        if trigger in UNIVERSAL_TRANSITIONS:
            return not self.is_terminal
        return trigger in TRANSITIONS.get(self.current_state, {})

    def get_valid_triggers(self) -> list[str]:
        """Return all valid trigger names for the current state."""
        triggers = list(TRANSITIONS.get(self.current_state, {}).keys())
        if not self.is_terminal:
            triggers.extend(UNIVERSAL_TRANSITIONS.keys())
        if self.can_transition(RETRY_TRIGGER):
            triggers.append(RETRY_TRIGGER)
        return triggers

    async def transition(self, trigger: str, note: str | None = None) -> ProposalStatus:
        """Execute a status transition.

        Args:
            trigger: The trigger name reported by a pipeline stage.
            note: Optional human-readable reason, carried on the event.

        Returns:
            The new status after transition.

        Raises:
            ConflictError: If the trigger is not valid from the current state.
        """
        old_state = self.current_state

        if not self.can_transition(trigger):
            msg = (
                f"Invalid transition: {self.current_state.value} --{trigger}--> ??? "
                f"(valid: {self.get_valid_triggers()})"
            )
            raise ConflictError(msg, details={"status": old_state.value, "trigger": trigger})

        if trigger == RETRY_TRIGGER and self.failed_from is not None:
            self.current_state = self.failed_from
            self.failed_from = None
        else:
            next_state = UNIVERSAL_TRANSITIONS.get(trigger) or TRANSITIONS[self.current_state][trigger]
            if next_state == ProposalStatus.FAILED:
                self.failed_from = old_state
            self.current_state = next_state

        logger.info(
            "Status transition: %s --%s--> %s (proposal=%s)",
            old_state.value,
            trigger,
            self.current_state.value,
            self.proposal_id,
        )

        await emit(SystemEvent(
            event_type=EventType.PROPOSAL_STATUS_CHANGED,
            proposal_id=self.proposal_id,
            data={
                "from_state": old_state.value,
                "to_state": self.current_state.value,
                "trigger": trigger,
                "note": note,
            },
            source_module="pipeline.fsm",
        ))

        return self.current_state

    def ensure_mutable(self, action: str = "modify illustrations") -> None:
        """Raise ConflictError unless illustrations may be added or removed now."""
        if self.current_state not in MUTABLE_STATES:
            raise ConflictError(
                f"Cannot {action} while proposal is {self.current_state.value}",
                details={"status": self.current_state.value},
            )

    @property
    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES
