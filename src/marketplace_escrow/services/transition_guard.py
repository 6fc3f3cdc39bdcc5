"""Transition Guard — the single gate every status change goes through.

Validates an event against the record's state machine, then persists the
change with a compare-and-swap on the record's version column. Errors
from python-statemachine and from SQLAlchemy's optimistic lock are mapped
to the domain's typed exceptions here, so services never see them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.orm.exc import StaleDataError
from statemachine.exceptions import TransitionNotAllowed

from marketplace_escrow.domain.enums import SubjectType
from marketplace_escrow.domain.exceptions import (
    DuplicateResolutionError,
    InvalidTransitionError,
)
from marketplace_escrow.domain.state_machine import (
    DisputeStateMachine,
    OrderStateMachine,
    WorkProofStateMachine,
)
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.infrastructure.database.orm_models import (
        Dispute,
        Order,
        WorkProof,
    )

logger = get_logger(__name__)

_MACHINES = {
    "order": OrderStateMachine,
    "work_proof": WorkProofStateMachine,
    "dispute": DisputeStateMachine,
}


def _kind_of(record: Order | WorkProof | Dispute) -> str:
    return {"orders": "order", "work_proofs": "work_proof", "disputes": "dispute"}[
        record.__tablename__
    ]


class TransitionGuard:
    """Validates and persists status transitions for one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def check(self, record: Order | WorkProof | Dispute, event_name: str) -> str:
        """Return the status ``event_name`` would move the record to.

        Raises:
            DuplicateResolutionError: The record is a resolved work proof or
                dispute, or the event was already handled (a rejected proof
                cannot be reviewed again).
            InvalidTransitionError: The event is not legal from the current
                status.
        """
        kind = _kind_of(record)
        machine_cls = _MACHINES[kind]
        try:
            sm = machine_cls(current_status=record.status)
        except ValueError as err:
            raise InvalidTransitionError(record.status, event_name) from err

        if sm.in_final_state and machine_cls.duplicate_on_final:
            raise DuplicateResolutionError(kind, str(record.id), record.status)
        if event_name in machine_cls.handled_events.get(record.status, ()):
            raise DuplicateResolutionError(kind, str(record.id), record.status)

        event_method = getattr(sm, event_name, None)
        if event_method is None or not callable(event_method):
            raise InvalidTransitionError(record.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidTransitionError(record.status, event_name) from err
        return sm.status

    async def transition(
        self,
        record: Order | WorkProof | Dispute,
        event_name: str,
        **changes: Any,
    ) -> tuple[str, str]:
        """Fire an event, apply field changes, and persist with compare-and-swap.

        The UPDATE carries ``WHERE version = :seen``. If another transaction
        committed a change to the same record first, no row matches and this
        call fails instead of overwriting it.

        Returns:
            (old_status, new_status)
        """
        old_status = record.status
        new_status = self.check(record, event_name)
        record.status = new_status
        for field, value in changes.items():
            setattr(record, field, value)

        try:
            await self._session.flush()
        except StaleDataError as err:
            kind = _kind_of(record)
            logger.warning(
                "transition.lost_race",
                kind=kind,
                record_id=str(record.id),
                attempted=event_name,
            )
            if kind == SubjectType.ORDER.value:
                raise InvalidTransitionError(
                    old_status, event_name, detail="order changed concurrently"
                ) from err
            raise DuplicateResolutionError(kind, str(record.id), old_status) from err
        return old_status, new_status
