"""
Transaction lifecycle.

    pending -> paid -> delivered_pending_confirmation -> completed
       |         |                 |                         |
       +---------+-----------------+------> disputed <-------+ (dispute window)
                                               |
                                               +--> completed | refunded

Every status change goes through `compare_and_set`, a single conditional
UPDATE on (id, status, version). When two requests race on the same
transaction exactly one UPDATE matches a row; the other raises
`InvalidTransition`.
"""

import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from pacmac.core.exceptions import InvalidTransition, TransactionNotFound
from pacmac.models.enums.transaction_status import TransactionStatus
from pacmac.models.transaction_model import Transaction, TransactionEvent

S = TransactionStatus

TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    S.PENDING: frozenset({S.PAID, S.DISPUTED}),
    S.PAID: frozenset({S.DELIVERED_PENDING_CONFIRMATION, S.DISPUTED}),
    S.DELIVERED_PENDING_CONFIRMATION: frozenset({S.COMPLETED, S.DISPUTED}),
    # completed only reopens through a dispute filed inside the dispute window
    S.COMPLETED: frozenset({S.DISPUTED}),
    S.DISPUTED: frozenset({S.COMPLETED, S.REFUNDED}),
    S.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.REFUNDED})

# timestamp written in the same statement as the move into a status
TIMESTAMP_FIELDS: dict[TransactionStatus, str] = {
    S.PAID: "paid_at",
    S.DELIVERED_PENDING_CONFIRMATION: "delivered_at",
    S.COMPLETED: "completed_at",
    S.DISPUTED: "disputed_at",
    S.REFUNDED: "refunded_at",
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


async def compare_and_set(
    session: AsyncSession,
    tx: Transaction,
    values: dict[str, Any],
    *,
    target: TransactionStatus | None = None,
    actor_id: int | None = None,
    note: str | None = None,
) -> Transaction:
    """
    Conditionally writes `values` to a transaction that is still in the status
    and version the caller read.

    When `target` is given the transition is validated first and the status
    (plus its timestamp, if one is listed in TIMESTAMP_FIELDS and not supplied)
    is written in the same statement, and an audit event is appended.
    The caller commits.

    :raises InvalidTransition: If the transition is illegal or another request changed the row first.
    """
    current = tx.status
    values = dict(values)
    if target is not None:
        ensure_transition(current, target)
        values["status"] = target
        timestamp_field = TIMESTAMP_FIELDS.get(target)
        if timestamp_field and timestamp_field not in values:
            raise ValueError(f"{timestamp_field} must be set when moving to {target.value}")
    values["version"] = tx.version + 1

    stmt = (
        update(Transaction)
        .where(
            Transaction.id == tx.id,
            Transaction.status == current,
            Transaction.version == tx.version,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        fresh = await reload_transaction(session, tx.id)
        raise InvalidTransition(
            fresh.status,
            target or fresh.status,
            f"Transaction {tx.id} changed concurrently (now '{fresh.status.value}').",
        )

    if target is not None:
        session.add(
            TransactionEvent(
                transaction_id=tx.id,
                from_status=current,
                to_status=target,
                actor_id=actor_id,
                note=note,
            )
        )
        await session.flush()

    return await reload_transaction(session, tx.id)


async def reload_transaction(session: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    tx = await session.get(Transaction, transaction_id, populate_existing=True)
    if tx is None:
        raise TransactionNotFound(transaction_id)
    return tx
