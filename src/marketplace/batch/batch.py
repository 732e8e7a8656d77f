"""Batch aggregate — the orders a buyer collects from one seller at one show.

A batch's status is derived from its member orders rather than asserted,
and it is monotonic: once COMPLETED, PICKED_UP or CANCELLED it never moves
again.
"""

import secrets
from collections.abc import Iterable
from enum import Enum

from protean.fields import DateTime, Identifier, String

from marketplace.domain import marketplace
from marketplace.order.order import generate_completion_code
from marketplace.shared.clock import utc_now


class BatchStatus(Enum):
    PENDING = "pending"
    READY = "ready"
    COMPLETED = "completed"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"


FINAL_STATUSES = frozenset({BatchStatus.COMPLETED.value, BatchStatus.PICKED_UP.value, BatchStatus.CANCELLED.value})
OPEN_STATUSES = [BatchStatus.PENDING.value, BatchStatus.READY.value]

# Member statuses that no longer need anything from the batch
SETTLED_ORDER_STATUSES = frozenset({"completed", "picked_up", "refunded", "cancelled"})

BATCH_CODE_LENGTH = 8


def derive_batch_status(current: str, member_statuses: Iterable[str]) -> str:
    """Status a batch should have given its members' statuses.

    COMPLETED iff there is at least one member and every member is settled.
    Final statuses are returned unchanged.
    """
    if current in FINAL_STATUSES:
        return current

    statuses = list(member_statuses)
    if statuses and all(status in SETTLED_ORDER_STATUSES for status in statuses):
        return BatchStatus.COMPLETED.value
    return current


@marketplace.aggregate
class Batch:
    buyer_id = Identifier(required=True)
    seller_entity_id = Identifier(required=True)
    show_id = Identifier()
    batch_number = String(required=True, max_length=20)
    completion_code = String(required=True, max_length=20)
    status = String(choices=BatchStatus, default=BatchStatus.PENDING.value)
    ready_at = DateTime()
    completed_at = DateTime()
    picked_up_at = DateTime()
    created_at = DateTime()

    @classmethod
    def open(cls, buyer_id: str, seller_entity_id: str, show_id: str | None = None):
        return cls(
            buyer_id=buyer_id,
            seller_entity_id=seller_entity_id,
            show_id=show_id,
            batch_number=f"B-{secrets.token_hex(3).upper()}",
            completion_code=generate_completion_code(BATCH_CODE_LENGTH),
            created_at=utc_now(),
        )

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES
