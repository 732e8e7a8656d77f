"""Batch re-evaluation — derive batch status from member orders.

Runs after every order-status write that can settle a batch (payment,
cancellation, refund, pickup, sweeps). The write is guarded on the batch
still being open, so a final batch is never downgraded and concurrent
re-evaluations converge on the same result.
"""

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from marketplace.batch.batch import OPEN_STATUSES, Batch, derive_batch_status
from marketplace.domain import marketplace
from marketplace.order.order import Order
from marketplace.shared.clock import utc_now
from marketplace.shared.transitions import conditional_update

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="Batch")
class ReevaluateBatch:
    batch_id = Identifier(required=True)
    trigger = String(max_length=50)


def member_statuses(batch_id: str) -> list[str]:
    members = current_domain.repository_for(Order)._dao.query.filter(batch_id=batch_id).all().items
    return [order.status for order in members]


@marketplace.command_handler(part_of=Batch)
class BatchAggregationHandler:
    @handle(ReevaluateBatch)
    def reevaluate(self, command):
        """Returns True when this call completed the batch."""
        try:
            batch = current_domain.repository_for(Batch).get(command.batch_id)
        except ObjectNotFoundError:
            logger.warning("batch_reevaluation_missing_batch", batch_id=command.batch_id)
            return False

        derived = derive_batch_status(batch.status, member_statuses(command.batch_id))
        if derived == batch.status:
            return False

        completed = conditional_update(
            Batch,
            command.batch_id,
            guard={"status__in": OPEN_STATUSES},
            changes={"status": derived, "completed_at": utc_now()},
        )
        if completed:
            logger.info(
                "batch_completed",
                batch_id=command.batch_id,
                previous_status=batch.status,
                trigger=command.trigger,
            )
        return completed


def reevaluate_batch_safely(batch_id: str | None, trigger: str) -> bool:
    """Non-blocking re-evaluation: failures are logged and never propagate."""
    if not batch_id:
        return False
    try:
        return current_domain.process(ReevaluateBatch(batch_id=batch_id, trigger=trigger), asynchronous=False)
    except Exception:
        logger.warning("batch_reevaluation_failed", batch_id=batch_id, trigger=trigger, exc_info=True)
        return False

