"""Batch assignment for newly placed orders."""

import structlog
from protean.utils.globals import current_domain

from marketplace.batch.batch import OPEN_STATUSES, Batch
from marketplace.order.order import Order
from marketplace.shared.transitions import conditional_update

logger = structlog.get_logger(__name__)

MAX_REASSIGNMENTS = 3


def find_open_batch(buyer_id: str, seller_entity_id: str, show_id: str | None) -> Batch | None:
    candidates = (
        current_domain.repository_for(Batch)
        ._dao.query.filter(
            buyer_id=buyer_id,
            seller_entity_id=seller_entity_id,
            status__in=OPEN_STATUSES,
        )
        .all()
        .items
    )
    for batch in candidates:
        if (batch.show_id or None) == (show_id or None):
            return batch
    return None


def assign_batch(buyer_id: str, seller_entity_id: str, show_id: str | None = None) -> str:
    """Return the open batch for this buyer, seller and show, opening one if needed."""
    batch = find_open_batch(buyer_id, seller_entity_id, show_id)
    if batch is not None:
        return str(batch.id)

    batch = Batch.open(buyer_id=buyer_id, seller_entity_id=seller_entity_id, show_id=show_id)
    current_domain.repository_for(Batch).add(batch)
    logger.info(
        "batch_opened",
        batch_id=batch.id,
        batch_number=batch.batch_number,
        buyer_id=buyer_id,
        seller_entity_id=seller_entity_id,
    )
    return str(batch.id)


def confirm_batch_assignment(
    order_id: str, batch_id: str, buyer_id: str, seller_entity_id: str, show_id: str | None
) -> str:
    """Move a just-placed order off a batch that settled while it was being written.

    A re-evaluation that read the members before the order landed may have
    completed the batch in the meantime. Re-reading the batch after the insert
    means either that re-evaluation saw the order, or this check sees the
    final status and re-homes the order to a fresh batch.
    """
    repo = current_domain.repository_for(Batch)
    for _ in range(MAX_REASSIGNMENTS):
        if repo.get(batch_id).status in OPEN_STATUSES:
            return batch_id

        replacement = assign_batch(buyer_id, seller_entity_id, show_id)
        if not conditional_update(Order, order_id, {"batch_id": batch_id}, {"batch_id": replacement}):
            # Someone else moved it; follow them
            batch_id = str(current_domain.repository_for(Order).get(order_id).batch_id)
            continue
        logger.warning(
            "order_reassigned_from_settled_batch", order_id=order_id, from_batch=batch_id, to_batch=replacement
        )
        batch_id = replacement

    logger.error("batch_assignment_unsettled", order_id=order_id, batch_id=batch_id)
    return batch_id
