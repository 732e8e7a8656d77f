"""Seller pickup actions on a batch.

``mark_batch_ready`` tells the buyer the items are packed (batch
pending → ready, paid members → fulfilled). ``confirm_pickup`` is called
when the buyer shows the batch code: members move to completed and the
batch to picked_up. Both are guarded and can be repeated safely.
"""

from dataclasses import dataclass, field

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from marketplace.batch.batch import OPEN_STATUSES, Batch, BatchStatus
from marketplace.order.lifecycle import CompleteOrder, FulfillOrder
from marketplace.order.order import Order, OrderStatus
from marketplace.seller.lookup import get_seller
from marketplace.shared.clock import utc_now
from marketplace.shared.errors import BatchAlreadyCompleted, BatchNotFound, Forbidden
from marketplace.shared.transitions import conditional_update

logger = structlog.get_logger(__name__)

MIN_CODE_LENGTH = 6


@dataclass
class PickupResult:
    batch_id: str
    status: str
    order_ids: list[str] = field(default_factory=list)


def _members(batch_id: str, statuses: list[OrderStatus]) -> list[Order]:
    dao = current_domain.repository_for(Order)._dao
    return dao.query.filter(batch_id=batch_id, status__in=[status.value for status in statuses]).all().items


def _assert_seller_owns(batch: Batch, caller_user_id: str) -> None:
    seller = get_seller(batch.seller_entity_id)
    if seller is None or not seller.is_owned_by(caller_user_id):
        raise Forbidden("batch_ownership", batch_id=batch.id)


def mark_batch_ready(batch_id: str, caller_user_id: str) -> PickupResult:
    try:
        batch = current_domain.repository_for(Batch).get(batch_id)
    except ObjectNotFoundError:
        raise BatchNotFound("batch_lookup", batch_id=batch_id) from None
    _assert_seller_owns(batch, caller_user_id)

    if batch.is_final:
        raise BatchAlreadyCompleted("batch_ready", batch_id=batch_id, status=batch.status)

    conditional_update(
        Batch,
        batch_id,
        guard={"status": BatchStatus.PENDING.value},
        changes={"status": BatchStatus.READY.value, "ready_at": utc_now()},
    )

    fulfilled = []
    for order in _members(batch_id, [OrderStatus.PAID]):
        if current_domain.process(FulfillOrder(order_id=str(order.id)), asynchronous=False):
            fulfilled.append(str(order.id))

    logger.info("batch_ready", batch_id=batch_id, fulfilled=len(fulfilled))
    return PickupResult(batch_id=batch_id, status=BatchStatus.READY.value, order_ids=fulfilled)


def find_batch_by_code(completion_code: str) -> Batch | None:
    dao = current_domain.repository_for(Batch)._dao
    batches = dao.query.filter(completion_code=completion_code).all().items
    return batches[0] if batches else None


def confirm_pickup(completion_code: str, caller_user_id: str) -> PickupResult:
    code = (completion_code or "").strip().upper()
    if len(code) < MIN_CODE_LENGTH:
        raise BatchNotFound("pickup_code_format")

    batch = find_batch_by_code(code)
    if batch is None:
        raise BatchNotFound("pickup_code_lookup")
    _assert_seller_owns(batch, caller_user_id)

    if batch.is_final:
        raise BatchAlreadyCompleted("pickup", batch_id=batch.id, status=batch.status)

    completed = []
    for order in _members(str(batch.id), [OrderStatus.PAID, OrderStatus.FULFILLED]):
        if current_domain.process(CompleteOrder(order_id=str(order.id), reason="picked_up"), asynchronous=False):
            completed.append(str(order.id))

    now = utc_now()
    conditional_update(
        Batch,
        str(batch.id),
        guard={"status__in": OPEN_STATUSES},
        changes={"status": BatchStatus.PICKED_UP.value, "picked_up_at": now, "completed_at": now},
    )

    logger.info("batch_picked_up", batch_id=batch.id, completed=len(completed))
    return PickupResult(batch_id=str(batch.id), status=BatchStatus.PICKED_UP.value, order_ids=completed)
