"""Scheduled order sweeps.

Triggered by an external scheduler (daily cron for stale completion, every
few minutes for pending expiry) through ``manage.py`` or the sweep API
endpoints. Each sweep reads candidates by status, filters on timestamps and
dispatches one guarded transition per order, so re-running a sweep, or
running two at once, is harmless.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from marketplace.batch.aggregation import reevaluate_batch_safely
from marketplace.checkout.locking import ExpireCheckoutIntent, ReleaseCheckoutIntent
from marketplace.order.lifecycle import CancelOrder, CompleteOrder
from marketplace.order.order import Order, OrderStatus
from marketplace.shared.clock import as_utc, utc_now

logger = structlog.get_logger(__name__)

STALE_DAYS = 5
PENDING_EXPIRY_MINUTES = 8


@dataclass
class SweepSummary:
    evaluated: int = 0
    transitioned: int = 0
    skipped: int = 0
    failed: int = 0
    order_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _orders_in(statuses: list[OrderStatus]) -> list[Order]:
    dao = current_domain.repository_for(Order)._dao
    return dao.query.filter(status__in=[status.value for status in statuses]).all().items


def complete_stale_orders(as_of: datetime | None = None, stale_days: int = STALE_DAYS) -> SweepSummary:
    """Complete paid/fulfilled orders paid more than ``stale_days`` ago.

    Cancelled and refunded orders never enter the candidate set.
    """
    cutoff = (as_utc(as_of) or utc_now()) - timedelta(days=stale_days)
    summary = SweepSummary()

    candidates = [
        order
        for order in _orders_in([OrderStatus.PAID, OrderStatus.FULFILLED])
        if order.paid_at is not None and as_utc(order.paid_at) <= cutoff
    ]
    logger.info("stale_order_sweep_started", cutoff=cutoff.isoformat(), candidates=len(candidates))

    for order in candidates:
        summary.evaluated += 1
        try:
            completed = current_domain.process(
                CompleteOrder(order_id=str(order.id), reason="stale_auto_complete"),
                asynchronous=False,
            )
        except (ValidationError, ObjectNotFoundError) as exc:
            summary.failed += 1
            logger.warning("stale_order_completion_failed", order_id=order.id, error=str(exc))
            continue

        if completed:
            summary.transitioned += 1
            summary.order_ids.append(str(order.id))
            reevaluate_batch_safely(order.batch_id, trigger="stale_sweep")
        else:
            summary.skipped += 1

    logger.info("stale_order_sweep_finished", **summary.to_dict())
    return summary


def expire_pending_orders(
    as_of: datetime | None = None,
    older_than_minutes: int = PENDING_EXPIRY_MINUTES,
) -> SweepSummary:
    """Cancel orders whose payment never arrived, restoring their stock.

    The checkout intent behind each cancelled order is unlocked and, its TTL
    being long past, marked expired.
    """
    now = as_utc(as_of) or utc_now()
    cutoff = now - timedelta(minutes=older_than_minutes)
    summary = SweepSummary()

    candidates = [
        order
        for order in _orders_in([OrderStatus.PENDING])
        if order.created_at is not None and as_utc(order.created_at) < cutoff
    ]
    logger.info("pending_order_sweep_started", cutoff=cutoff.isoformat(), candidates=len(candidates))

    for order in candidates:
        summary.evaluated += 1
        try:
            cancelled = current_domain.process(
                CancelOrder(order_id=str(order.id), reason="payment_timeout"),
                asynchronous=False,
            )
        except (ValidationError, ObjectNotFoundError) as exc:
            summary.failed += 1
            logger.warning("pending_order_expiry_failed", order_id=order.id, error=str(exc))
            continue

        if cancelled:
            summary.transitioned += 1
            summary.order_ids.append(str(order.id))
            if order.checkout_intent_id:
                _retire_intent_safely(str(order.checkout_intent_id), now)
            reevaluate_batch_safely(order.batch_id, trigger="pending_sweep")
        else:
            summary.skipped += 1

    logger.info("pending_order_sweep_finished", **summary.to_dict())
    return summary


def _retire_intent_safely(intent_id: str, now: datetime) -> None:
    try:
        current_domain.process(ReleaseCheckoutIntent(intent_id=intent_id), asynchronous=False)
        current_domain.process(ExpireCheckoutIntent(intent_id=intent_id, as_of=now), asynchronous=False)
    except Exception:
        logger.warning("abandoned_intent_retire_failed", intent_id=intent_id, exc_info=True)
