"""Intent locking — guarded status writes on CheckoutIntent.

``LockCheckoutIntent`` is the authority for "this buyer may pay now": a
single conditional write that only matches an unexpired intent owned by the
buyer. Everything else (release, authorization write-back, consumption,
lazy expiry) is guarded on the status it expects to find.
"""

from datetime import datetime

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from marketplace.checkout.intent import LOCK_TTL, CheckoutIntent, IntentStatus
from marketplace.domain import marketplace
from marketplace.shared.clock import as_utc, utc_now
from marketplace.shared.transitions import conditional_update

logger = structlog.get_logger(__name__)


@marketplace.command(part_of="CheckoutIntent")
class LockCheckoutIntent:
    intent_id = Identifier(required=True)
    buyer_id = Identifier(required=True)
    as_of = DateTime()


@marketplace.command(part_of="CheckoutIntent")
class ReleaseCheckoutIntent:
    """Return a locked intent to ``intent`` so the buyer can retry."""

    intent_id = Identifier(required=True)


@marketplace.command(part_of="CheckoutIntent")
class RecordIntentAuthorization:
    intent_id = Identifier(required=True)
    authorization_id = String(required=True, max_length=255)


@marketplace.command(part_of="CheckoutIntent")
class ConsumeCheckoutIntent:
    intent_id = Identifier(required=True)
    order_id = Identifier(required=True)


@marketplace.command(part_of="CheckoutIntent")
class ExpireCheckoutIntent:
    intent_id = Identifier(required=True)
    as_of = DateTime()


@marketplace.command_handler(part_of=CheckoutIntent)
class IntentLockHandler:
    @handle(LockCheckoutIntent)
    def lock(self, command):
        """Returns the lock expiry, or None when the intent could not be locked."""
        now = as_utc(command.as_of) or utc_now()
        lock_expires_at = now + LOCK_TTL
        locked = conditional_update(
            CheckoutIntent,
            command.intent_id,
            guard={
                "buyer_id": command.buyer_id,
                "status": IntentStatus.INTENT.value,
                "intent_expires_at__gt": now,
            },
            changes={
                "status": IntentStatus.LOCKED.value,
                "lock_expires_at": lock_expires_at,
            },
        )
        return lock_expires_at if locked else None

    @handle(ReleaseCheckoutIntent)
    def release(self, command):
        released = conditional_update(
            CheckoutIntent,
            command.intent_id,
            guard={"status": IntentStatus.LOCKED.value},
            changes={
                "status": IntentStatus.INTENT.value,
                "lock_expires_at": None,
                "stripe_payment_intent_id": None,
            },
        )
        if released:
            logger.info("checkout_intent_released", intent_id=command.intent_id)
        return released

    @handle(RecordIntentAuthorization)
    def record_authorization(self, command):
        return conditional_update(
            CheckoutIntent,
            command.intent_id,
            guard={"status": IntentStatus.LOCKED.value},
            changes={"stripe_payment_intent_id": command.authorization_id},
        )

    @handle(ConsumeCheckoutIntent)
    def consume(self, command):
        return conditional_update(
            CheckoutIntent,
            command.intent_id,
            guard={"status": IntentStatus.LOCKED.value},
            changes={
                "status": IntentStatus.CONSUMED.value,
                "converted_order_id": command.order_id,
            },
        )

    @handle(ExpireCheckoutIntent)
    def expire(self, command):
        now = as_utc(command.as_of) or utc_now()
        return conditional_update(
            CheckoutIntent,
            command.intent_id,
            guard={"status": IntentStatus.INTENT.value, "intent_expires_at__lte": now},
            changes={"status": IntentStatus.EXPIRED.value},
        )


def lock_rejection_stage(intent_id: str, buyer_id: str, now: datetime | None = None) -> str | None:
    """Read-only diagnosis of why a lock would fail; used for logging only.

    The guarded write in ``LockCheckoutIntent`` stays the authority: a None
    here does not guarantee the lock succeeds.
    """
    try:
        intent = current_domain.repository_for(CheckoutIntent).get(intent_id)
    except ObjectNotFoundError:
        return "intent_not_found"

    if str(intent.buyer_id) != str(buyer_id):
        return "intent_foreign"
    if intent.is_expired(now):
        return "intent_expired"
    if intent.status != IntentStatus.INTENT.value:
        return f"intent_{intent.status}"
    return None
