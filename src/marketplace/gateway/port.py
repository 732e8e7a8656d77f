"""Payment gateway port (abstract interface).

Everything the pipeline needs from the payment processor: authorizations on
a seller's connected account, cancellation for compensation, refunds,
webhook signature checks and connected-account capability reads. Amounts
are integer minor units.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class AuthorizationResult:
    """Result of creating a payment authorization."""

    success: bool
    authorization_id: str | None = None
    client_secret: str | None = None
    status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    refund_id: str | None = None
    status: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class AccountCapabilities:
    """Capability flags of a connected account."""

    account_id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details: dict = field(default_factory=dict)

    @property
    def is_chargeable(self) -> bool:
        return self.charges_enabled and self.payouts_enabled


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_authorization(
        self,
        amount: int,
        currency: str,
        application_fee: int,
        metadata: dict[str, str],
        connected_account: str,
        idempotency_key: str | None = None,
    ) -> AuthorizationResult:
        """Create a payment authorization on the seller's connected account."""
        ...

    @abstractmethod
    def cancel_authorization(self, authorization_id: str, connected_account: str) -> bool:
        """Cancel an authorization that was never confirmed."""
        ...

    @abstractmethod
    def create_refund(
        self,
        authorization_id: str,
        connected_account: str,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundResult:
        """Refund a captured authorization in full."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...

    @abstractmethod
    def retrieve_account(self, account_id: str) -> AccountCapabilities:
        """Read the current capability flags of a connected account."""
        ...
