"""Configurable fake payment gateway for development and testing.

Simulates the processor without external calls. Behavior can be switched at
runtime (through ``/gateway/configure`` or directly in tests), either for
every call or only for selected methods. Refunds honour idempotency keys
the way the real processor does: a repeated key returns the first result.
"""

from uuid import uuid4

from marketplace.gateway.port import (
    AccountCapabilities,
    AuthorizationResult,
    PaymentGateway,
    RefundResult,
)

TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.failing_methods: set[str] = set()
        self.calls: list[dict] = []
        self.accounts: dict[str, AccountCapabilities] = {}
        self._refunds: dict[str, RefundResult] = {}

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str = "Card declined",
        methods: list[str] | None = None,
    ) -> None:
        """Configure gateway behavior; ``methods`` limits a failure to those calls."""
        self.failure_reason = failure_reason
        if methods:
            self.should_succeed = True
            self.failing_methods = set() if should_succeed else set(methods)
        else:
            self.should_succeed = should_succeed
            self.failing_methods = set()

    def set_account(self, account_id: str, charges_enabled: bool = True, payouts_enabled: bool = True) -> None:
        self.accounts[account_id] = AccountCapabilities(
            account_id=account_id,
            charges_enabled=charges_enabled,
            payouts_enabled=payouts_enabled,
        )

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def _fails(self, method: str) -> bool:
        return not self.should_succeed or method in self.failing_methods

    def create_authorization(
        self,
        amount: int,
        currency: str,
        application_fee: int,
        metadata: dict[str, str],
        connected_account: str,
        idempotency_key: str | None = None,
    ) -> AuthorizationResult:
        self.calls.append(
            {
                "method": "create_authorization",
                "amount": amount,
                "currency": currency,
                "application_fee": application_fee,
                "metadata": dict(metadata),
                "connected_account": connected_account,
                "idempotency_key": idempotency_key,
            }
        )

        if self._fails("create_authorization"):
            return AuthorizationResult(success=False, status="failed", failure_reason=self.failure_reason)

        authorization_id = f"pi_fake_{uuid4().hex[:16]}"
        return AuthorizationResult(
            success=True,
            authorization_id=authorization_id,
            client_secret=f"{authorization_id}_secret_{uuid4().hex[:8]}",
            status="requires_payment_method",
        )

    def cancel_authorization(self, authorization_id: str, connected_account: str) -> bool:
        self.calls.append(
            {
                "method": "cancel_authorization",
                "authorization_id": authorization_id,
                "connected_account": connected_account,
            }
        )
        return not self._fails("cancel_authorization")

    def create_refund(
        self,
        authorization_id: str,
        connected_account: str,
        idempotency_key: str,
        reason: str | None = None,
    ) -> RefundResult:
        self.calls.append(
            {
                "method": "create_refund",
                "authorization_id": authorization_id,
                "connected_account": connected_account,
                "idempotency_key": idempotency_key,
                "reason": reason,
            }
        )

        if idempotency_key in self._refunds:
            return self._refunds[idempotency_key]

        if self._fails("create_refund"):
            return RefundResult(success=False, status="failed", failure_reason=self.failure_reason)

        result = RefundResult(success=True, refund_id=f"re_fake_{uuid4().hex[:16]}", status="succeeded")
        self._refunds[idempotency_key] = result
        return result

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:  # noqa: ARG002
        return signature == TEST_SIGNATURE

    def retrieve_account(self, account_id: str) -> AccountCapabilities:
        self.calls.append({"method": "retrieve_account", "account_id": account_id})
        return self.accounts.get(
            account_id,
            AccountCapabilities(account_id=account_id, charges_enabled=True, payouts_enabled=True),
        )
