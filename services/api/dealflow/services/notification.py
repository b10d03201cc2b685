"""ITN (instant transaction notification) verification and handling.

A notification drives the lifecycle only after all four checks pass:
1. origin    - source address is a known gateway address
2. signature - recomputed with the shared codec, compared exactly
3. amount    - amount_gross within 0.01 of offer_price * quantity + shipping
4. gateway   - the gateway itself confirms the fields (plain-text VALID)

The gateway retries anything that is not a 200, and it delivers duplicates
by design. So the handler swallows every failure, records it as a payment
incident for an operator, and still acknowledges. The only exception is a
payload without m_payment_id, which cannot be correlated at all.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
import logging

from dealflow.domain import CENT, Deal, DealStatus
from dealflow.errors import (
    AmountMismatch,
    DealflowError,
    MalformedNotification,
    OriginRejected,
    SignatureMismatch,
)
from dealflow.services.lifecycle import DealLifecycle
from dealflow.services.payfast_client import PayFastClient
from dealflow.services.signature import verify_signature
from dealflow.settings import get_settings

logger = logging.getLogger("uvicorn.error")

AMOUNT_TOLERANCE = CENT


class PaymentStatus(str, Enum):
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


class NotificationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"


@dataclass(frozen=True)
class VerifierConfig:
    passphrase: str
    allowed_ips: frozenset[str]
    check_origin: bool = True
    # Reverse proxies in front of the app that append to X-Forwarded-For
    trusted_proxy_hops: int = 0

    @classmethod
    def from_settings(cls) -> VerifierConfig:
        settings = get_settings()
        return cls(
            passphrase=settings.payfast_passphrase,
            allowed_ips=frozenset(settings.payfast_allowed_ips),
            check_origin=not (settings.payfast_sandbox or settings.payfast_skip_origin_check),
            trusted_proxy_hops=settings.trusted_proxy_hops,
        )


def parse_amount(raw: str | None) -> Decimal:
    try:
        return Decimal((raw or "0").strip())
    except InvalidOperation as e:
        raise AmountMismatch(f"Unparseable amount_gross {raw!r}") from e


class NotificationVerifier:
    """Local + remote checks for an inbound ITN."""

    def __init__(self, config: VerifierConfig, gateway: PayFastClient) -> None:
        self.config = config
        self.gateway = gateway

    def check_origin(self, source_ip: str) -> None:
        if self.config.check_origin and source_ip not in self.config.allowed_ips:
            raise OriginRejected(f"Invalid source IP: {source_ip}", {"source_ip": source_ip})

    def check_signature(self, fields: Mapping[str, str]) -> None:
        if not verify_signature(fields, self.config.passphrase):
            raise SignatureMismatch("Signature mismatch", {"m_payment_id": fields.get("m_payment_id")})

    def check_amount(self, fields: Mapping[str, str], expected: Decimal) -> None:
        received = parse_amount(fields.get("amount_gross"))
        if abs(received - expected) > AMOUNT_TOLERANCE:
            raise AmountMismatch(
                f"Amount mismatch: expected {expected}, got {received}",
                {"expected": str(expected), "received": str(received)},
            )

    async def verify(self, fields: Mapping[str, str], source_ip: str, expected_amount: Decimal) -> None:
        """Run all checks in order; the first failure raises.

        Raises:
            OriginRejected, SignatureMismatch, AmountMismatch, GatewayRejected
        """
        self.check_origin(source_ip)
        self.check_signature(fields)
        self.check_amount(fields, expected_amount)
        await self.gateway.validate(fields)


class NotificationHandler:
    """Turn verified ITNs into lifecycle transitions."""

    def __init__(self, lifecycle: DealLifecycle, verifier: NotificationVerifier) -> None:
        self.lifecycle = lifecycle
        self.verifier = verifier

    async def handle(self, fields: Mapping[str, str], source_ip: str) -> NotificationOutcome:
        """Process one ITN delivery.

        Raises:
            MalformedNotification: No m_payment_id. Everything else is swallowed.
        """
        token = (fields.get("m_payment_id") or "").strip()
        if not token:
            raise MalformedNotification("Invalid ITN: No payment ID")

        payment_status = (fields.get("payment_status") or "").strip().upper()
        logger.info(f"PayFast ITN received for deal {token}: status={payment_status} from {source_ip}")

        try:
            return await self._process(token, payment_status, fields, source_ip)
        except DealflowError as e:
            await self.lifecycle.store.record_incident(
                e.code,
                e.message,
                token=token,
                detail={"payment_status": payment_status, "source_ip": source_ip, **(e.detail or {})},
            )
        except Exception as e:
            logger.exception(f"ITN processing error for deal {token}")
            await self.lifecycle.store.record_incident(
                "INTERNAL_ERROR",
                repr(e),
                token=token,
                detail={"payment_status": payment_status, "source_ip": source_ip},
            )
        return NotificationOutcome.REJECTED

    async def _process(
        self,
        token: str,
        payment_status: str,
        fields: Mapping[str, str],
        source_ip: str,
    ) -> NotificationOutcome:
        deal = await self.lifecycle.store.get(token)
        if deal.status == DealStatus.PAID:
            logger.info(f"Deal {token} already paid, acknowledging duplicate ITN")
            return NotificationOutcome.DUPLICATE

        await self.verifier.verify(fields, source_ip, expected_amount(deal))

        if payment_status == PaymentStatus.COMPLETE.value:
            await self.lifecycle.confirm_payment(token, fields.get("pf_payment_id"))
            return NotificationOutcome.CONFIRMED

        if payment_status == PaymentStatus.CANCELLED.value:
            await self.lifecycle.cancel(token)
            return NotificationOutcome.CANCELLED

        logger.info(f"Payment status {payment_status!r} for deal {token}, no transition")
        return NotificationOutcome.IGNORED


def expected_amount(deal: Deal) -> Decimal:
    """Gross amount the gateway must report for this deal."""
    return deal.amount_due
