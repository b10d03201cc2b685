"""Deal lifecycle state machine.

States:
    pending  -> accepted | expired | cancelled
    accepted -> paid | expired | cancelled
    paid, expired, cancelled are terminal

Side effects of confirm_payment (stock deduction, downstream order) happen
at most once per deal: the accepted -> paid move is a conditional update in
the authoritative store tier, and only the caller that wins it performs
them. Everyone else sees `paid` and returns silently.

Expiry is lazy: a non-terminal deal read at or after its expiry is flipped
to `expired` on that read. There is no background sweep.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import logging
from uuid import uuid4

from dealflow.domain import (
    OPEN_STATUSES,
    BuyerContact,
    Deal,
    DealStatus,
    DeliveryAddress,
    compute_offer_price,
    compute_shipping_fee,
    round_half_up,
    utcnow,
)
from dealflow.errors import (
    DealExpired,
    InsufficientStock,
    IntegrationFailure,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    ProductUnavailable,
)
from dealflow.services.catalog import Catalog
from dealflow.services.order_system import OrderLineItem, OrderSystem, PaymentMeta
from dealflow.settings import get_settings
from dealflow.stores.deal_store import DealStore

logger = logging.getLogger("uvicorn.error")

# Cost estimate when a product has no cost price (40% margin assumption)
ESTIMATED_COST_RATIO = Decimal("0.6")


@dataclass(frozen=True)
class DealPolicy:
    """Pricing and timing knobs for new deals."""

    markup_fraction: Decimal = Decimal("0.15")
    ttl: timedelta = timedelta(minutes=20)
    free_shipping_threshold: Decimal = Decimal("1000")
    shipping_fee: Decimal = Decimal("150")

    @classmethod
    def from_settings(cls) -> DealPolicy:
        settings = get_settings()
        return cls(
            markup_fraction=settings.markup_fraction,
            ttl=timedelta(minutes=settings.deal_expiry_minutes),
            free_shipping_threshold=settings.free_shipping_threshold,
            shipping_fee=settings.shipping_fee,
        )

    def shipping_for(self, offer_price: Decimal, quantity: int) -> Decimal:
        return compute_shipping_fee(offer_price * quantity, self.free_shipping_threshold, self.shipping_fee)


class DealLifecycle:
    """Drives deals through their states against a DealStore."""

    def __init__(
        self,
        store: DealStore,
        catalog: Catalog,
        order_system: OrderSystem | None = None,
        policy: DealPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.order_system = order_system
        self.policy = policy or DealPolicy()
        self.clock = clock

    # ------------------------------------------------------------
    # create / read
    # ------------------------------------------------------------

    async def create_deal(
        self,
        product_ref: str,
        quantity: int = 1,
        buyer_email: str | None = None,
        buyer_phone: str | None = None,
    ) -> Deal:
        """Price a product into a new pending deal.

        Raises:
            InvalidRequest: quantity < 1.
            NotFound: Unknown product.
            ProductUnavailable: Inactive, out of stock, or no usable price.
        """
        if quantity < 1:
            raise InvalidRequest("Quantity must be at least 1", {"quantity": quantity})

        product = await self.catalog.find_active_product(product_ref)
        if not product.active:
            raise ProductUnavailable("Product is not active", {"product_id": product_ref})
        if product.stock <= 0:
            raise ProductUnavailable("Product is out of stock", {"product_id": product_ref})

        cost_basis = product.base_cost
        if cost_basis is None or cost_basis <= 0:
            if product.selling_price and product.selling_price > 0:
                cost_basis = round_half_up(product.selling_price * ESTIMATED_COST_RATIO)
                logger.info(f"Using estimated cost {cost_basis} from selling price for product {product_ref}")
            else:
                raise ProductUnavailable("Product pricing not available", {"product_id": product_ref})

        offer_price = compute_offer_price(cost_basis, self.policy.markup_fraction)
        now = self.clock()
        deal = Deal(
            token=str(uuid4()),
            product_ref=product.id,
            product_name=product.name,
            product_sku=product.sku,
            cost_basis=cost_basis,
            markup_fraction=self.policy.markup_fraction,
            offer_price=offer_price,
            quantity=quantity,
            shipping_fee=self.policy.shipping_for(offer_price, quantity),
            expiry=now + self.policy.ttl,
            buyer_email=buyer_email or None,
            buyer_phone=buyer_phone or None,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(deal)
        logger.info(f"Deal {deal.token} created: product={product.id} offer={offer_price} qty={quantity}")
        return deal

    async def get_deal(self, token: str) -> Deal:
        """Read a deal, flipping it to `expired` if its time is up.

        Raises:
            NotFound: Unknown token.
        """
        deal = await self.store.get(token)
        if deal.status in OPEN_STATUSES and deal.is_past_expiry(self.clock()):
            expired = await self.store.transition(token, OPEN_STATUSES, {"status": DealStatus.EXPIRED})
            if expired is not None:
                logger.info(f"Deal {token} expired")
                return expired
            # Lost a race with another transition; report what is stored now.
            return await self.store.get(token)
        return deal

    # ------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------

    async def accept(
        self,
        token: str,
        buyer: BuyerContact | None,
        address: DeliveryAddress | None,
        quantity: int | None = None,
    ) -> Deal:
        """Record buyer details and move the deal to `accepted`.

        Calling again on an accepted deal (payment retry) returns it as-is:
        the offer, quantity and contact details are not regenerated.

        Raises:
            DealExpired: Past expiry (the deal is flipped to `expired`).
            InvalidTransition: Deal already paid or cancelled.
            InvalidRequest: Missing contact/address or bad quantity.
            InsufficientStock: Not enough catalog stock for the quantity.
        """
        deal = await self.get_deal(token)
        self._ensure_not_expired(deal)

        if deal.status == DealStatus.ACCEPTED:
            return deal
        if deal.status != DealStatus.PENDING:
            raise InvalidTransition(
                f"Deal cannot be accepted from status {deal.status.value}",
                {"token": token, "status": deal.status.value},
            )

        if buyer is None or not buyer.first_name or not (buyer.email or buyer.phone):
            raise InvalidRequest("Buyer name and email or phone are required", {"token": token})
        if address is None or not (address.address1 and address.city and address.postal_code):
            raise InvalidRequest("Delivery address is required", {"token": token})

        qty = deal.quantity if quantity is None else quantity
        if qty < 1:
            raise InvalidRequest("Quantity must be at least 1", {"quantity": qty})

        product = await self.catalog.find_active_product(deal.product_ref)
        if product.stock < qty:
            raise InsufficientStock(
                "Insufficient stock",
                {"token": token, "requested": qty, "available": product.stock},
            )

        changes = {
            "status": DealStatus.ACCEPTED,
            "buyer": buyer,
            "delivery_address": address,
            "buyer_email": buyer.email or deal.buyer_email,
            "buyer_phone": buyer.phone or deal.buyer_phone,
            "quantity": qty,
            "shipping_fee": self.policy.shipping_for(deal.offer_price, qty),
        }
        accepted = await self.store.transition(token, {DealStatus.PENDING}, changes)
        if accepted is None:
            # Someone else moved it first (double submit); re-evaluate.
            current = await self.get_deal(token)
            self._ensure_not_expired(current)
            if current.status == DealStatus.ACCEPTED:
                return current
            raise InvalidTransition(
                f"Deal cannot be accepted from status {current.status.value}",
                {"token": token, "status": current.status.value},
            )

        logger.info(f"Deal {token} accepted: qty={qty} amount_due={accepted.amount_due}")
        return accepted

    async def confirm_payment(self, token: str, external_payment_ref: str | None) -> Deal:
        """Mark a verified payment; deduct stock and create the downstream order once.

        Already-paid deals are returned untouched (duplicate ITN delivery).

        Raises:
            DealExpired: Deal expired before the payment was confirmed.
            InvalidTransition: Deal is pending or cancelled.
        """
        deal = await self.get_deal(token)
        if deal.status == DealStatus.PAID:
            logger.info(f"Deal {token} already paid, ignoring duplicate confirmation")
            return deal
        self._ensure_not_expired(deal)

        paid = await self.store.transition(
            token,
            {DealStatus.ACCEPTED},
            {"status": DealStatus.PAID, "external_payment_ref": external_payment_ref},
        )
        if paid is None:
            current = await self.store.get(token)
            if current.status == DealStatus.PAID:
                logger.info(f"Deal {token} was paid concurrently, nothing to do")
                return current
            self._ensure_not_expired(current)
            raise InvalidTransition(
                f"Payment cannot be confirmed from status {current.status.value}",
                {"token": token, "status": current.status.value},
            )

        logger.info(f"Deal {token} marked as paid (pf_payment_id={external_payment_ref})")

        # Side effects below run only for the caller that won the transition.
        try:
            await self.catalog.decrement_stock(paid.product_ref, paid.quantity)
        except NotFound:
            await self.store.record_incident(
                "STOCK_NOT_DEDUCTED",
                f"Product {paid.product_ref} not found while deducting stock",
                token=token,
            )
        except Exception as e:
            logger.exception(f"Stock deduction failed for deal {token}")
            await self.store.record_incident(
                "STOCK_NOT_DEDUCTED",
                f"Deducting {paid.quantity} x {paid.product_ref} failed: {e}",
                token=token,
            )

        return await self._create_downstream_order(paid)

    async def cancel(self, token: str) -> Deal:
        """Gateway reported a cancelled payment.

        Raises:
            InvalidTransition: Deal already terminal.
        """
        deal = await self.store.get(token)
        cancelled = await self.store.transition(token, OPEN_STATUSES, {"status": DealStatus.CANCELLED})
        if cancelled is None:
            current = await self.store.get(token)
            raise InvalidTransition(
                f"Deal cannot be cancelled from status {current.status.value}",
                {"token": token, "status": current.status.value},
            )
        logger.info(f"Deal {token} cancelled (was {deal.status.value})")
        return cancelled

    async def expire(self, token: str) -> Deal:
        """Explicitly expire an open deal whose time is up.

        Raises:
            InvalidTransition: Deal is terminal or not yet past expiry.
        """
        deal = await self.get_deal(token)
        if deal.status == DealStatus.EXPIRED:
            return deal
        raise InvalidTransition(
            f"Deal cannot be expired from status {deal.status.value}",
            {"token": token, "status": deal.status.value, "expiry": deal.expiry.isoformat()},
        )

    # ------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------

    def _ensure_not_expired(self, deal: Deal) -> None:
        if deal.status == DealStatus.EXPIRED:
            raise DealExpired("Deal has expired", {"token": deal.token, "expiry": deal.expiry.isoformat()})

    async def _create_downstream_order(self, deal: Deal) -> Deal:
        """Best effort: a failure is recorded, never raised, never rolled back."""
        if self.order_system is None:
            await self.store.record_incident(
                "INTEGRATION_FAILURE",
                "No downstream order system configured",
                token=deal.token,
            )
            return deal
        if deal.buyer is None or deal.delivery_address is None:
            await self.store.record_incident(
                "INTEGRATION_FAILURE",
                "Paid deal has no buyer/address, order not created",
                token=deal.token,
            )
            return deal

        try:
            order_ref = await self.order_system.create_order(
                customer=deal.buyer,
                address=deal.delivery_address,
                line_item=OrderLineItem(
                    sku=deal.product_sku,
                    name=deal.product_name,
                    quantity=deal.quantity,
                    unit_price=deal.offer_price,
                ),
                payment_meta=PaymentMeta(
                    deal_token=deal.token,
                    external_payment_ref=deal.external_payment_ref,
                    amount=deal.amount_due,
                ),
            )
        except IntegrationFailure as e:
            await self.store.record_incident("INTEGRATION_FAILURE", e.message, token=deal.token, detail=e.detail)
            return deal
        except Exception as e:
            logger.exception(f"Downstream order creation crashed for deal {deal.token}")
            await self.store.record_incident("INTEGRATION_FAILURE", repr(e), token=deal.token)
            return deal

        return await self.store.update(deal.token, {"downstream_order_ref": order_ref})
