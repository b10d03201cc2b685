"""Outbound payment request builder.

Builds the PayFast form for an accepted deal: fields in the gateway's field
order, signed with the same codec that verifies ITNs, and rendered as an
HTML page that auto-submits to the gateway's process URL.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from urllib.parse import urlencode

from dealflow.domain import Deal, format_amount
from dealflow.services.signature import PAYFAST_FIELD_ORDER, SIGNATURE_FIELD, compute_signature
from dealflow.settings import get_settings

ITEM_NAME_MAX_LENGTH = 100
NOTIFY_PATH = "/v1/payments/notify"


@dataclass(frozen=True)
class PaymentRequest:
    """A signed, browser-submittable payment request."""

    action_url: str
    fields: dict[str, str]  # insertion order = gateway field order, signature last

    @property
    def signature(self) -> str:
        return self.fields[SIGNATURE_FIELD]


@dataclass(frozen=True)
class MerchantConfig:
    merchant_id: str
    merchant_key: str
    passphrase: str
    process_url: str
    public_base_url: str
    item_name_prefix: str = "Black Friday Deal"

    @classmethod
    def from_settings(cls) -> MerchantConfig:
        settings = get_settings()
        return cls(
            merchant_id=settings.payfast_merchant_id,
            merchant_key=settings.payfast_merchant_key,
            passphrase=settings.payfast_passphrase,
            process_url=settings.payfast_process_url,
            public_base_url=settings.public_base_url,
            item_name_prefix=settings.item_name_prefix,
        )


class PaymentRequestBuilder:
    """Assemble and sign PayFast payment requests."""

    def __init__(self, merchant: MerchantConfig) -> None:
        self.merchant = merchant

    def callback_urls(self, token: str) -> dict[str, str]:
        base = self.merchant.public_base_url.rstrip("/")
        query = urlencode({"token": token})
        return {
            "return_url": f"{base}/success?{query}",
            "cancel_url": f"{base}/cancel?{query}",
            "notify_url": f"{base}{NOTIFY_PATH}",
        }

    def build(self, deal: Deal) -> PaymentRequest:
        unordered: dict[str, str | None] = {
            "merchant_id": self.merchant.merchant_id,
            "merchant_key": self.merchant.merchant_key,
            **self.callback_urls(deal.token),
            "m_payment_id": deal.token,
            "amount": format_amount(deal.amount_due),
            "item_name": f"{self.merchant.item_name_prefix} - {deal.product_name}"[:ITEM_NAME_MAX_LENGTH],
            "custom_str1": deal.product_ref,
        }
        if deal.buyer is not None:
            unordered["name_first"] = deal.buyer.first_name
            unordered["name_last"] = deal.buyer.last_name
        unordered["email_address"] = (deal.buyer.email if deal.buyer else None) or deal.buyer_email
        unordered["cell_number"] = (deal.buyer.phone if deal.buyer else None) or deal.buyer_phone

        fields = {
            name: str(unordered[name]).strip()
            for name in PAYFAST_FIELD_ORDER
            if unordered.get(name) not in (None, "")
        }
        fields[SIGNATURE_FIELD] = compute_signature(fields, self.merchant.passphrase)
        return PaymentRequest(action_url=self.merchant.process_url, fields=fields)


def render_form(request: PaymentRequest, title: str = "Redirecting to PayFast...") -> str:
    """HTML page that posts the request to the gateway as soon as it loads."""
    inputs = "\n".join(
        f'        <input type="hidden" name="{escape(name)}" value="{escape(value)}">'
        for name, value in request.fields.items()
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{escape(title)}</title>
</head>
<body>
  <p>Redirecting to PayFast for secure payment...</p>
  <form id="pfForm" action="{escape(request.action_url)}" method="post">
{inputs}
    <noscript><button type="submit">Continue to payment</button></noscript>
  </form>
  <script>document.getElementById('pfForm').submit();</script>
</body>
</html>
"""
