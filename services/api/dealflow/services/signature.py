"""PayFast signature codec.

The gateway verifies an MD5 digest over a parameter string built from a
fixed field list. The string must be reproduced byte-for-byte:

- only fields from PAYFAST_FIELD_ORDER take part, in that order
  (not the order of the input mapping)
- blank values are skipped entirely, other values are stripped
- values are percent-encoded like JavaScript encodeURIComponent
  (uppercase hex, `!*'()~` left alone) except that space becomes `+`
- the passphrase, when configured, is appended last

Outbound requests and inbound ITN verification both go through
compute_signature(); never build the string anywhere else.
"""

import hashlib
import hmac
import logging
from collections.abc import Mapping
from decimal import Decimal
from typing import Any
from urllib.parse import quote_plus

logger = logging.getLogger("uvicorn.error")

SIGNATURE_FIELD = "signature"
PASSPHRASE_FIELD = "passphrase"

# Field order from the gateway's reference SDK
PAYFAST_FIELD_ORDER: tuple[str, ...] = (
    "merchant_id",
    "merchant_key",
    "return_url",
    "cancel_url",
    "notify_url",
    "notify_method",
    "name_first",
    "name_last",
    "email_address",
    "cell_number",
    "m_payment_id",
    "amount",
    "item_name",
    "item_description",
    "custom_int1",
    "custom_int2",
    "custom_int3",
    "custom_int4",
    "custom_int5",
    "custom_str1",
    "custom_str2",
    "custom_str3",
    "custom_str4",
    "custom_str5",
    "email_confirmation",
    "confirmation_address",
    "currency",
    "payment_method",
    "subscription_type",
    "passphrase",
    "billing_date",
    "recurring_amount",
    "frequency",
    "cycles",
    "subscription_notify_email",
    "subscription_notify_webhook",
    "subscription_notify_buyer",
)

# encodeURIComponent leaves these unescaped on top of quote()'s own safe set
_UNRESERVED_EXTRA = "!*'()"


def encode_value(value: str) -> str:
    """Percent-encode a value with space rendered as `+`.

    >>> encode_value("Test Item")
    'Test+Item'
    >>> encode_value("test@test.com")
    'test%40test.com'
    """
    return quote_plus(value, safe=_UNRESERVED_EXTRA, encoding="utf-8")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def signature_payload(fields: Mapping[str, Any], passphrase: str = "") -> str:
    """Build the exact parameter string that gets hashed."""
    pairs: list[str] = []
    for name in PAYFAST_FIELD_ORDER:
        if name == PASSPHRASE_FIELD:
            continue
        value = fields.get(name)
        if value is None:
            continue
        text = _stringify(value).strip()
        if not text:
            continue
        pairs.append(f"{name}={encode_value(text)}")

    phrase = (passphrase or "").strip()
    if phrase:
        pairs.append(f"{PASSPHRASE_FIELD}={encode_value(phrase)}")

    return "&".join(pairs)


def compute_signature(fields: Mapping[str, Any], passphrase: str = "") -> str:
    """MD5 (lowercase hex) over the canonical parameter string."""
    payload = signature_payload(fields, passphrase)
    if logger.isEnabledFor(logging.DEBUG):
        # Never log the passphrase itself
        logger.debug(f"PayFast signature string: {signature_payload(fields)} (passphrase={'set' if passphrase else 'none'})")
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def verify_signature(fields: Mapping[str, Any], passphrase: str = "") -> bool:
    """Check the `signature` field of received data against a recomputed one."""
    received = fields.get(SIGNATURE_FIELD)
    if not received:
        return False
    unsigned = {k: v for k, v in fields.items() if k != SIGNATURE_FIELD}
    expected = compute_signature(unsigned, passphrase)
    return hmac.compare_digest(str(received).strip(), expected)
