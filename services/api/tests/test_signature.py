from decimal import Decimal

from dealflow.services.signature import (
    compute_signature,
    encode_value,
    signature_payload,
    verify_signature,
)

PASSPHRASE = "jt7NOE43FZPn"

BASIC_FIELDS = {
    "merchant_id": "10000100",
    "merchant_key": "46f0cd694581a",
    "amount": "100.00",
    "item_name": "Test Item",
}


def test_encode_value_matches_encode_uri_component_with_plus_for_space() -> None:
    assert encode_value("Test Item") == "Test+Item"
    assert encode_value("test@test.com") == "test%40test.com"
    assert encode_value("https://x.co/a?b=c") == "https%3A%2F%2Fx.co%2Fa%3Fb%3Dc"
    assert encode_value("Widget (Blue)!*'") == "Widget+(Blue)!*'"
    assert encode_value("a-b_c.d~e") == "a-b_c.d~e"


def test_encode_value_uses_uppercase_hex_for_utf8() -> None:
    assert encode_value("café") == "caf%C3%A9"


def test_payload_follows_gateway_field_order_not_input_order() -> None:
    reordered = dict(reversed(list(BASIC_FIELDS.items())))
    expected = "merchant_id=10000100&merchant_key=46f0cd694581a&amount=100.00&item_name=Test+Item"
    assert signature_payload(BASIC_FIELDS) == expected
    assert signature_payload(reordered) == expected


def test_payload_skips_blank_values_and_unknown_fields() -> None:
    fields = {**BASIC_FIELDS, "name_first": "   ", "cell_number": None, "pf_payment_id": "1089250"}
    assert "name_first" not in signature_payload(fields)
    assert "cell_number" not in signature_payload(fields)
    assert "pf_payment_id" not in signature_payload(fields)


def test_payload_strips_values() -> None:
    padded = {**BASIC_FIELDS, "item_name": "  Test Item  "}
    assert signature_payload(padded) == signature_payload(BASIC_FIELDS)


def test_passphrase_is_appended_last_and_input_passphrase_ignored() -> None:
    payload = signature_payload({**BASIC_FIELDS, "passphrase": "other"}, PASSPHRASE)
    assert payload.endswith("&item_name=Test+Item&passphrase=jt7NOE43FZPn")
    assert "other" not in payload


def test_decimal_amount_renders_plainly() -> None:
    assert signature_payload({"amount": Decimal("1150.00")}) == "amount=1150.00"


def test_compute_signature_known_vectors() -> None:
    assert compute_signature(BASIC_FIELDS) == "7abbb23afc89fb75f1412d1f9e5bf7bc"
    assert compute_signature(BASIC_FIELDS, PASSPHRASE) == "711830950e3c917da00a3193efecdfb8"


def test_compute_signature_with_urls_and_emails() -> None:
    fields = {
        "item_name": "Black Friday Deal - Widget (Blue)",
        "amount": "1150.00",
        "m_payment_id": "abc",
        "email_address": "test@test.com",
        "return_url": "https://shop.example.com/success?token=abc",
        "merchant_key": "46f0cd694581a",
        "merchant_id": "10000100",
    }
    assert compute_signature(fields) == "526000583f647b2b53df17c0ff32bf10"


def test_verify_signature_round_trip_and_tamper() -> None:
    signed = {**BASIC_FIELDS, "signature": compute_signature(BASIC_FIELDS, PASSPHRASE)}
    assert verify_signature(signed, PASSPHRASE)
    assert not verify_signature(signed, "wrong-passphrase")
    assert not verify_signature({**signed, "amount": "1.00"}, PASSPHRASE)


def test_verify_signature_requires_signature_field() -> None:
    assert not verify_signature(BASIC_FIELDS, PASSPHRASE)
    assert not verify_signature({**BASIC_FIELDS, "signature": ""}, PASSPHRASE)
