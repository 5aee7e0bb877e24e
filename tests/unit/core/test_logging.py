from billsync.shared.core.logging import pii_redactor


def test_secret_keys_are_redacted():
    event = {
        "event": "paystack_subscription_adopted",
        "email_token": "tok_abc",
        "authorization_code": "AUTH_x",
        "paystack_secret": "sk_live",
        "subscription_code": "SUB_1",
    }

    redacted = pii_redactor(None, "info", event)

    assert redacted["email_token"] == "[REDACTED]"
    assert redacted["authorization_code"] == "[REDACTED]"
    assert redacted["paystack_secret"] == "[REDACTED]"
    assert redacted["subscription_code"] == "SUB_1"


def test_emails_are_redacted_in_nested_values():
    event = {
        "event": "checkout",
        "customer": {"email": "owner@acme.test", "notes": ["contact billing@acme.test"]},
    }

    redacted = pii_redactor(None, "info", event)

    assert redacted["customer"]["email"] == "[EMAIL_REDACTED]"
    assert redacted["customer"]["notes"] == ["contact [EMAIL_REDACTED]"]


def test_non_string_values_are_kept():
    redacted = pii_redactor(None, "info", {"event": "x", "amount": 15000, "paid": True})
    assert redacted == {"event": "x", "amount": 15000, "paid": True}
