"""Utility helpers for the payments app."""

import hashlib
import hmac
import random
import string
from datetime import datetime, timezone

ALNUM = string.ascii_uppercase + string.digits


def generate_order_number(prefix="RUD"):
    ts = datetime.now(timezone.utc).strftime("%m%d%H%M%S")  # 10 chars
    rand = "".join(random.choices(ALNUM, k=4))
    return f"{prefix}{ts}{rand}"[-20:]


def sign(message, secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``message`` keyed with ``secret``."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature_message(gateway_order_id: str, gateway_payment_id: str) -> str:
    return f"{gateway_order_id}|{gateway_payment_id}"


def verify_signature(message, signature: str, secret: str) -> bool:
    """
    Check ``signature`` against the HMAC the gateway computes over ``message``.

    ``message`` is ``"<order_id>|<payment_id>"`` for checkout callbacks and the
    raw request body (bytes, unparsed) for webhooks. The comparison is
    constant time and byte-for-byte; an empty signature or secret never
    verifies.
    """
    if not signature or not secret:
        return False
    expected = sign(message, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))
