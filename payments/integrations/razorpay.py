import json
import logging
from decimal import Decimal, ROUND_HALF_UP

import requests
from requests import RequestException
from requests.auth import HTTPBasicAuth

logger = logging.getLogger(__name__)

COMMON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class RazorpayError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def _auth(config) -> HTTPBasicAuth:
    return HTTPBasicAuth(config.key_id, config.key_secret)


def amount_in_paise(amount) -> int:
    try:
        q = (Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except Exception:
        raise RazorpayError("Invalid amount value")
    return int(q)


def _hint(status_code: int) -> str:
    if status_code == 401: return "Check RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET."
    if status_code == 400: return "Bad request: amount/currency/receipt."
    if status_code == 404: return "Unknown order id."
    if status_code >= 500: return f"Gateway error {status_code}."
    return f"HTTP {status_code}"


def _send(config, method: str, path: str, **kwargs) -> dict:
    url = f"{config.base_url}{path}"
    try:
        resp = requests.request(method, url, headers=COMMON_HEADERS, auth=_auth(config),
                                timeout=config.timeout, **kwargs)
    except RequestException as e:
        raise RazorpayError(f"Gateway request failed: {e}")
    try: data = resp.json()
    except ValueError: data = {"raw": resp.text}
    if 200 <= resp.status_code < 300:
        return data
    logger.error("Razorpay %s %s failed: status=%s", method, path, resp.status_code)
    raise RazorpayError(
        f"{_hint(resp.status_code)} Response: {json.dumps(data)[:500]}",
        status_code=resp.status_code,
    )


def create_order(config, *, amount, receipt: str, notes=None, currency=None) -> dict:
    """Create a gateway order; ``amount`` is in rupees and sent in paise."""
    payload = {
        "amount": amount_in_paise(amount),
        "currency": currency or config.currency,
        "receipt": receipt[:40],  # gateway limit
        "payment_capture": 1,
        "notes": notes or {},
    }
    data = _send(config, "POST", "/v1/orders", json=payload)
    if not data.get("id"):
        raise RazorpayError("Create order failed: response has no order id")
    return data


def fetch_order_payments(config, gateway_order_id: str) -> list:
    data = _send(config, "GET", f"/v1/orders/{gateway_order_id}/payments")
    return list(data.get("items") or [])
