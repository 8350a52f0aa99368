import hashlib
import hmac
import json
import logging
from decimal import Decimal

import httpx

from afina.payments.adapter import Invoice, PaymentAdapter
from config import settings


logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/api/nowpayments/webhook"


def _parse_float(value: str) -> float | int:
    number = float(value)
    if number.is_integer() and "e" not in value.lower():
        return int(number)
    return number


def parse_ipn_body(raw_body: bytes) -> dict:
    # "10.0" is kept as 10 so amounts read the same in messages and logs.
    return json.loads(raw_body, parse_float=_parse_float)


def _js_number(value) -> str:
    """Format a number the way ``JSON.stringify`` does.

    Plain notation for magnitudes from 1e-6 up to 1e21, exponent form
    (``1e-7``, ``1e+21``) outside that range, no trailing ``.0``.
    """
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        value = Decimal(repr(value))
    if value == 0:
        return "0"
    sign, digits, exponent = value.normalize().as_tuple()
    digits = "".join(str(digit) for digit in digits)
    prefix = "-" if sign else ""
    k = len(digits)
    n = k + exponent
    if k <= n <= 21:
        return prefix + digits + "0" * (n - k)
    if 0 < n <= 21:
        return prefix + digits[:n] + "." + digits[n:]
    if -6 < n <= 0:
        return prefix + "0." + "0" * -n + digits
    mantissa = digits[0] + ("." + digits[1:] if k > 1 else "")
    power = n - 1
    return f"{prefix}{mantissa}e{'+' if power > 0 else '-'}{abs(power)}"


def canonical_json(payload) -> str:
    """Key-sorted compact JSON matching what NOWPayments signs."""
    if isinstance(payload, dict):
        items = (
            f"{canonical_json(str(key))}:{canonical_json(payload[key])}"
            for key in sorted(payload)
        )
        return "{" + ",".join(items) + "}"
    if isinstance(payload, (list, tuple)):
        return "[" + ",".join(canonical_json(item) for item in payload) + "]"
    if isinstance(payload, bool) or payload is None or isinstance(payload, str):
        return json.dumps(payload, ensure_ascii=False)
    if isinstance(payload, (int, float, Decimal)):
        return _js_number(payload)
    raise TypeError(f"Unsupported IPN value: {type(payload).__name__}")


def sign_ipn(payload: dict, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        canonical_json(payload).encode("utf-8"),
        hashlib.sha512,
    ).hexdigest()


def verify_ipn_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    if not secret:
        logger.error("NOWPAYMENTS_IPN_SECRET is not set, IPN rejected")
        return False
    if not signature:
        return False
    try:
        # Decimal keeps the digits exactly as the provider sent them.
        payload = json.loads(raw_body, parse_float=Decimal)
    except ValueError:
        logger.warning("IPN body is not valid JSON")
        return False
    return hmac.compare_digest(sign_ipn(payload, secret), signature.lower())


class NowPaymentsAdapter(PaymentAdapter):
    def __init__(self, api_url: str | None = None, api_key: str | None = None) -> None:
        self._base_url = (api_url or settings.nowpayments_api_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.nowpayments_api_key

    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self._api_key, "Content-Type": "application/json"}

    async def create_invoice(
        self, amount: Decimal, currency: str, order_id: str, description: str
    ) -> Invoice:
        base = settings.public_base_url.rstrip("/")
        payload = {
            "price_amount": float(amount),
            "price_currency": currency.lower(),
            "order_id": order_id,
            "order_description": description,
            "ipn_callback_url": f"{base}{WEBHOOK_PATH}",
            "success_url": base,
            "cancel_url": base,
        }
        async with httpx.AsyncClient(timeout=30) as client:
            response = await client.post(
                f"{self._base_url}/invoice", headers=self._headers(), json=payload
            )
            response.raise_for_status()
            data = response.json()
        return Invoice(id=str(data["id"]), url=data["invoice_url"])

    async def get_payment_status(self, payment_id: str) -> dict:
        async with httpx.AsyncClient(timeout=30) as client:
            response = await client.get(
                f"{self._base_url}/payment/{payment_id}", headers=self._headers()
            )
            response.raise_for_status()
            return response.json()
