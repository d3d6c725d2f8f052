"""
Mobile-money gateway client (Daraja-style STK push).

Flow
----
1. ``GET /oauth/v1/generate`` with HTTP Basic consumer key / secret
   -> bearer token.
2. ``POST /mpesa/stkpush/v1/processrequest`` with
   ``Password = base64(shortcode + passkey + timestamp)``.
3. The gateway later POSTs the outcome to the configured callback URL
   (handled by ``EscrowCoordinator.handle_callback``).

Every call has a fixed timeout.  Transport errors, timeouts and rejected
requests come back as ``GatewayError``; the caller records a failed payment.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

_PHONE_RE = re.compile(r"^254\d{9}$")


class GatewayError(Exception):
    """The gateway did not accept the payment request."""


@dataclass(frozen=True)
class StkPushAccepted:
    merchant_request_id: str
    checkout_request_id: str
    response_code: str
    response_description: str
    customer_message: str


def normalize_phone(raw: str) -> Optional[str]:
    """
    Convert a Kenyan mobile number to ``254XXXXXXXXX``.

    ``0712345678``, ``712345678``, ``+254 712 345 678`` all normalise;
    anything that does not end up as 12 digits starting with 254 is ``None``.
    """
    digits = re.sub(r"\D", "", raw or "")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif not digits.startswith("254"):
        digits = "254" + digits
    return digits if _PHONE_RE.match(digits) else None


class MpesaGateway:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        consumer_key: Optional[str],
        consumer_secret: Optional[str],
        shortcode: Optional[str],
        passkey: Optional[str],
        callback_url: Optional[str],
        timeout: float = 10.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.consumer_key = (consumer_key or "").strip()
        self.consumer_secret = (consumer_secret or "").strip()
        self.shortcode = (shortcode or "").strip()
        self.passkey = (passkey or "").strip()
        self.callback_url = re.sub(r"\s+", "", callback_url or "")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return all(
            (
                self.consumer_key,
                self.consumer_secret,
                self.shortcode.isdigit(),
                self.passkey,
                self.callback_url,
            )
        )

    def password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    async def _access_token(self) -> str:
        resp = await self.client.get(
            f"{self.base_url}/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.consumer_key, self.consumer_secret),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = resp.json()
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise GatewayError("Gateway did not return an access token")
        return token

    async def stk_push(
        self,
        phone: str,
        amount: int,
        account_reference: str,
        description: str = "Cargo booking payment",
    ) -> StkPushAccepted:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": description,
        }
        try:
            token = await self._access_token()
            resp = await self.client.post(
                f"{self.base_url}/mpesa/stkpush/v1/processrequest",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
            data = resp.json()
        except httpx.TimeoutException as exc:
            raise GatewayError("Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc
        except ValueError as exc:
            raise GatewayError("Payment gateway returned a malformed response") from exc

        if not isinstance(data, dict):
            raise GatewayError("Payment gateway returned a malformed response")
        if str(data.get("ResponseCode")) != "0" or not data.get("CheckoutRequestID"):
            message = (
                data.get("CustomerMessage")
                or data.get("errorMessage")
                or "STK push rejected"
            )
            raise GatewayError(message)

        logger.info(
            "STK push accepted (checkout=%s, amount=%s)",
            data["CheckoutRequestID"], amount,
        )
        return StkPushAccepted(
            merchant_request_id=data.get("MerchantRequestID", ""),
            checkout_request_id=data["CheckoutRequestID"],
            response_code=str(data.get("ResponseCode")),
            response_description=data.get("ResponseDescription", ""),
            customer_message=data.get("CustomerMessage", ""),
        )
