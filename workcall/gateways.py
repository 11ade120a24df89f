"""
Online payment gateways.

Both providers sit behind the same two calls:
  create_session(amount, callback_url, reference) -> GatewaySession
  verify(external_id) -> GatewayVerification

Every HTTP call carries a timeout and goes through a circuit breaker; any failure to
reach the provider surfaces as UpstreamError (with the provider's Retry-After if any).
"""
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx
from dateutil import parser

from . import config
from .breaker import CircuitBreaker, CircuitBreakerOpen
from .errors import UpstreamError
from .lifecycle import Gateway


@dataclass
class GatewaySession:
    session_id: str
    redirect_url: str


@dataclass
class GatewayVerification:
    external_id: str
    ok: bool
    status: str
    amount: Decimal | None = None


class PaymentGateway(Protocol):
    name: Gateway

    async def create_session(self, amount: Decimal, callback_url: str, reference: str) -> GatewaySession:
        ...

    async def verify(self, external_id: str) -> GatewayVerification:
        ...


def parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        when = parser.parse(value)
    except (ValueError, OverflowError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0, int((when - datetime.now(timezone.utc)).total_seconds()))


def _amount(value) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class HttpGateway:
    name: Gateway

    def __init__(
        self,
        breaker: CircuitBreaker | None = None,
        timeout: float = config.GATEWAY_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.breaker = breaker
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self.breaker:
            try:
                await self.breaker.allow_request()
            except CircuitBreakerOpen as e:
                raise UpstreamError(str(e), retry_after=e.retry_after, http_status=503)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, url, **kwargs)
                resp.raise_for_status()
        except httpx.TimeoutException:
            await self._failure()
            raise UpstreamError(f"Timeout calling {self.name.value}", http_status=504)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                await self._failure()
            raise UpstreamError(
                f"{self.name.value} responded {status}",
                retry_after=parse_retry_after(e.response.headers.get("Retry-After")),
                http_status=503 if status in (429, 503) else 502,
            )
        except httpx.HTTPError as e:
            await self._failure()
            raise UpstreamError(f"Bad gateway calling {self.name.value}: {e}")

        if self.breaker:
            await self.breaker.record_success()
        return resp

    async def _failure(self):
        if self.breaker:
            await self.breaker.record_failure()

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError("Gateway returned a non-JSON response")
        if not isinstance(data, dict):
            raise UpstreamError("Gateway returned an unexpected payload")
        return data


class BkashGateway(HttpGateway):
    """bKash tokenized checkout (gateway-A)."""

    name = Gateway.BKASH

    def __init__(
        self,
        base_url: str = config.BKASH_BASE_URL,
        app_key: str = config.BKASH_APP_KEY,
        app_secret: str = config.BKASH_APP_SECRET,
        username: str = config.BKASH_USERNAME,
        password: str = config.BKASH_PASSWORD,
        **kwargs,
    ):
        super().__init__(**kwargs)
        base_url = base_url.rstrip("/")
        if not base_url.endswith("/tokenized"):
            base_url = base_url + "/tokenized"
        self.base_url = base_url
        self.app_key = app_key
        self.app_secret = app_secret
        self.username = username
        self.password = password
        self._token: str | None = None
        self._token_expires = 0.0

    async def _auth_token(self) -> str:
        if self._token and self._token_expires > time.time():
            return self._token

        resp = await self._request(
            "POST",
            f"{self.base_url}/checkout/token/grant",
            json={"app_key": self.app_key, "app_secret": self.app_secret},
            headers={"username": self.username, "password": self.password},
        )
        data = self._json(resp)
        token = data.get("id_token")
        if not token:
            raise UpstreamError("bKash token grant returned no id_token")

        # tokens live one hour; refresh a little early
        expires_in = int(data.get("expires_in") or 3600)
        self._token = token
        self._token_expires = time.time() + max(60, expires_in - 600)
        return token

    async def _headers(self) -> dict:
        return {"Authorization": await self._auth_token(), "X-APP-Key": self.app_key}

    async def create_session(self, amount: Decimal, callback_url: str, reference: str) -> GatewaySession:
        resp = await self._request(
            "POST",
            f"{self.base_url}/checkout/create",
            json={
                "mode": "0011",
                "payerReference": reference,
                "callbackURL": callback_url,
                "amount": f"{amount:.2f}",
                "currency": "BDT",
                "intent": "sale",
                "merchantInvoiceNumber": reference,
            },
            headers=await self._headers(),
        )
        data = self._json(resp)
        payment_id = data.get("paymentID")
        redirect = data.get("bkashURL")
        if not payment_id or not redirect:
            raise UpstreamError(data.get("statusMessage") or data.get("errorMessage") or "bKash returned no paymentID")
        return GatewaySession(session_id=payment_id, redirect_url=redirect)

    async def verify(self, external_id: str) -> GatewayVerification:
        headers = await self._headers()
        resp = await self._request(
            "POST",
            f"{self.base_url}/checkout/execute",
            json={"paymentID": external_id},
            headers=headers,
        )
        data = self._json(resp)

        if data.get("transactionStatus") != "Completed":
            # already executed (callback retried): ask for the current status instead
            resp = await self._request(
                "POST",
                f"{self.base_url}/checkout/payment/status",
                json={"paymentID": external_id},
                headers=headers,
            )
            data = self._json(resp)

        status = data.get("transactionStatus") or data.get("statusMessage") or "unknown"
        return GatewayVerification(
            external_id=external_id,
            ok=status == "Completed",
            status=status,
            amount=_amount(data.get("amount")),
        )


class SslcommerzGateway(HttpGateway):
    """SSLCommerz hosted checkout (gateway-B). The session id is our own tran_id."""

    name = Gateway.SSLCOMMERZ

    def __init__(
        self,
        base_url: str = config.SSLCOMMERZ_BASE_URL,
        store_id: str = config.SSLCOMMERZ_STORE_ID,
        store_passwd: str = config.SSLCOMMERZ_STORE_PASS,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.store_id = store_id
        self.store_passwd = store_passwd

    async def create_session(self, amount: Decimal, callback_url: str, reference: str) -> GatewaySession:
        tran_id = f"{reference}-{uuid.uuid4().hex[:8]}"
        resp = await self._request(
            "POST",
            f"{self.base_url}/gwprocess/v4/api.php",
            data={
                "store_id": self.store_id,
                "store_passwd": self.store_passwd,
                "total_amount": f"{amount:.2f}",
                "currency": "BDT",
                "tran_id": tran_id,
                "success_url": callback_url,
                "fail_url": callback_url,
                "cancel_url": callback_url,
                "ipn_url": callback_url,
                "product_name": reference,
                "product_category": "service",
                "product_profile": "non-physical-goods",
                "shipping_method": "NO",
            },
        )
        data = self._json(resp)
        redirect = data.get("GatewayPageURL")
        if str(data.get("status", "")).upper() != "SUCCESS" or not redirect:
            raise UpstreamError(data.get("failedreason") or "SSLCommerz session init failed")
        return GatewaySession(session_id=tran_id, redirect_url=redirect)

    async def verify(self, external_id: str) -> GatewayVerification:
        resp = await self._request(
            "GET",
            f"{self.base_url}/validator/api/merchantTransIDvalidationAPI.php",
            params={
                "tran_id": external_id,
                "store_id": self.store_id,
                "store_passwd": self.store_passwd,
                "format": "json",
            },
        )
        data = self._json(resp)

        for element in data.get("element") or []:
            status = str(element.get("status", "")).upper()
            if status in ("VALID", "VALIDATED"):
                return GatewayVerification(
                    external_id=external_id,
                    ok=True,
                    status=status,
                    amount=_amount(element.get("amount")),
                )

        return GatewayVerification(
            external_id=external_id,
            ok=False,
            status=str(data.get("APIConnect") or "NOT_FOUND"),
        )


def build_gateways() -> dict[Gateway, PaymentGateway]:
    return {
        Gateway.BKASH: BkashGateway(breaker=CircuitBreaker("bkash", failure_threshold=5, reset_timeout_seconds=30)),
        Gateway.SSLCOMMERZ: SslcommerzGateway(
            breaker=CircuitBreaker("sslcommerz", failure_threshold=5, reset_timeout_seconds=30)
        ),
    }


gateways = build_gateways()


def get_gateways() -> dict[Gateway, PaymentGateway]:
    return gateways
