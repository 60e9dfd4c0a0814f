"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

import hmac
import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Optional
from contextlib import asynccontextmanager
from urllib.parse import parse_qsl

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import PaymentSettings
from application.dtos.payments import (
    CreatePayment,
    PaymentNotification,
    PaymentSession,
    ProviderStatus,
)
from application.ports.payment_gateway import PaymentGateway
from domain.order.entity import OrderStatus, PaymentStatus
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL, UNKNOWN_STATUS_MAPPING


logger = get_logger(__name__)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        settings: PaymentSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._timeouts_cfg = settings.timeouts.model_dump()
        self._retry_cfg = {"max": settings.retry.max, "base": settings.retry.base_backoff}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            pool=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _request_json(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        """Send a request with retries on transport errors only; map failures to GatewayUnavailable."""
        async def _send() -> httpx.Response:
            async with self.client() as http:
                return await http.request(method, url, **kwargs)

        try:
            resp = await self._retry(_send)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            self._log("payment_transport_error", url=url, error=str(exc))
            raise PaymentRecoverableError(
                f"{self.provider} unreachable: {exc.__class__.__name__}", provider=self.provider
            ) from exc

        if resp.status_code >= 400:
            self._log("payment_provider_http_error", url=url, status_code=resp.status_code)
            raise PaymentProviderError(
                f"{self.provider} returned HTTP {resp.status_code}",
                provider=self.provider,
                provider_code=str(resp.status_code),
                details={"body": resp.text[:500]},
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentProviderError(
                f"{self.provider} returned a non-JSON body", provider=self.provider
            ) from exc
        if not isinstance(data, dict):
            raise PaymentProviderError(f"{self.provider} returned an unexpected body", provider=self.provider)
        return data

    # Default implementations raise to force override where needed
    async def create_payment(self, req: CreatePayment) -> PaymentSession:  # type: ignore[override]
        raise NotImplementedError

    async def get_status(self, correlation_id: str) -> ProviderStatus:  # type: ignore[override]
        raise NotImplementedError

    def verify_signature(self, payload: dict[str, Any], signature: Optional[str]) -> bool:  # type: ignore[override]
        raise NotImplementedError

    def parse_notification(self, headers: dict[str, Any], body: bytes) -> PaymentNotification:  # type: ignore[override]
        raise NotImplementedError

    def map_provider_status(
        self, provider_status: str, payment_method_hint: Optional[str] = None
    ) -> tuple[PaymentStatus, OrderStatus]:
        payment, order = self._lookup_status(provider_status)
        return PaymentStatus(payment), OrderStatus(order)

    # Helpers
    def _lookup_status(self, provider_status: str) -> tuple[str, str]:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(str(provider_status or "").lower(), UNKNOWN_STATUS_MAPPING)

    @staticmethod
    def _digest_matches(expected: str, signature: Optional[str]) -> bool:
        if not signature:
            return False
        return hmac.compare_digest(expected.lower(), str(signature).strip().lower())

    @staticmethod
    def _load_body(body: bytes) -> dict[str, Any]:
        text = (body or b"").decode("utf-8", errors="replace").strip()
        if not text:
            return {}
        if text.startswith("{"):
            try:
                data = json.loads(text)
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}
        return dict(parse_qsl(text, keep_blank_values=True))

    @staticmethod
    def _as_amount(value: Any) -> int:
        """Both providers take whole IDR as integers."""
        return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )


def opt_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)
