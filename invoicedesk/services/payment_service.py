from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from invoicedesk.context import AppContext
from invoicedesk.errors import PaymentServiceError
from invoicedesk.models.profile import PaymentAccountStatus

logger = logging.getLogger(__name__)

STATUS_FUNCTION = "connect_status"
MANAGE_LINK_FUNCTION = "connect_manage_link"
CHECKOUT_FUNCTION = "create_checkout"


class PaymentService:
    """
    Payment-account calls go through backend functions; each request carries the
    session token, the user id and the configured timeout.
    """

    def __init__(self, ctx: AppContext, http: Optional[httpx.AsyncClient] = None):
        self.ctx = ctx
        self._http = http

    def _headers(self) -> Dict[str, str]:
        uid = self.ctx.require_user_id()
        token = self.ctx.access_token
        headers = {"Content-Type": "application/json", "x-user-id": uid}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.ctx.settings.supabase_anon_key:
            headers["apikey"] = self.ctx.settings.supabase_anon_key
        return headers

    async def _call(self, function: str, method: str = "GET", body: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = self.ctx.settings.functions_url(function)
        headers = self._headers()
        timeout = self.ctx.settings.request_timeout
        if self._http is not None:
            return await self._http.request(method, url, headers=headers, json=body, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as http:
            return await http.request(method, url, headers=headers, json=body)

    # ---------------- Account ---------------- #

    async def fetch_status(self) -> Optional[PaymentAccountStatus]:
        try:
            resp = await self._call(STATUS_FUNCTION)
        except httpx.HTTPError as e:
            logger.warning("Payment status request failed: %s", e)
            return None
        if resp.status_code != 200:
            logger.warning("Payment status: HTTP %s - %s", resp.status_code, resp.text[:300])
            return None
        try:
            return PaymentAccountStatus(**resp.json())
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning("Payment status: unexpected payload (%s)", e)
            return None

    async def manage_link(self) -> Optional[str]:
        try:
            resp = await self._call(MANAGE_LINK_FUNCTION)
        except httpx.HTTPError as e:
            logger.warning("Manage link request failed: %s", e)
            return None
        if resp.status_code != 200:
            logger.warning("Manage link: HTTP %s - %s", resp.status_code, resp.text[:300])
            return None
        try:
            link = resp.json().get("url")
        except (ValueError, AttributeError):
            link = None
        if not link:
            logger.warning("Manage link: missing url in response")
        return link or None

    # ---------------- Checkout ---------------- #

    async def create_checkout(self, invoice_id: str) -> Optional[str]:
        """Asks the backend for a checkout link; raises PaymentServiceError on HTTP failure."""
        body = {"invoice_id": str(invoice_id), "user_id": self.ctx.require_user_id()}
        try:
            resp = await self._call(CHECKOUT_FUNCTION, method="POST", body=body)
        except httpx.HTTPError as e:
            raise PaymentServiceError(f"Checkout request failed: {e}") from e
        if resp.status_code >= 400:
            raise PaymentServiceError(
                f"Checkout request failed: HTTP {resp.status_code}", status_code=resp.status_code
            )
        try:
            data = resp.json()
        except ValueError:
            return None
        url = (data.get("url") or data.get("checkout_url")) if isinstance(data, dict) else None
        return url or None
