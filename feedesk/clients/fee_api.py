"""HTTP client for the remote fee service.

Every call is a single attempt. Non-2xx answers become UpstreamError with the
service's own message; transport failures become UpstreamUnavailable. Payloads
are validated into typed models here, once, so callers never see raw dicts
for records or structures.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from feedesk.core.config import settings
from feedesk.core.error_sanitizer import sanitize_error
from feedesk.core.exceptions import UpstreamError, UpstreamUnavailable
from feedesk.api.v1.fees.schemas import FeeRecord, FeeStructure, RecordPage

logger = logging.getLogger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    return value


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if isinstance(body.get(key), str) and body[key]:
                return body[key]
    return response.reason_phrase


class FeeApiClient:
    """Thin async wrapper over the fee service's REST endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.fee_api_base_url).rstrip("/"),
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = await self._client.request(
                method,
                path,
                headers=headers,
                json=_jsonable(json) if json is not None else None,
                params=_jsonable(params) if params else None,
            )
        except httpx.TransportError as e:
            logger.warning("Fee service unreachable on %s %s: %s", method, path, e)
            raise UpstreamUnavailable(sanitize_error(e, debug=settings.debug)) from e
        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning("Fee service %s %s -> %s: %s", method, path, response.status_code, message)
            error = UpstreamError(message, response.status_code, path=path)
            # callers surface .message to users; the raw text stays on .raw
            error.message = sanitize_error(error, debug=settings.debug)
            raise error
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _fee(coaching_id: str, suffix: str = "") -> str:
        return f"/coaching/{coaching_id}/fee{suffix}"

    # --- Structures ---
    async def list_structures_raw(self, token: str, coaching_id: str) -> List[dict]:
        return await self._request("GET", self._fee(coaching_id, "/structures"), token)

    async def list_structures(self, token: str, coaching_id: str) -> List[FeeStructure]:
        data = await self.list_structures_raw(token, coaching_id)
        return [FeeStructure.model_validate(s) for s in data or []]

    async def create_structure(self, token: str, coaching_id: str, body: dict) -> FeeStructure:
        data = await self._request("POST", self._fee(coaching_id, "/structures"), token, json=body)
        return FeeStructure.model_validate(data)

    async def update_structure(self, token: str, coaching_id: str, structure_id: str, body: dict) -> FeeStructure:
        data = await self._request(
            "PATCH", self._fee(coaching_id, f"/structures/{structure_id}"), token, json=body
        )
        return FeeStructure.model_validate(data)

    async def delete_structure(self, token: str, coaching_id: str, structure_id: str) -> None:
        await self._request("DELETE", self._fee(coaching_id, f"/structures/{structure_id}"), token)

    async def list_structure_members(self, token: str, coaching_id: str, structure_id: str) -> List[dict]:
        data = await self._request(
            "GET", self._fee(coaching_id, f"/structures/{structure_id}/members"), token
        )
        return data or []

    # --- Assignments ---
    async def assign_fee(self, token: str, coaching_id: str, body: dict) -> Any:
        return await self._request("POST", self._fee(coaching_id, "/assign"), token, json=body)

    async def toggle_fee_pause(self, token: str, coaching_id: str, assignment_id: str, body: dict) -> Dict[str, Any]:
        return await self._request(
            "PATCH", self._fee(coaching_id, f"/assignments/{assignment_id}/pause"), token, json=body
        )

    async def remove_fee_assignment(self, token: str, coaching_id: str, assignment_id: str) -> Any:
        return await self._request("DELETE", self._fee(coaching_id, f"/assignments/{assignment_id}"), token)

    async def get_member_fee_profile(self, token: str, coaching_id: str, member_id: str) -> Dict[str, Any]:
        return await self._request("GET", self._fee(coaching_id, f"/members/{member_id}"), token)

    # --- Records ---
    async def list_records_raw(self, token: str, coaching_id: str, params: dict) -> dict:
        return await self._request("GET", self._fee(coaching_id, "/records"), token, params=params)

    async def list_records(self, token: str, coaching_id: str, params: dict) -> RecordPage:
        return RecordPage.model_validate(await self.list_records_raw(token, coaching_id, params))

    async def get_record_raw(self, token: str, coaching_id: str, record_id: str) -> dict:
        return await self._request("GET", self._fee(coaching_id, f"/records/{record_id}"), token)

    async def get_record(self, token: str, coaching_id: str, record_id: str) -> FeeRecord:
        return FeeRecord.model_validate(await self.get_record_raw(token, coaching_id, record_id))

    async def record_payment(self, token: str, coaching_id: str, record_id: str, body: dict) -> Any:
        return await self._request("POST", self._fee(coaching_id, f"/records/{record_id}/pay"), token, json=body)

    async def record_refund(self, token: str, coaching_id: str, record_id: str, body: dict) -> Any:
        return await self._request(
            "POST", self._fee(coaching_id, f"/records/{record_id}/refund"), token, json=body
        )

    async def waive_fee(self, token: str, coaching_id: str, record_id: str, body: dict) -> Any:
        return await self._request(
            "POST", self._fee(coaching_id, f"/records/{record_id}/waive"), token, json=body
        )

    async def send_reminder(self, token: str, coaching_id: str, record_id: str) -> None:
        await self._request("POST", self._fee(coaching_id, f"/records/{record_id}/remind"), token, json={})

    async def bulk_remind(self, token: str, coaching_id: str, body: dict) -> Dict[str, Any]:
        return await self._request("POST", self._fee(coaching_id, "/bulk-remind"), token, json=body)

    async def get_my_fees_raw(self, token: str, coaching_id: str) -> dict:
        return await self._request("GET", self._fee(coaching_id, "/my"), token)

    # --- Reports ---
    async def get_summary_raw(self, token: str, coaching_id: str, financial_year: Optional[str] = None) -> dict:
        params = {"fy": financial_year} if financial_year else None
        return await self._request("GET", self._fee(coaching_id, "/summary"), token, params=params)

    async def get_overdue_report_raw(self, token: str, coaching_id: str) -> List[dict]:
        return await self._request("GET", self._fee(coaching_id, "/overdue-report"), token)

    async def get_student_ledger_raw(self, token: str, coaching_id: str, member_id: str) -> dict:
        return await self._request("GET", self._fee(coaching_id, f"/members/{member_id}/ledger"), token)

    async def get_calendar_raw(self, token: str, coaching_id: str, start: date, end: date) -> List[dict]:
        return await self._request(
            "GET", self._fee(coaching_id, "/calendar"), token, params={"from": start, "to": end}
        )

    # --- Online payments ---
    async def create_order(self, token: str, coaching_id: str, record_id: str, amount: Optional[Decimal]) -> dict:
        body = {"recordId": record_id, "amount": amount}
        return await self._request(
            "POST", self._fee(coaching_id, f"/records/{record_id}/create-order"), token, json=body
        )

    async def verify_payment(self, token: str, coaching_id: str, record_id: str, body: dict) -> dict:
        return await self._request(
            "POST", self._fee(coaching_id, f"/records/{record_id}/verify-payment"), token, json=body
        )

    async def mark_order_failed(self, token: str, coaching_id: str, order_id: str, reason: str) -> None:
        await self._request(
            "POST", self._fee(coaching_id, f"/orders/{order_id}/fail"), token, json={"reason": reason}
        )

    async def get_failed_orders(self, token: str, coaching_id: str, record_id: str) -> List[dict]:
        data = await self._request("GET", self._fee(coaching_id, f"/records/{record_id}/failed-orders"), token)
        return data or []

    async def get_online_payments(self, token: str, coaching_id: str, record_id: str) -> List[dict]:
        data = await self._request("GET", self._fee(coaching_id, f"/records/{record_id}/online-payments"), token)
        return data or []

    async def initiate_online_refund(self, token: str, coaching_id: str, record_id: str, body: dict) -> dict:
        return await self._request(
            "POST", self._fee(coaching_id, f"/records/{record_id}/online-refund"), token, json=body
        )

    async def create_multi_order(self, token: str, coaching_id: str, body: dict) -> dict:
        return await self._request("POST", self._fee(coaching_id, "/multi-pay/create-order"), token, json=body)

    async def verify_multi_payment(self, token: str, coaching_id: str, body: dict) -> dict:
        return await self._request("POST", self._fee(coaching_id, "/multi-pay/verify"), token, json=body)

    async def get_payment_config(self, token: str) -> dict:
        return await self._request("GET", "/payment/config", token)

    async def get_payment_settings(self, token: str, coaching_id: str) -> dict:
        return await self._request("GET", f"/coaching/{coaching_id}/payment-settings", token)

    async def update_payment_settings(self, token: str, coaching_id: str, body: dict) -> dict:
        return await self._request("PATCH", f"/coaching/{coaching_id}/payment-settings", token, json=body)

    async def verify_bank_account(self, token: str, coaching_id: str) -> dict:
        return await self._request("POST", f"/coaching/{coaching_id}/payment-settings/verify-bank", token, json={})

    async def create_linked_account(self, token: str, coaching_id: str, body: dict) -> dict:
        return await self._request(
            "POST", f"/coaching/{coaching_id}/payment-settings/linked-account", token, json=body
        )

    async def refresh_linked_account(self, token: str, coaching_id: str) -> dict:
        return await self._request(
            "POST", f"/coaching/{coaching_id}/payment-settings/linked-account/refresh", token, json={}
        )

    async def delete_linked_account(self, token: str, coaching_id: str) -> dict:
        return await self._request("DELETE", f"/coaching/{coaching_id}/payment-settings/linked-account", token)


_client: Optional[FeeApiClient] = None


def get_fee_api() -> FeeApiClient:
    """FastAPI dependency: process-wide client sharing one connection pool."""
    global _client
    if _client is None:
        _client = FeeApiClient()
    return _client


async def close_fee_api() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
