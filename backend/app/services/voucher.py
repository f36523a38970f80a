"""Finance voucher linkage.

Approving a settlement issues a payable voucher in the finance module
(VOUCHER_PAYABLE_ACCOUNT, the staff bonus payable); marking it paid settles that voucher.
Every failure surfaces as ExternalServiceError so the caller can roll back.
"""
import logging
import requests
from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from app.core.config import settings
from app.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


class VoucherRef(BaseModel):
    voucher_id: str
    voucher_no: Optional[str] = None


class VoucherLinker:
    """Talks to the finance voucher API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        account: Optional[str] = None,
    ):
        self.base_url = (base_url or settings.VOUCHER_API_URL or "").rstrip("/")
        self.api_key = api_key or settings.VOUCHER_API_KEY
        self.timeout = timeout or settings.VOUCHER_TIMEOUT
        self.account = account or settings.VOUCHER_PAYABLE_ACCOUNT

    def _request(self, method: str, path: str, payload: dict) -> dict:
        if not self.base_url:
            raise ExternalServiceError("Voucher API URL is not configured")

        headers = {
            "Content-Type": "application/json",
            "X-Request-Timestamp": datetime.utcnow().isoformat(),
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(method, url, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Voucher API {method} {path} failed: {e}")
            raise ExternalServiceError(f"Voucher service unavailable: {e}")

        if resp.status_code >= 400:
            logger.warning(f"Voucher API {method} {path} returned {resp.status_code}: {resp.text[:200]}")
            raise ExternalServiceError(
                f"Voucher service returned {resp.status_code}", status_code=resp.status_code
            )

        try:
            body = resp.json()
        except ValueError:
            raise ExternalServiceError("Voucher service returned a non-JSON response")

        # Finance API wraps payloads as {"errCode": ..., "msg": ..., "data": {...}}
        if isinstance(body, dict) and "errCode" in body:
            if body.get("errCode") not in (0, 200):
                raise ExternalServiceError(f"Voucher service error: {body.get('msg')}", err_code=body.get("errCode"))
            body = body.get("data") or {}
        return body if isinstance(body, dict) else {}

    def create_payable_voucher(self, settlement) -> VoucherRef:
        payload = {
            "sourceType": "commission_settlement",
            "sourceId": str(settlement.id),
            "settlementNo": settlement.settlement_no,
            "salespersonId": settlement.salesperson_id,
            "salespersonName": settlement.salesperson_name,
            "month": settlement.settlement_month,
            "amount": str(settlement.net_amount),
            "account": self.account,
        }
        data = self._request("POST", "/vouchers", payload)

        voucher_id = data.get("id") or data.get("voucherId")
        if not voucher_id:
            raise ExternalServiceError("Voucher service response did not include a voucher id")

        ref = VoucherRef(voucher_id=str(voucher_id), voucher_no=data.get("voucherNo"))
        logger.info(f"Payable voucher {ref.voucher_no or ref.voucher_id} created for settlement {settlement.settlement_no}")
        return ref

    def mark_voucher_paid(self, voucher_id: str, paid_at: Optional[datetime] = None) -> None:
        paid_at = paid_at or datetime.utcnow()
        self._request("PUT", f"/vouchers/{voucher_id}/paid", {"paidAt": paid_at.isoformat()})
        logger.info(f"Voucher {voucher_id} marked paid")


def get_voucher_linker() -> VoucherLinker:
    """FastAPI dependency."""
    return VoucherLinker()
