"""
Midtrans API client.

Implements:
- Snap transaction creation (token + redirect URL)
- Transaction status lookup for reconciliation
- Error classification into unavailable vs rejected

No retries happen here; the storefront lets the customer retry.
"""
import base64
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
import structlog

from catering_payments.config import GatewayConfig
from catering_payments.core.exceptions import GatewayRejectedError, GatewayUnavailableError
from catering_payments.core.fees import PaymentMethod, channels_for
from catering_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_ITEM_NAME_LENGTH = 50
ERROR_BODY_LIMIT = 800


@dataclass(frozen=True)
class LineItem:
    """One priced line sent to the gateway."""

    id: str
    price: int
    quantity: int
    name: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "price": self.price,
            "quantity": self.quantity,
            "name": self.name[:MAX_ITEM_NAME_LENGTH],
        }


@dataclass(frozen=True)
class CustomerDetails:
    first_name: str
    phone: str = ""
    email: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"first_name": self.first_name, "phone": self.phone, "email": self.email}


@dataclass(frozen=True)
class SnapTransaction:
    """Handles returned by the gateway for one checkout session."""

    token: str
    redirect_url: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


class MidtransClient:
    """
    Thin async wrapper over the Midtrans Snap and Core APIs.

    Features:
    - Basic auth with the server key
    - Bounded timeout on every call
    - Enabled payment channels restricted to the resolved method
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Midtrans client.

        Args:
            config: Gateway credentials, endpoints and timeout
            transport: Optional httpx transport (tests inject a mock here)
        """
        self.config = config
        self._transport = transport

        logger.info(
            "midtrans_client_initialized",
            production=config.is_production,
            snap_url=config.snap_url,
        )

    def _auth_header(self) -> str:
        if not self.config.server_key:
            logger.error("midtrans_server_key_missing")
            raise GatewayUnavailableError("MIDTRANS_SERVER_KEY not configured")
        encoded = base64.b64encode(f"{self.config.server_key}:".encode("utf-8")).decode("utf-8")
        return f"Basic {encoded}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            transport=self._transport,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    async def _request(
        self, operation: str, method: str, url: str, json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        headers = {"Authorization": self._auth_header()}
        start_time = time.time()
        try:
            async with self._client() as client:
                response = await client.request(method, url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            metrics.record_gateway_call(operation, "timeout", time.time() - start_time)
            logger.error("midtrans_timeout", operation=operation, error=str(e))
            raise GatewayUnavailableError(f"Midtrans request timed out: {e}")
        except httpx.HTTPError as e:
            metrics.record_gateway_call(operation, "network_error", time.time() - start_time)
            logger.error("midtrans_network_error", operation=operation, error=str(e))
            raise GatewayUnavailableError(f"Midtrans request failed: {e}")

        metrics.record_gateway_call(
            operation, str(response.status_code), time.time() - start_time
        )
        if not response.is_success:
            body = response.text[:ERROR_BODY_LIMIT]
            logger.error(
                "midtrans_rejected",
                operation=operation,
                status_code=response.status_code,
                body=body,
            )
            raise GatewayRejectedError(
                f"Midtrans API error: {body}", status_code=response.status_code, body=body
            )
        return response

    @staticmethod
    def build_transaction_payload(
        transaction_id: str,
        gross_amount: int,
        items: Sequence[LineItem],
        customer: CustomerDetails,
        payment_method: str,
    ) -> Dict[str, Any]:
        """Build the Snap request body for one charge."""
        payload: Dict[str, Any] = {
            "transaction_details": {
                "order_id": transaction_id,
                "gross_amount": gross_amount,
            },
            "item_details": [item.to_payload() for item in items],
            "customer_details": customer.to_payload(),
            "enabled_payments": list(channels_for(payment_method)),
        }
        if payment_method == PaymentMethod.QRIS.value:
            payload["qris"] = {"acquirer": "gopay"}
        return payload

    async def create_transaction(
        self,
        transaction_id: str,
        gross_amount: int,
        items: Sequence[LineItem],
        customer: CustomerDetails,
        payment_method: str,
    ) -> SnapTransaction:
        """
        Create a Snap transaction.

        Args:
            transaction_id: Prefixed transaction id (becomes the gateway order_id)
            gross_amount: Amount charged, admin fee included
            items: Line items, admin fee included as its own line
            customer: Customer contact details
            payment_method: Resolved method; only its channels are enabled

        Returns:
            SnapTransaction: Token and redirect URL

        Raises:
            GatewayUnavailableError: Credential missing or gateway unreachable
            GatewayRejectedError: Gateway answered with a non-2xx status
        """
        payload = self.build_transaction_payload(
            transaction_id, gross_amount, items, customer, payment_method
        )
        logger.info(
            "creating_snap_transaction",
            transaction_id=transaction_id,
            gross_amount=gross_amount,
            payment_method=payment_method,
            item_count=len(items),
        )

        response = await self._request(
            "create_transaction", "POST", self.config.snap_url, json=payload
        )
        try:
            data = response.json()
            transaction = SnapTransaction(
                token=data["token"], redirect_url=data.get("redirect_url", ""), raw=data
            )
        except (ValueError, KeyError, TypeError):
            body = response.text[:ERROR_BODY_LIMIT]
            logger.error("midtrans_malformed_response", body=body)
            raise GatewayRejectedError(
                f"Midtrans API error: {body}", status_code=response.status_code, body=body
            )

        logger.info(
            "snap_transaction_created",
            transaction_id=transaction_id,
            token=transaction.token,
        )
        return transaction

    async def get_transaction_status(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch the gateway's current view of a transaction.

        Returns:
            Optional[Dict[str, Any]]: Status document shaped like a payment
            notification, or None when the gateway does not know the id
        """
        url = f"{self.config.core_api_url.rstrip('/')}/v2/{transaction_id}/status"
        try:
            response = await self._request("get_status", "GET", url)
        except GatewayRejectedError as e:
            if e.status_code == 404:
                logger.info("midtrans_transaction_unknown", transaction_id=transaction_id)
                return None
            raise
        try:
            data = response.json()
        except ValueError:
            body = response.text[:ERROR_BODY_LIMIT]
            raise GatewayRejectedError(
                f"Midtrans API error: {body}", status_code=response.status_code, body=body
            )

        if str(data.get("status_code")) == "404":
            logger.info("midtrans_transaction_unknown", transaction_id=transaction_id)
            return None
        return data


def admin_fee_line(fee: int, fee_label: str) -> LineItem:
    """Synthetic line item carrying the admin fee."""
    return LineItem(id="admin-fee", price=fee, quantity=1, name=f"Biaya Admin ({fee_label})")


def line_items_total(items: List[LineItem]) -> int:
    return sum(item.price * item.quantity for item in items)
