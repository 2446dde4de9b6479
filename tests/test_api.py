"""
HTTP-level tests for the payment and notification endpoints.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from catering_payments.api.main import create_app
from catering_payments.config import Settings
from catering_payments.core.clock import FixedClock
from catering_payments.core.exceptions import GatewayUnavailableError, StoreError
from catering_payments.database.repository import OrderRepository

from .conftest import FakeMidtrans, bearer_token, signed_notification


class TestCreatePaymentEndpoint:
    """Test suite for POST /payments/create."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_guest_checkout(self, client: httpx.AsyncClient, make_order) -> None:
        order_id = await make_order(total_amount=500000)

        response = await client.post(
            "/payments/create", json={"orderId": order_id, "isGuest": True}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["snapToken"] == "snap-token-1"
        assert body["orderIds"] == [order_id]
        assert body["reused"] is False
        assert body["paymentInfo"] == {
            "baseAmount": 500000,
            "adminFee": 3500,
            "totalAmount": 503500,
            "paymentMethod": "qris",
            "feeType": "0.7%",
        }
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert "X-Request-ID" in response.headers

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_repeat_checkout_reuses_token(
        self, client: httpx.AsyncClient, fake_midtrans: FakeMidtrans, make_order
    ) -> None:
        order_id = await make_order(total_amount=700000)
        request = {"orderIds": [order_id], "isGuest": True}

        first = (await client.post("/payments/create", json=request)).json()
        second = (await client.post("/payments/create", json=request)).json()

        assert first["paymentInfo"]["paymentMethod"] == "bank_transfer"
        assert second["reused"] is True
        assert second["snapToken"] == first["snapToken"]
        assert fake_midtrans.create_calls == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_authenticated_checkout(self, client: httpx.AsyncClient, make_order) -> None:
        order_id = await make_order(user_id="user-1", recipient_name="Aisyah")

        response = await client.post(
            "/payments/create",
            json={"orderId": order_id},
            headers={"Authorization": f"Bearer {bearer_token('user-1')}"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_authenticated_checkout_cannot_pay_other_users_orders(
        self, client: httpx.AsyncClient, make_order
    ) -> None:
        order_id = await make_order(user_id="user-2", recipient_name="Fatimah")

        response = await client.post(
            "/payments/create",
            json={"orderId": order_id},
            headers={"Authorization": f"Bearer {bearer_token('user-1')}"},
        )

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Orders not found"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "headers, error",
        [
            ({}, "Authorization header required for authenticated checkout"),
            ({"Authorization": "Basic abc"}, "Authorization header must be a bearer token"),
            ({"Authorization": "Bearer not-a-jwt"}, "Invalid authorization token"),
        ],
    )
    async def test_authenticated_checkout_requires_valid_bearer(
        self, client: httpx.AsyncClient, make_order, headers, error
    ) -> None:
        order_id = await make_order(user_id="user-1")

        response = await client.post("/payments/create", json={"orderId": order_id}, headers=headers)

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": error}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_token_signed_with_another_secret_is_rejected(
        self, client: httpx.AsyncClient, make_order
    ) -> None:
        order_id = await make_order(user_id="user-1")
        token = bearer_token("user-1", secret="another-secret-that-is-32-bytes-long!")

        response = await client.post(
            "/payments/create",
            json={"orderId": order_id},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid authorization token"

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [{}, {"orderIds": []}, {"orderId": ""}, {"isGuest": True}],
    )
    async def test_missing_order_ids(self, client: httpx.AsyncClient, body) -> None:
        response = await client.post("/payments/create", json=body)

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Order ID is required"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_body(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/payments/create",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["success"] is False

        response = await client.post("/payments/create", json={"orderIds": "abc"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request body"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_business_rule_errors_are_400(
        self, client: httpx.AsyncClient, clock: FixedClock, make_order
    ) -> None:
        late = await make_order(delivery_date=clock.today() - timedelta(days=2))
        paid = await make_order(status="paid")
        account = await make_order(user_id="user-1")

        for order_id, error in [
            (late, "Tidak dapat membayar - tanggal penerimaan sudah lewat"),
            (paid, "Pesanan sudah dibayar"),
            (account, "Guest checkout can only be used for guest orders"),
        ]:
            response = await client.post(
                "/payments/create", json={"orderId": order_id, "isGuest": True}
            )
            assert response.status_code == 400
            assert response.json() == {"success": False, "error": error}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_error_text_is_surfaced(
        self, client: httpx.AsyncClient, fake_midtrans: FakeMidtrans, make_order
    ) -> None:
        order_id = await make_order()
        fake_midtrans.fail_create_with = 401

        response = await client.post(
            "/payments/create", json={"orderId": order_id, "isGuest": True}
        )

        assert response.status_code == 400
        assert response.json()["error"].startswith("Midtrans API error:")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_store_failure_after_gateway_success_is_not_an_error(
        self, client: httpx.AsyncClient, make_order, load_order, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        order_id = await make_order(total_amount=500000)
        monkeypatch.setattr(
            OrderRepository,
            "update_payment_fields",
            AsyncMock(side_effect=StoreError("Store operation 'update_payment_fields' timed out")),
        )

        response = await client.post(
            "/payments/create", json={"orderId": order_id, "isGuest": True}
        )

        assert response.status_code == 200
        assert response.json()["snapToken"] == "snap-token-1"
        assert (await load_order(order_id)).snap_token is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_preflight(self, client: httpx.AsyncClient) -> None:
        response = await client.options("/payments/create")

        assert response.status_code == 200
        assert response.text == "ok"
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestMidtransWebhookEndpoint:
    """Test suite for POST /webhooks/midtrans."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_settlement_marks_order_paid(
        self, client: httpx.AsyncClient, make_order, load_order
    ) -> None:
        order_id = await make_order()

        response = await client.post(
            "/webhooks/midtrans", json=signed_notification(f"DAPOER-{order_id}", "settlement")
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "Updated 1 order(s)",
            "orderId": f"DAPOER-{order_id}",
            "status": "paid",
            "updatedCount": 1,
        }
        assert (await load_order(order_id)).status == "paid"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_then_settle_end_to_end(
        self, client: httpx.AsyncClient, fake_midtrans: FakeMidtrans, make_order, load_order
    ) -> None:
        first = await make_order(total_amount=300000)
        second = await make_order(total_amount=200000)
        await client.post(
            "/payments/create", json={"orderIds": [first, second], "isGuest": True}
        )
        transaction_id = fake_midtrans.created[0]["transaction_details"]["order_id"]

        response = await client.post(
            "/webhooks/midtrans",
            json=signed_notification(transaction_id, "settlement", gross_amount="503500.00"),
        )

        assert response.json()["updatedCount"] == 2
        assert (await load_order(first)).status == "paid"
        assert (await load_order(second)).status == "paid"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_tampered_signature_still_answers_200(
        self, client: httpx.AsyncClient, make_order, load_order
    ) -> None:
        order_id = await make_order()
        body = signed_notification(f"DAPOER-{order_id}", "settlement")
        body["signature_key"] = body["signature_key"][::-1]

        response = await client.post("/webhooks/midtrans", json=body)

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert (await load_order(order_id)).status == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        [b"not json", b'{"order_id": "DAPOER-x"}', b"[]"],
    )
    async def test_invalid_payload_still_answers_200(
        self, client: httpx.AsyncClient, content: bytes
    ) -> None:
        response = await client.post(
            "/webhooks/midtrans", content=content, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Invalid notification payload"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_numeric_fields_are_signed_as_text(
        self, client: httpx.AsyncClient, make_order, load_order
    ) -> None:
        order_id = await make_order()
        body = signed_notification(f"DAPOER-{order_id}", "settlement", gross_amount="503500")
        body["gross_amount"] = 503500
        body["status_code"] = 200

        response = await client.post("/webhooks/midtrans", json=body)

        assert response.json()["updatedCount"] == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_preflight(self, client: httpx.AsyncClient) -> None:
        response = await client.options("/webhooks/midtrans")

        assert response.status_code == 200
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestAdminAndMonitoring:
    """Reconciliation trigger, health and metrics endpoints."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_reconcile_endpoint(
        self,
        client: httpx.AsyncClient,
        fake_midtrans: FakeMidtrans,
        clock: FixedClock,
        make_order,
        load_order,
    ) -> None:
        bulk_id = "DAPOER-BULK-1772418600000-2"
        order_id = await make_order(
            transaction_id=bulk_id, updated_at=clock.now() - timedelta(hours=1)
        )
        fake_midtrans.statuses[bulk_id] = signed_notification(bulk_id, "settlement")

        response = await client.post("/admin/reconcile")

        assert response.status_code == 200
        body = response.json()
        assert (body["checked"], body["applied"], body["ordersUpdated"]) == (1, 1, 1)
        assert (await load_order(order_id)).status == "paid"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["midtrans"]["status"] == "healthy"

        assert (await client.get("/health/live")).json()["status"] == "alive"
        assert (await client.get("/health/ready")).status_code == 200

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_metrics(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "payment_sessions_total" in response.text


@pytest.mark.unit
def test_app_refuses_to_start_without_server_key(session_factory) -> None:
    settings = Settings(_env_file=None, midtrans_server_key="")

    with pytest.raises(GatewayUnavailableError):
        create_app(settings, session_factory=session_factory)
