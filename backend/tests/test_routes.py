"""
HTTP surface tests.

Verifies:
- Missing or unknown X-Account-Address returns 401
- Ledger errors map to their HTTP status with a JSON body
- A buyer can register, shop, check out, and follow an order end to end
"""

import pytest

from blindbox.services import delivery_service

from conftest import BUYER_ADDRESS, DEFAULT_PRODUCT, as_account


# =============================================================================
# AUTHENTICATION: 401 / 403
# =============================================================================


class TestAuthentication:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/accounts/me"),
            ("GET", "/api/accounts"),
            ("GET", "/api/cart"),
            ("POST", "/api/cart/checkout"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders"),
            ("POST", "/api/products"),
            ("POST", "/api/refunds"),
            ("POST", "/api/delivery/1/confirm"),
        ],
    )
    def test_requires_account_header(self, client, owner, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_address(self, client, owner):
        resp = client.get("/api/accounts/me", headers=as_account("0xnobody"))
        assert resp.status_code == 401

    def test_deactivated_account(self, client, admin, buyer):
        client.post(f"/api/accounts/{buyer.address}/deactivate", headers=as_account(admin.address))
        resp = client.get("/api/accounts/me", headers=as_account(buyer.address))
        assert resp.status_code == 403

    def test_non_admin_cannot_list_accounts(self, client, buyer):
        resp = client.get("/api/accounts", headers=as_account(buyer.address))
        assert resp.status_code == 403


# =============================================================================
# ERROR MAPPING
# =============================================================================


class TestErrorMapping:

    def test_buyer_cannot_add_product(self, client, buyer):
        resp = client.post("/api/products", json=DEFAULT_PRODUCT, headers=as_account(buyer.address))
        assert resp.status_code == 403
        assert resp.json["kind"] == "UnauthorizedError"

    def test_invalid_config(self, client, admin):
        body = dict(DEFAULT_PRODUCT, enable_individual=False, enable_set=False)
        resp = client.post("/api/products", json=body, headers=as_account(admin.address))
        assert resp.status_code == 400
        assert resp.json["kind"] == "InvalidConfigError"

    def test_unknown_field_rejected(self, client, admin):
        body = dict(DEFAULT_PRODUCT, color="pink")
        resp = client.post("/api/products", json=body, headers=as_account(admin.address))
        assert resp.status_code == 400
        assert "color" in resp.json["error"]

    def test_product_not_found(self, client, owner):
        resp = client.get("/api/products/9999")
        assert resp.status_code == 404

    def test_insufficient_stock(self, client, buyer, product):
        body = {"product_id": product.id, "is_set": True, "qty": 4, "payment_wei": 2000}
        resp = client.post("/api/orders", json=body, headers=as_account(buyer.address))
        assert resp.status_code == 409
        assert resp.json["details"]["on_hand"] == 3

    def test_payment_mismatch(self, client, buyer, product):
        body = {"product_id": product.id, "qty": 1, "payment_wei": "99"}
        resp = client.post("/api/orders", json=body, headers=as_account(buyer.address))
        assert resp.status_code == 400
        assert resp.json["kind"] == "PaymentMismatchError"

    def test_wei_amount_as_decimal_rejected(self, client, buyer, product):
        body = {"product_id": product.id, "qty": 1, "payment_wei": 100.5}
        resp = client.post("/api/orders", json=body, headers=as_account(buyer.address))
        assert resp.status_code == 400

    def test_payout_failure_is_bad_gateway(self, client, admin, buyer, completed_order, recording_gateway):
        client.post(
            f"/api/refunds/orders/{completed_order.id}/approve-partial",
            json={"amount_wei": 50},
            headers=as_account(admin.address),
        )
        recording_gateway.fail_next = True
        resp = client.post(f"/api/refunds/orders/{completed_order.id}/claim", headers=as_account(buyer.address))
        assert resp.status_code == 502
        assert resp.json["kind"] == "PayoutFailedError"


# =============================================================================
# END TO END
# =============================================================================


class TestBuyerJourney:

    def test_register_shop_and_refund(self, client, admin, courier, product, recording_gateway):
        resp = client.post("/api/accounts/register", json={"address": BUYER_ADDRESS, "name": "Bob"})
        assert resp.status_code == 201
        buyer_headers = as_account(BUYER_ADDRESS)

        resp = client.get("/api/accounts/check", query_string={"address": BUYER_ADDRESS})
        assert resp.json["in_use"] is True

        resp = client.get(f"/api/products/{product.id}/price", query_string={"is_set": "true", "qty": "2"})
        assert resp.json["price_wei"] == 1000

        client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=buyer_headers)
        resp = client.post(
            "/api/cart/items", json={"product_id": product.id, "is_set": True}, headers=buyer_headers,
        )
        assert resp.status_code == 201
        assert resp.json["cart"]["subtotal_wei"] == 700
        assert resp.json["cart"]["total_wei"] == 705

        resp = client.post("/api/cart/checkout", json={"payment_wei": 700}, headers=buyer_headers)
        assert resp.status_code == 201
        assert resp.json["count"] == 2
        order_id = resp.json["orders"][0]["id"]

        resp = client.get("/api/orders", headers=buyer_headers)
        assert [o["id"] for o in resp.json["items"]] == [order_id, order_id + 1]

        admin_headers = as_account(admin.address)
        courier_headers = as_account(courier.address)
        assert client.post(
            f"/api/delivery/{order_id}/out-for-delivery", json={"delivery_id": "UPS-1"}, headers=admin_headers,
        ).status_code == 200
        assert client.post(
            f"/api/delivery/{order_id}/proof", json={"proof_image": "ipfs://photo"}, headers=courier_headers,
        ).status_code == 200
        assert client.post(f"/api/delivery/{order_id}/confirm", headers=admin_headers).status_code == 200

        resp = client.get(f"/api/delivery/{order_id}/history", headers=buyer_headers)
        assert [e["status"] for e in resp.json["items"]] == [
            "ORDER_PAID", "OUT_FOR_DELIVERY", "PENDING_CONFIRMATION", "COMPLETED",
        ]

        resp = client.post(
            "/api/refunds",
            json={"order_id": order_id, "type": "PARTIAL", "amount_wei": "60"},
            headers=buyer_headers,
        )
        assert resp.status_code == 201
        ticket_id = resp.json["ticket"]["id"]

        assert client.post(f"/api/refunds/{ticket_id}/approve", headers=admin_headers).status_code == 200
        resp = client.post(f"/api/refunds/{ticket_id}/pay", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["ticket"]["status"] == "PAID"
        assert recording_gateway.total_to(BUYER_ADDRESS.lower()) == 60

        resp = client.get(f"/api/orders/{order_id}", headers=buyer_headers)
        assert resp.json["order"]["status"] == "REFUNDED"
        assert resp.json["payment"]["refund_claimed"] is True

    def test_other_buyer_cannot_see_order(self, client, other_buyer, paid_order):
        resp = client.get(f"/api/orders/{paid_order.id}", headers=as_account(other_buyer.address))
        assert resp.status_code == 404

        resp = client.get("/api/orders", headers=as_account(other_buyer.address))
        assert resp.json["items"] == []

    def test_generic_status_route(self, client, courier, paid_order):
        resp = client.post(
            f"/api/delivery/{paid_order.id}/status",
            json={"status": "OUT_FOR_DELIVERY", "delivery_id": "DPD-8"},
            headers=as_account(courier.address),
        )
        assert resp.status_code == 201
        assert resp.json["entry"]["seq"] == 2
        assert resp.json["order"]["delivery_id"] == "DPD-8"
        assert delivery_service.get_delivery_history(paid_order.id)[-1].status == "OUT_FOR_DELIVERY"

    def test_amounts_beyond_64_bits(self, client, admin, buyer):
        body = dict(DEFAULT_PRODUCT, individual_price_wei=str(10**19))
        resp = client.post("/api/products", json=body, headers=as_account(admin.address))
        assert resp.status_code == 201
        product_id = resp.json["product"]["id"]

        body = {"product_id": product_id, "qty": 2, "payment_wei": str(2 * 10**19)}
        resp = client.post("/api/orders", json=body, headers=as_account(buyer.address))
        assert resp.status_code == 201
        assert resp.json["order"]["paid_wei"] == 2 * 10**19

    def test_cart_remove_route(self, client, buyer, product):
        headers = as_account(buyer.address)
        client.post("/api/cart/items", json={"product_id": product.id}, headers=headers)
        resp = client.delete("/api/cart/items/3", headers=headers)
        assert resp.status_code == 404
        resp = client.delete("/api/cart/items/0", headers=headers)
        assert resp.json["cart"]["items"] == []

    def test_admin_edits_account_route(self, client, admin, buyer, other_buyer):
        body = {"name": "Robert", "postal_address": "9 High St"}
        resp = client.patch(f"/api/accounts/{buyer.address}", json=body, headers=as_account(admin.address))
        assert resp.status_code == 200
        assert resp.json["account"]["name"] == "Robert"
        assert resp.json["account"]["postal_address"] == "9 High St"

        resp = client.patch(
            f"/api/accounts/{buyer.address}", json={"name": "Mallory"}, headers=as_account(other_buyer.address),
        )
        assert resp.status_code == 403

    def test_cart_update_route(self, client, buyer, product):
        headers = as_account(buyer.address)
        client.post("/api/cart/items", json={"product_id": product.id}, headers=headers)

        resp = client.patch("/api/cart/items/0", json={"quantity": 3}, headers=headers)
        assert resp.status_code == 200
        assert resp.json["item"]["quantity"] == 3
        assert resp.json["cart"]["subtotal_wei"] == 300

        resp = client.patch("/api/cart/items/0", json={"quantity": 0}, headers=headers)
        assert resp.json["item"] is None
        assert resp.json["cart"]["items"] == []


class TestSystem:

    def test_health_degraded_before_init(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "degraded"

    def test_health_after_init(self, client, owner):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"
        assert resp.json["checks"]["ledger"]["details"]["payout_gateway"] == "recording"
