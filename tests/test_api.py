"""Tests for the service endpoints, auth and the shopper session API."""

import inspect
import logging

from conftest import ADMIN_HEADERS, CUSTOMER_HEADERS, OTHER_HEADERS, order_payload
from storefront import main
from storefront.config import Settings


class TestServiceEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["database_ok"] is True
        assert data["payment_gateway"] == "sandbox"
        assert data["payment_gateway_ok"] is True

    def test_version_hides_secrets(self, client):
        data = client.get("/version").json()
        assert data["service"] == "storefront"
        assert data["config"]["razorpay_configured"] is True
        assert "test_key_secret" not in str(data)

    def test_stats(self, client):
        data = client.get("/stats").json()
        assert "operations" in data
        assert "provider_failures" in data
        assert "signature_failures" in data
        assert "recent_problems" in data

    def test_database_handlers_run_in_threadpool(self):
        # sync SQLAlchemy sessions must not block the event loop
        db_handlers = [
            main.create_order, main.list_my_orders, main.get_order, main.update_order,
            main.admin_list_orders, main.admin_update_product, main.verify_payment_callback,
            main.list_addresses, main.create_address, main.update_address, main.delete_address,
            main.pricing_quote, main.get_shopper_session, main.add_cart_item, main.update_cart_item,
            main.remove_cart_item, main.clear_cart, main.add_to_wishlist, main.remove_from_wishlist,
            main.record_product_view,
        ]
        assert [h.__name__ for h in db_handlers if inspect.iscoroutinefunction(h)] == []


class TestLogging:
    def test_file_handler_and_level_fallback(self, tmp_path, monkeypatch):
        log_path = tmp_path / "logs" / "storefront.log"
        monkeypatch.setattr(main, "get_settings", lambda: Settings(
            _env_file=None, log_level="nonsense", log_path=str(log_path),
        ))
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            main.setup_logging()
            assert root.level == logging.INFO
            file_handlers = [h for h in root.handlers if isinstance(h, logging.FileHandler)]
            assert len(file_handlers) == 1
            logging.getLogger("storefront.test").info("order %s placed", "ORD-1")
            file_handlers[0].flush()
            assert "order ORD-1 placed" in log_path.read_text()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestInventory:
    def set_stock(self, client, product, in_stock, headers=ADMIN_HEADERS):
        return client.patch(f"/api/admin/products/{product.id}", json={"in_stock": in_stock}, headers=headers)

    def test_out_of_stock_blocks_checkout_and_cart(self, client, products):
        tote = products["canvas-tote-bag"]
        response = self.set_stock(client, tote, False)
        assert response.status_code == 200
        assert response.json()["in_stock"] is False
        assert response.json()["slug"] == "canvas-tote-bag"

        order = client.post("/api/orders", json=order_payload(tote, size="One Size"), headers=CUSTOMER_HEADERS)
        assert order.status_code == 400
        assert "out of stock" in order.json()["error"]

        cart = client.post("/api/cart/items", json={"product_id": tote.id, "size": "One Size"},
                           headers=CUSTOMER_HEADERS)
        assert cart.status_code == 400

    def test_back_in_stock(self, client, products):
        tote = products["canvas-tote-bag"]
        self.set_stock(client, tote, False)
        assert self.set_stock(client, tote, True).json()["in_stock"] is True

        order = client.post("/api/orders", json=order_payload(tote, size="One Size"), headers=CUSTOMER_HEADERS)
        assert order.status_code == 201

    def test_admin_only(self, client, products):
        response = self.set_stock(client, products["canvas-tote-bag"], False, headers=CUSTOMER_HEADERS)
        assert response.status_code == 403

    def test_unknown_product(self, client):
        response = client.patch("/api/admin/products/nope", json={"in_stock": False}, headers=ADMIN_HEADERS)
        assert response.status_code == 404


class TestAuth:
    def test_unknown_user(self, client):
        response = client.get("/api/orders", headers={"X-User-Email": "nobody@example.com"})
        assert response.status_code == 401
        assert response.json() == {"error": "User not found"}

    def test_email_is_case_insensitive(self, client):
        response = client.get("/api/orders", headers={"X-User-Email": "Demo@Example.com"})
        assert response.status_code == 200
        assert response.json() == []

    def test_admin_routes_need_admin(self, client):
        assert client.get("/api/admin/orders").status_code == 401
        assert client.get("/api/admin/orders", headers=CUSTOMER_HEADERS).status_code == 403
        assert client.get("/api/admin/orders", headers=ADMIN_HEADERS).status_code == 200

    def test_bad_body_uses_error_shape(self, client):
        response = client.post("/api/orders", json={"items": "nope"}, headers=CUSTOMER_HEADERS)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"


class TestPricingQuote:
    def test_quote_uses_live_prices(self, client, products):
        response = client.post("/api/pricing/quote", json={"items": [
            {"product_id": products["midnight-crew-shirt"].id, "size": "M", "quantity": 2},
        ]})
        assert response.status_code == 200
        assert response.json() == {
            "subtotal": "4998.00",
            "shipping": "0.00",
            "total": "4998.00",
            "free_shipping_threshold": "2500",
        }

    def test_quote_below_threshold(self, client, products):
        response = client.post("/api/pricing/quote", json={"items": [
            {"product_id": "signature-tee-black", "size": "L", "quantity": 1},
        ]})
        data = response.json()
        assert data["shipping"] == "99.00"
        assert data["total"] == "1398.00"

    def test_unknown_product(self, client):
        response = client.post("/api/pricing/quote", json={"items": [
            {"product_id": "missing", "size": "M", "quantity": 1},
        ]})
        assert response.status_code == 404


class TestShopperSession:
    def test_cart_lifecycle(self, client, products):
        shirt = products["midnight-crew-shirt"]

        response = client.post("/api/cart/items", json={"product_id": shirt.id, "size": "M"},
                               headers=CUSTOMER_HEADERS)
        assert response.status_code == 200
        response = client.post("/api/cart/items", json={"product_id": shirt.slug, "size": "M"},
                               headers=CUSTOMER_HEADERS)
        data = response.json()
        assert len(data["cart"]) == 1
        assert data["cart"][0]["quantity"] == 2
        assert data["totals"] == {"subtotal": "4998.00", "shipping": "0.00", "total": "4998.00"}

        response = client.patch("/api/cart/items", json={"product_id": shirt.id, "size": "M", "quantity": 1},
                                headers=CUSTOMER_HEADERS)
        assert response.json()["totals"]["shipping"] == "99.00"

        response = client.request("DELETE", "/api/cart/items", json={"product_id": shirt.id, "size": "M"},
                                  headers=CUSTOMER_HEADERS)
        assert response.json()["cart"] == []

    def test_cart_rejects_size_not_offered(self, client, products):
        response = client.post(
            "/api/cart/items",
            json={"product_id": products["canvas-tote-bag"].id, "size": "XL"},
            headers=CUSTOMER_HEADERS,
        )
        assert response.status_code == 400
        assert response.json()["field"] == "size"

    def test_clear_cart(self, client, products):
        client.post("/api/cart/items", json={"product_id": products["canvas-tote-bag"].id, "size": "One Size"},
                    headers=CUSTOMER_HEADERS)
        assert client.delete("/api/cart", headers=CUSTOMER_HEADERS).json()["cart"] == []

    def test_sessions_are_per_user(self, client, products):
        client.post("/api/cart/items", json={"product_id": products["canvas-tote-bag"].id, "size": "One Size"},
                    headers=CUSTOMER_HEADERS)
        assert client.get("/api/session", headers=OTHER_HEADERS).json()["cart"] == []
        assert len(client.get("/api/session", headers=CUSTOMER_HEADERS).json()["cart"]) == 1

    def test_wishlist(self, client, products):
        tee = products["signature-tee-white"]
        client.post(f"/api/wishlist/{tee.id}", headers=CUSTOMER_HEADERS)
        data = client.post(f"/api/wishlist/{tee.id}", headers=CUSTOMER_HEADERS).json()
        assert [line["product_id"] for line in data["wishlist"]] == [tee.id]

        data = client.delete(f"/api/wishlist/{tee.id}", headers=CUSTOMER_HEADERS).json()
        assert data["wishlist"] == []

    def test_recently_viewed(self, client, products):
        first = products["signature-tee-white"]
        second = products["canvas-tote-bag"]
        client.post(f"/api/recently-viewed/{first.id}", headers=CUSTOMER_HEADERS)
        client.post(f"/api/recently-viewed/{second.id}", headers=CUSTOMER_HEADERS)
        data = client.post(f"/api/recently-viewed/{first.id}", headers=CUSTOMER_HEADERS).json()
        assert [line["product_id"] for line in data["recently_viewed"]] == [first.id, second.id]
