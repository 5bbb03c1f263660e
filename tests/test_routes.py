import pytest

from helpers import cart_line, checkout_form

pytestmark = pytest.mark.anyio


class TestCheckoutRoutes:
    """Test cases for placing and tracking orders"""

    async def test_place_order(self, client, make_product, stock_of, mock_email_send):
        product = await make_product(name="Dried Apricots", price=850, stock=10)

        response = await client.post("/orders/", json=checkout_form([cart_line(product, 2)]))

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["order_number"].startswith("ORD-")
        assert await stock_of(product.id) == 8
        assert len(mock_email_send) == 1
        assert mock_email_send[0]["to"] == "ayesha@example.com"
        assert data["order_number"] in mock_email_send[0]["subject"]
        assert "Dried Apricots" in mock_email_send[0]["body"]

    async def test_place_order_insufficient_stock(self, client, make_product, stock_of, mock_email_send):
        product = await make_product(name="Gold Grade Shilajit", price=1800, stock=2)

        response = await client.post("/orders/", json=checkout_form([cart_line(product, 5)]))

        assert response.status_code == 409
        assert "Gold Grade Shilajit" in response.json()["detail"]
        assert await stock_of(product.id) == 2
        assert mock_email_send == []

    async def test_place_order_cod_for_fresh_fruit(self, client, make_product):
        cherries = await make_product(name="Fresh Cherries", stock=10, category="seasonal-fruits")

        response = await client.post("/orders/", json=checkout_form([cart_line(cherries, 1)]))

        assert response.status_code == 400
        assert "bank transfer" in response.json()["detail"]

    async def test_place_order_invalid_payload(self, client, make_product):
        product = await make_product()

        missing_email = checkout_form([cart_line(product, 1)])
        del missing_email["email"]
        zero_quantity = checkout_form([cart_line(product, 0)])
        bad_method = checkout_form([cart_line(product, 1)], payment_method="card")

        for payload in (missing_email, zero_quantity, bad_method):
            response = await client.post("/orders/", json=payload)
            assert response.status_code == 422

    async def test_empty_cart(self, client):
        response = await client.post("/orders/", json=checkout_form([]))

        assert response.status_code == 400
        assert response.json()["detail"] == "Order must contain items"

    async def test_track_order(self, client, make_product):
        product = await make_product(name="Dried Apricots", price=850, stock=10)
        placed = await client.post("/orders/", json=checkout_form([cart_line(product, 2, selectedVariant="1kg")]))
        order_number = placed.json()["order_number"]

        response = await client.get(f"/orders/{order_number}")

        assert response.status_code == 200
        data = response.json()
        assert data["order_number"] == order_number
        assert data["status"] == "pending"
        assert data["total"] == 1700
        assert data["items"][0]["product_name"] == "Dried Apricots"
        assert data["items"][0]["variant"] == "1kg"
        assert data["items"][0]["subtotal"] == 1700

    async def test_track_unknown_order(self, client):
        response = await client.get("/orders/ORD-20260101-0000")

        assert response.status_code == 404
        assert response.json()["detail"] == "Order not found"


class TestAdminOrderRoutes:
    """Test cases for the order back-office"""

    async def _place(self, client, make_product, quantity=1):
        product = await make_product(stock=20)
        response = await client.post("/orders/", json=checkout_form([cart_line(product, quantity)]))
        assert response.status_code == 201
        tracked = await client.get(f"/orders/{response.json()['order_number']}")
        return tracked.json()

    async def test_list_orders(self, client, make_product):
        first = await self._place(client, make_product)
        second = await self._place(client, make_product)

        response = await client.get("/admin/orders/")

        assert response.status_code == 200
        assert [o["id"] for o in response.json()] == [second["id"], first["id"]]

    async def test_list_orders_by_status(self, client, make_product):
        order = await self._place(client, make_product)
        await self._place(client, make_product)
        await client.patch(f"/admin/orders/{order['id']}/status", json={"status": "processing"})

        response = await client.get("/admin/orders/", params={"status": "processing"})

        assert [o["id"] for o in response.json()] == [order["id"]]

    async def test_get_order(self, client, make_product):
        order = await self._place(client, make_product, quantity=3)

        response = await client.get(f"/admin/orders/{order['id']}")

        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 3

    async def test_get_unknown_order(self, client):
        response = await client.get("/admin/orders/999")
        assert response.status_code == 404

    async def test_update_status(self, client, make_product, notifier):
        order = await self._place(client, make_product)

        response = await client.patch(f"/admin/orders/{order['id']}/status", json={"status": "shipped"})

        assert response.status_code == 200
        assert response.json()["status"] == "shipped"
        tracked = (await client.get(f"/orders/{order['order_number']}")).json()
        assert tracked["status"] == "shipped"
        assert tracked["total"] == order["total"]
        assert ("success", "Order status updated to shipped") in notifier.messages

    async def test_illegal_status_change(self, client, make_product):
        order = await self._place(client, make_product)
        await client.patch(f"/admin/orders/{order['id']}/status", json={"status": "cancelled"})

        response = await client.patch(f"/admin/orders/{order['id']}/status", json={"status": "processing"})

        assert response.status_code == 409
        assert "cancelled" in response.json()["detail"]

    async def test_invalid_status_value(self, client, make_product):
        order = await self._place(client, make_product)

        response = await client.patch(f"/admin/orders/{order['id']}/status", json={"status": "paid"})

        assert response.status_code == 422

    async def test_status_of_unknown_order(self, client):
        response = await client.patch("/admin/orders/999/status", json={"status": "shipped"})
        assert response.status_code == 404

    async def test_orphaned_orders_empty(self, client, make_product):
        await self._place(client, make_product)

        response = await client.get("/admin/orders/orphaned")

        assert response.status_code == 200
        assert response.json() == []

    async def test_search_orders(self, client, make_product):
        await self._place(client, make_product)
        product = await make_product(stock=5)
        response = await client.post(
            "/orders/", json=checkout_form([cart_line(product, 1)], name="Bilal Ahmed", email="bilal@shop.pk"),
        )
        bilal_number = response.json()["order_number"]

        found = await client.get("/admin/orders/", params={"search": "BILAL"})

        assert [o["order_number"] for o in found.json()] == [bilal_number]

    async def test_order_summary(self, client, make_product):
        await self._place(client, make_product, quantity=2)
        await self._place(client, make_product, quantity=1)

        response = await client.get("/admin/orders/summary")

        assert response.status_code == 200
        summary = response.json()
        assert summary["order_count"] == 2
        assert summary["unique_customers"] == 1
        assert summary["cancelled_count"] == 0
        assert summary["top_city"] == "Skardu"
        assert summary["top_city_share"] == 100
        assert summary["average_order_value"] == summary["total_revenue"] / 2


class TestInventoryRoutes:
    """Test cases for admin stock management"""

    async def test_inventory_views(self, client, make_product):
        await make_product(name="Walnuts", stock=0)
        await make_product(name="Almonds", stock=3)
        await make_product(name="Apricot Jam", stock=30)

        everything = await client.get("/admin/inventory/")
        low = await client.get("/admin/inventory/low-stock")
        out = await client.get("/admin/inventory/out-of-stock")

        assert [p["name"] for p in everything.json()] == ["Almonds", "Apricot Jam", "Walnuts"]
        assert [p["name"] for p in low.json()] == ["Almonds"]
        assert [p["name"] for p in out.json()] == ["Walnuts"]

    async def test_set_stock(self, client, make_product, stock_of):
        product = await make_product(stock=3)

        response = await client.put(f"/admin/inventory/{product.id}/stock", json={"stock": 25})

        assert response.status_code == 200
        assert response.json()["stock"] == 25
        assert await stock_of(product.id) == 25

    async def test_set_negative_stock(self, client, make_product, stock_of):
        product = await make_product(stock=3)

        response = await client.put(f"/admin/inventory/{product.id}/stock", json={"stock": -4})

        assert response.status_code == 422
        assert await stock_of(product.id) == 3

    async def test_set_stock_unknown_product(self, client):
        response = await client.put("/admin/inventory/999/stock", json={"stock": 4})

        assert response.status_code == 404
        assert response.json()["detail"] == "Product not found"

    async def test_adjust_stock(self, client, make_product, stock_of):
        product = await make_product(stock=3)

        up = await client.post(f"/admin/inventory/{product.id}/adjust", json={"delta": 2})
        down = await client.post(f"/admin/inventory/{product.id}/adjust", json={"delta": -9})

        assert up.json()["stock"] == 5
        assert down.json()["stock"] == 0
        assert await stock_of(product.id) == 0


class TestCatalogRoutes:
    async def test_list_active_products(self, client, make_product):
        await make_product(name="Almonds")
        await make_product(name="Retired Tea", is_active=False)

        response = await client.get("/products/")

        assert [p["name"] for p in response.json()] == ["Almonds"]

    async def test_get_product_by_slug(self, client, make_product):
        product = await make_product(name="Almonds", slug="almonds")

        response = await client.get("/products/almonds")

        assert response.status_code == 200
        assert response.json()["id"] == product.id
        assert (await client.get("/products/missing")).status_code == 404

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "ok"
