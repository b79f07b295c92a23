"""Cart aggregate tests."""

import pytest

from errors import Conflict, InsufficientStock, InvalidArgument, NotFound, ProductNotFound


def _expected_total(cart):
    return round(sum(i["price"] * i["quantity"] for i in cart["items"]), 2)


class TestCartLifecycle:
    def test_cart_created_on_first_access(self, db, carts):
        cart = carts.get("user-1")
        assert cart["items"] == []
        assert cart["total"] == 0
        carts.get("user-1")
        assert db["cart"].count_documents({"user_id": "user-1"}) == 1

    def test_add_snapshots_price(self, db, make_product, carts):
        product = make_product(name="Mug", price=7.5, stock=5)
        carts.add("user-1", str(product["_id"]), 2)
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"price": 9.0}})

        cart = carts.add("user-1", str(product["_id"]), 1)

        assert cart["items"][0]["quantity"] == 3
        assert cart["items"][0]["price"] == 7.5
        assert cart["total"] == pytest.approx(22.5)
        assert cart["items"][0]["product"] == {"id": str(product["_id"]), "name": "Mug",
                                               "image_url": product["image_url"]}

    def test_add_is_additive_and_checked_against_stock(self, make_product, carts):
        product = make_product(name="Chair", stock=4)
        carts.add("user-1", str(product["_id"]), 3)

        with pytest.raises(InsufficientStock) as exc:
            carts.add("user-1", str(product["_id"]), 2)

        assert exc.value.items == ["Chair"]
        assert "Already in cart: 3" in exc.value.message
        assert carts.get("user-1")["items"][0]["quantity"] == 3

    def test_add_unknown_product(self, carts):
        with pytest.raises(ProductNotFound):
            carts.add("user-1", "64b000000000000000000000", 1)

    def test_add_rejects_non_positive_quantity(self, make_product, carts):
        with pytest.raises(InvalidArgument):
            carts.add("user-1", str(make_product()["_id"]), 0)

    def test_update_sets_absolute_quantity(self, make_product, carts):
        product = make_product(price=2.0, stock=5)
        carts.add("user-1", str(product["_id"]), 4)

        cart = carts.update("user-1", str(product["_id"]), 5)

        assert cart["items"][0]["quantity"] == 5
        assert cart["total"] == 10.0
        with pytest.raises(InsufficientStock):
            carts.update("user-1", str(product["_id"]), 6)

    def test_update_validation(self, make_product, carts):
        in_cart = make_product()
        elsewhere = make_product()
        carts.add("user-1", str(in_cart["_id"]), 1)

        with pytest.raises(InvalidArgument):
            carts.update("user-1", str(in_cart["_id"]), 0)
        with pytest.raises(NotFound):
            carts.update("user-1", str(elsewhere["_id"]), 1)

    def test_remove_is_idempotent(self, make_product, carts):
        product = make_product()
        carts.add("user-1", str(product["_id"]), 1)

        assert carts.remove("user-1", str(product["_id"]))["items"] == []
        assert carts.remove("user-1", str(product["_id"]))["items"] == []

    def test_total_invariant_over_mutations(self, make_product, carts):
        a = make_product(price=1.99, stock=20)
        b = make_product(price=5.25, stock=20)
        c = make_product(price=0.5, stock=20)
        steps = [
            lambda: carts.add("user-1", str(a["_id"]), 3),
            lambda: carts.add("user-1", str(b["_id"]), 1),
            lambda: carts.add("user-1", str(a["_id"]), 2),
            lambda: carts.update("user-1", str(b["_id"]), 4),
            lambda: carts.add("user-1", str(c["_id"]), 7),
            lambda: carts.remove("user-1", str(a["_id"])),
            lambda: carts.update("user-1", str(c["_id"]), 1),
            lambda: carts.clear("user-1"),
            lambda: carts.add("user-1", str(b["_id"]), 2),
        ]
        for step in steps:
            cart = step()
            assert cart["total"] == pytest.approx(_expected_total(cart))
            assert carts.get("user-1")["total"] == pytest.approx(cart["total"])

    def test_stale_write_is_rejected(self, db, make_product, carts):
        product = make_product(stock=10)
        carts.add("user-1", str(product["_id"]), 1)
        stale = carts.get_or_create("user-1")
        carts.add("user-1", str(product["_id"]), 1)

        stale["items"] = []
        with pytest.raises(Conflict):
            carts._save(stale)
        assert db["cart"].find_one({"user_id": "user-1"})["items"][0]["quantity"] == 2


class TestCartApi:
    def test_requires_authentication(self, client):
        assert client.get("/cart").status_code == 401

    def test_cart_endpoints(self, client, auth, make_user, make_product):
        user = make_user()
        product = make_product(price=4.0, stock=3)
        pid = str(product["_id"])

        response = client.post("/cart/add", json={"productId": pid, "quantity": 2}, headers=auth(user))
        assert response.status_code == 200
        assert response.json()["total"] == 8.0

        response = client.post("/cart/add", json={"productId": pid, "quantity": 2}, headers=auth(user))
        assert response.status_code == 400
        assert response.json()["code"] == "insufficient_stock"

        response = client.put("/cart/update", json={"productId": pid, "quantity": 0}, headers=auth(user))
        assert response.status_code == 400

        response = client.put("/cart/update", json={"productId": pid, "quantity": 3}, headers=auth(user))
        assert response.json()["total"] == 12.0

        response = client.delete(f"/cart/remove/{pid}", headers=auth(user))
        assert response.json()["items"] == []

        client.post("/cart/add", json={"productId": pid, "quantity": 1}, headers=auth(user))
        response = client.delete("/cart/clear", headers=auth(user))
        assert response.json() == {**response.json(), "items": [], "total": 0}

        response = client.post("/cart/add", json={"productId": "nope", "quantity": 1}, headers=auth(user))
        assert response.status_code == 404
