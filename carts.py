import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import ProductService, product_display
from database import get_db, utcnow
from errors import Conflict, InsufficientStock, InvalidArgument, NotFound
from schemas import Cart, CartItem, items_total
from security import get_current_user

logger = logging.getLogger(__name__)


class CartItemDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = 1


class CartService:
    """Per-user cart. Lines keep the price seen when the product was first added.

    While a checkout runs, the cart carries its checkout_key. Edits are refused until that order
    is placed (the cart is then emptied first) or the checkout is abandoned.
    """

    def __init__(self, db: Database, products: ProductService):
        self.db = db
        self.carts = db["cart"]
        self.products = products

    def get_or_create(self, user_id: str) -> Dict[str, Any]:
        now = utcnow()
        fresh = Cart(user_id=user_id).model_dump(exclude={"user_id"})
        return self.carts.find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": fresh | {"created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def _settle(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        key = cart.get("checkout_key")
        if key and self.db["order"].find_one({"checkout_key": key, "stock_committed": True}, {"_id": 1}):
            logger.info("Emptying cart %s for placed order %s", cart["_id"], key)
            self.finish_checkout(cart["_id"], key)
            return self.get_or_create(cart["user_id"])
        return cart

    def _load(self, user_id: str) -> Dict[str, Any]:
        cart = self._settle(self.get_or_create(user_id))
        if cart.get("checkout_key"):
            raise Conflict("A checkout for this cart is still in progress")
        return cart

    def _save(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        version = cart.get("version", 0)
        total = items_total(cart["items"])
        result = self.carts.update_one(
            {"_id": cart["_id"], "version": version, "checkout_key": {"$exists": False}},
            {"$set": {"items": cart["items"], "total": total, "updated_at": utcnow()}, "$inc": {"version": 1}},
        )
        if result.matched_count == 0:
            raise Conflict("Your cart was changed by another request, please try again")
        cart["total"] = total
        cart["version"] = version + 1
        return cart

    def present(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        items = cart.get("items", [])
        live = self.products.find_many([i["product_id"] for i in items])
        return {
            "id": str(cart["_id"]),
            "user_id": cart["user_id"],
            "items": [{**i, "product": product_display(live.get(i["product_id"]))} for i in items],
            "total": cart.get("total", 0.0),
            "updated_at": cart.get("updated_at"),
        }

    def get(self, user_id: str) -> Dict[str, Any]:
        return self.present(self._settle(self.get_or_create(user_id)))

    def add(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise InvalidArgument("Quantity must be at least 1")
        product = self.products.get_document(product_id)
        pid = str(product["_id"])
        cart = self._load(user_id)

        existing = next((i for i in cart["items"] if i["product_id"] == pid), None)
        in_cart = existing["quantity"] if existing else 0
        stock = product.get("stock", 0)
        if stock < in_cart + quantity:
            raise InsufficientStock(
                [product["name"]],
                f"Cannot add {quantity} more items. Available stock: {stock}, Already in cart: {in_cart}",
            )

        if existing:
            existing["quantity"] = in_cart + quantity
        else:
            item = CartItem(product_id=pid, name=product["name"], price=product["price"], quantity=quantity)
            cart["items"].append(item.model_dump())
        return self.present(self._save(cart))

    def update(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise InvalidArgument("Quantity must be at least 1")
        product = self.products.get_document(product_id)
        stock = product.get("stock", 0)
        # absolute quantity, not added to what is already in the cart
        if stock < quantity:
            raise InsufficientStock(
                [product["name"]],
                f"Requested quantity exceeds available stock. Maximum available: {stock}",
            )

        cart = self._load(user_id)
        item = next((i for i in cart["items"] if i["product_id"] == str(product["_id"])), None)
        if item is None:
            raise NotFound("Item not found in cart")
        item["quantity"] = quantity
        return self.present(self._save(cart))

    def remove(self, user_id: str, product_id: str) -> Dict[str, Any]:
        cart = self._load(user_id)
        cart["items"] = [i for i in cart["items"] if i["product_id"] != product_id]
        return self.present(self._save(cart))

    def clear(self, user_id: str) -> Dict[str, Any]:
        cart = self._load(user_id)
        cart["items"] = []
        return self.present(self._save(cart))

    def claim(self, cart: Dict[str, Any], checkout_key: str) -> None:
        """Freeze the cart's contents for a checkout."""
        result = self.carts.update_one(
            {"_id": cart["_id"], "version": cart.get("version", 0), "checkout_key": {"$exists": False}},
            {"$set": {"checkout_key": checkout_key}},
        )
        if result.matched_count == 0:
            raise Conflict("Your cart was changed by another request, please try again")

    def release_claim(self, cart_id: Any, checkout_key: str) -> None:
        self.carts.update_one({"_id": cart_id, "checkout_key": checkout_key}, {"$unset": {"checkout_key": ""}})

    def finish_checkout(self, cart_id: Any, checkout_key: str) -> None:
        """Empty a cart whose contents became the order placed under checkout_key."""
        self.carts.update_one(
            {"_id": cart_id, "checkout_key": checkout_key},
            {
                "$set": {"items": [], "total": 0.0, "updated_at": utcnow()},
                "$unset": {"checkout_key": ""},
                "$inc": {"version": 1},
            },
        )


def get_cart_service(db: Database = Depends(get_db)) -> CartService:
    return CartService(db, ProductService(db))


router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("")
def get_cart(user: Dict[str, Any] = Depends(get_current_user), carts: CartService = Depends(get_cart_service)):
    return carts.get(str(user["_id"]))


@router.post("/add")
def add_to_cart(data: CartItemDTO, user: Dict[str, Any] = Depends(get_current_user),
                carts: CartService = Depends(get_cart_service)):
    return carts.add(str(user["_id"]), data.product_id, data.quantity)


@router.put("/update")
def update_cart_item(data: CartItemDTO, user: Dict[str, Any] = Depends(get_current_user),
                     carts: CartService = Depends(get_cart_service)):
    return carts.update(str(user["_id"]), data.product_id, data.quantity)


@router.delete("/remove/{product_id}")
def remove_from_cart(product_id: str, user: Dict[str, Any] = Depends(get_current_user),
                     carts: CartService = Depends(get_cart_service)):
    return carts.remove(str(user["_id"]), product_id)


@router.delete("/clear")
def clear_cart(user: Dict[str, Any] = Depends(get_current_user), carts: CartService = Depends(get_cart_service)):
    return carts.clear(str(user["_id"]))
