"""
Order workflow

Checkout turns the caller's cart into an immutable order. MongoDB gives atomicity per document
only, so the cart -> order -> stock sequence is written as steps that a retry can resume from:

1. every line is checked against live stock before anything is written;
2. the cart is claimed with checkout_key = "<cart id>:<cart version>", freezing its contents;
3. the order is inserted with stock_committed=False under a unique index on checkout_key;
4. each line's stock is taken with a conditional decrement (stock -= qty WHERE stock >= qty) that
   records the checkout_key on the product in the same write, so a line is never taken twice;
5. the order is marked stock_committed and the cart is emptied.

A checkout interrupted anywhere is finished by the next checkout call for that cart, and a cart
edit first empties a cart whose order was already placed. When a line cannot be taken, the held
lines are returned, the unfinished order is deleted and the cart is released.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from carts import CartService
from catalog import ProductService, product_display
from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from errors import Conflict, EmptyCart, Forbidden, InsufficientStock, InvalidArgument, NotFound
from schemas import PAYMENT_METHODS, Address, Order, OrderItem, OrderStatus
from security import get_current_user, require_admin

logger = logging.getLogger(__name__)

# orders whose checkout has not finished taking stock are not orders yet
PLACED = {"stock_committed": {"$ne": False}}


class CheckoutDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shipping_address: Address = Field(..., alias="shippingAddress")
    payment_method: str = Field(..., alias="paymentMethod")
    payment_details: Optional[Dict[str, Any]] = Field(None, alias="paymentDetails")


class OrderStatusDTO(BaseModel):
    status: str


class OrderService:
    def __init__(self, db: Database, products: ProductService, carts: CartService):
        self.db = db
        self.orders = db["order"]
        self.products = products
        self.carts = carts

    # Presentation
    def present(self, order: Dict[str, Any], with_user: bool = False) -> Dict[str, Any]:
        live = self.products.find_many([i["product_id"] for i in order.get("items", [])])
        data = serialize_doc(order)
        data.pop("checkout_key", None)
        data.pop("stock_committed", None)
        data["items"] = [{**i, "product": product_display(live.get(i["product_id"]))} for i in order.get("items", [])]
        if with_user:
            owner = self.db["user"].find_one({"_id": to_object_id(order["user_id"])})
            data["user"] = {"id": str(owner["_id"]), "username": owner.get("username"),
                            "email": owner.get("email")} if owner else None
        return data

    # Queries
    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        return [self.present(o) for o in self.orders.find({"user_id": user_id, **PLACED}).sort("created_at", -1)]

    def list_all(self) -> List[Dict[str, Any]]:
        return [self.present(o, with_user=True) for o in self.orders.find(PLACED).sort("created_at", -1)]

    def _get_document(self, order_id: Any) -> Dict[str, Any]:
        oid = to_object_id(order_id)
        order = self.orders.find_one({"_id": oid, **PLACED}) if oid else None
        if not order:
            raise NotFound("Order not found")
        return order

    def get(self, order_id: str, principal: Dict[str, Any]) -> Dict[str, Any]:
        order = self._get_document(order_id)
        if order["user_id"] != str(principal["_id"]) and principal.get("role") != "admin":
            raise Forbidden("Not authorized")
        return self.present(order)

    # Checkout
    def checkout(self, user_id: str, shipping_address: Address, payment_method: str,
                 payment_details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if payment_method not in PAYMENT_METHODS:
            raise InvalidArgument("Invalid payment method")

        cart = self.carts.get_or_create(user_id)
        pending = cart.get("checkout_key")
        if pending:
            previous = self.orders.find_one({"checkout_key": pending})
            if previous:
                logger.warning("Resuming checkout %s for order %s", pending, previous["_id"])
                return self._complete(previous, cart["_id"])

        items = cart.get("items", [])
        if not items:
            if pending:
                self.carts.release_claim(cart["_id"], pending)
            raise EmptyCart()

        live = self.products.find_many([i["product_id"] for i in items])
        short = []
        for item in items:
            product = live.get(item["product_id"])
            if product is None or product.get("stock", 0) < item["quantity"]:
                short.append(product["name"] if product else item["name"])
        if short:
            if pending:
                self.carts.release_claim(cart["_id"], pending)
            raise InsufficientStock(short)

        checkout_key = pending or f"{cart['_id']}:{cart.get('version', 0)}"
        order = Order(
            user_id=user_id,
            items=[
                OrderItem(product_id=i["product_id"], name=live[i["product_id"]]["name"],
                          price=i["price"], quantity=i["quantity"])
                for i in items
            ],
            total=cart.get("total", 0.0),
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_details=payment_details,
            status=OrderStatus.PENDING,
            checkout_key=checkout_key,
        )

        if not pending:
            self.carts.claim(cart, checkout_key)
        try:
            order_id = create_document(self.db, "order", order)
        except DuplicateKeyError:
            # a concurrent request for the same cart version got there first
            logger.warning("Duplicate checkout %s, joining existing order", checkout_key)
            existing = self.orders.find_one({"checkout_key": checkout_key})
            if existing is None:
                raise Conflict("Checkout was cancelled by another request, please try again")
            return self._complete(existing, cart["_id"])
        except Exception:
            self.carts.release_claim(cart["_id"], checkout_key)
            raise
        return self._complete(self.orders.find_one({"_id": to_object_id(order_id)}), cart["_id"])

    def _complete(self, order: Dict[str, Any], cart_id: Any) -> Dict[str, Any]:
        key = order["checkout_key"]
        if not order.get("stock_committed"):
            for line in order["items"]:
                if not self.products.reserve_stock(line["product_id"], line["quantity"], key):
                    self._abandon(order, cart_id)
                    raise InsufficientStock([line["name"]])
            result = self.orders.update_one(
                {"_id": order["_id"]},
                {"$set": {"stock_committed": True, "updated_at": utcnow()}},
            )
            if result.matched_count == 0:
                # abandoned meanwhile by a concurrent attempt at the same checkout
                self._release(order)
                raise Conflict("Checkout was cancelled by another request, please try again")
            logger.info("Order %s placed by user %s for %.2f (%d lines)", order["_id"], order["user_id"],
                        order["total"], len(order["items"]))

        try:
            self.carts.finish_checkout(cart_id, key)
        except PyMongoError:
            logger.error("Order %s placed but cart %s was not emptied; the next cart access will finish it",
                         order["_id"], cart_id)
            raise
        return self.present(self._get_document(order["_id"]))

    def _abandon(self, order: Dict[str, Any], cart_id: Any) -> None:
        self._release(order)
        self.orders.delete_one({"_id": order["_id"], "stock_committed": False})
        self.carts.release_claim(cart_id, order["checkout_key"])
        logger.info("Checkout %s abandoned, stock returned", order["checkout_key"])

    def _release(self, order: Dict[str, Any]) -> None:
        for line in order["items"]:
            try:
                self.products.release_stock(line["product_id"], line["quantity"], order["checkout_key"])
            except PyMongoError:
                logger.exception("Could not return %d units to product %s", line["quantity"], line["product_id"])

    # Status
    def update_status(self, order_id: str, status: str) -> Dict[str, Any]:
        """Set any status from the enum; the order of transitions is not enforced."""
        try:
            new_status = OrderStatus(status)
        except ValueError:
            raise InvalidArgument("Invalid status")
        order = self._get_document(order_id)
        self.orders.update_one(
            {"_id": order["_id"]},
            {"$set": {"status": new_status.value, "updated_at": utcnow()}},
        )
        if order.get("checkout_key"):
            # checkout is long finished once the order is being handled
            self.products.clear_holds([i["product_id"] for i in order["items"]], order["checkout_key"])
        logger.info("Order %s status %s -> %s", order_id, order.get("status"), new_status.value)
        return self.present(self._get_document(order_id))


def get_order_service(db: Database = Depends(get_db)) -> OrderService:
    products = ProductService(db)
    return OrderService(db, products, CartService(db, products))


router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("")
def list_my_orders(user: Dict[str, Any] = Depends(get_current_user),
                   orders: OrderService = Depends(get_order_service)):
    return orders.list_for_user(str(user["_id"]))


@router.get("/all")
def list_all_orders(user: Dict[str, Any] = Depends(require_admin),
                    orders: OrderService = Depends(get_order_service)):
    return orders.list_all()


@router.get("/{order_id}")
def get_order(order_id: str, user: Dict[str, Any] = Depends(get_current_user),
              orders: OrderService = Depends(get_order_service)):
    return orders.get(order_id, user)


@router.post("", status_code=201)
def create_order(data: CheckoutDTO, user: Dict[str, Any] = Depends(get_current_user),
                 orders: OrderService = Depends(get_order_service)):
    return orders.checkout(str(user["_id"]), data.shipping_address, data.payment_method, data.payment_details)


@router.put("/{order_id}/status")
def update_order_status(order_id: str, data: OrderStatusDTO, user: Dict[str, Any] = Depends(require_admin),
                        orders: OrderService = Depends(get_order_service)):
    return orders.update_status(order_id, data.status)
