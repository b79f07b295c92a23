import logging
import math
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

import config
from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from errors import InvalidArgument, ProductNotFound
from schemas import MAX_SECONDARY_IMAGES, Product, items_total
from security import require_admin

logger = logging.getLogger(__name__)

SORT_OPTIONS = {
    "price-asc": [("price", ASCENDING)],
    "price-desc": [("price", DESCENDING)],
    "name-asc": [("name", ASCENDING)],
    "name-desc": [("name", DESCENDING)],
    "newest": [("created_at", DESCENDING)],
}
DEFAULT_SORT = "newest"


class ProductDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str
    price: float
    category: str
    stock: int = 0
    featured: bool = False
    image_url: Optional[str] = Field(None, alias="imageUrl")
    images: List[str] = []


class ProductUpdateDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None
    stock: Optional[int] = None
    featured: Optional[bool] = None
    image_url: Optional[str] = Field(None, alias="imageUrl")
    images: Optional[List[str]] = None


def build_product(data: Dict[str, Any]) -> Product:
    """Validate and normalize raw product fields.

    The primary image falls back to the first secondary image, then to the store placeholder.
    """
    images = list(data.get("images") or [])
    if len(images) > MAX_SECONDARY_IMAGES:
        raise InvalidArgument(f"Maximum of {MAX_SECONDARY_IMAGES} additional images allowed")
    price = data.get("price")
    if price is None or price < 0:
        raise InvalidArgument("Price must be a non-negative number")
    stock = data.get("stock", 0)
    if stock is None or stock < 0:
        raise InvalidArgument("Stock must be a non-negative integer")
    image_url = data.get("image_url") or (images[0] if images else config.PLACEHOLDER_IMAGE)
    try:
        return Product(**{**data, "images": images, "image_url": image_url})
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise InvalidArgument(f"Invalid product {field}: {first.get('msg')}")


def public_product(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    data = serialize_doc(doc)
    if data:
        data.pop("holds", None)
    return data


def product_display(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return None
    return {"id": str(doc["_id"]), "name": doc.get("name"), "image_url": doc.get("image_url")}


class ProductService:
    def __init__(self, db: Database):
        self.db = db
        self.products = db["product"]

    def get_document(self, product_id: str) -> Dict[str, Any]:
        oid = to_object_id(product_id)
        doc = self.products.find_one({"_id": oid}) if oid else None
        if not doc:
            raise ProductNotFound()
        return doc

    def get(self, product_id: str) -> Dict[str, Any]:
        return public_product(self.get_document(product_id))

    def find_many(self, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [oid for oid in (to_object_id(p) for p in product_ids) if oid]
        return {str(doc["_id"]): doc for doc in self.products.find({"_id": {"$in": oids}})}

    def list_products(self, category: Optional[str] = None, featured: Optional[bool] = None,
                      search: Optional[str] = None, min_price: Optional[float] = None,
                      max_price: Optional[float] = None, sort: Optional[str] = None,
                      page: int = 1, limit: int = 0) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if category:
            query["category"] = category
        if featured:
            query["featured"] = True
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]
        if min_price is not None or max_price is not None:
            query["price"] = {}
            if min_price is not None:
                query["price"]["$gte"] = float(min_price)
            if max_price is not None:
                query["price"]["$lte"] = float(max_price)

        total = self.products.count_documents(query)
        cursor = self.products.find(query).sort(SORT_OPTIONS.get(sort or DEFAULT_SORT, SORT_OPTIONS[DEFAULT_SORT]))
        if limit > 0:
            cursor = cursor.skip((page - 1) * limit).limit(limit)
        return {
            "products": [public_product(p) for p in cursor],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit) if limit > 0 else 1,
            },
        }

    def by_category(self, category: str) -> List[Dict[str, Any]]:
        return [public_product(p) for p in self.products.find({"category": category})]

    def search(self, text: str) -> List[Dict[str, Any]]:
        pattern = re.escape(text)
        query = {"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in ("name", "description", "category")]}
        return [public_product(p) for p in self.products.find(query)]

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        product = build_product(data)
        product_id = create_document(self.db, "product", product)
        logger.info("Created product %s (%s)", product_id, product.name)
        return self.get(product_id)

    def update(self, product_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply a partial update.

        The merged document is validated as a whole, but only the fields the caller sent (and a
        re-derived primary image) are written, so a concurrent stock change is never overwritten.
        """
        current = self.get_document(product_id)
        merged = {k: v for k, v in current.items() if k in Product.model_fields}
        merged.update(changes)
        fields = build_product(merged).model_dump()
        updates = {k: fields[k] for k in changes if k in fields}
        if fields["image_url"] != current.get("image_url"):
            updates["image_url"] = fields["image_url"]
        self.products.update_one(
            {"_id": current["_id"]},
            {"$set": updates | {"updated_at": utcnow()}},
        )
        return self.get(product_id)

    def delete(self, product_id: str) -> None:
        """Delete a product together with its reviews and every cart line referencing it."""
        product = self.get_document(product_id)
        pid = str(product["_id"])
        self.products.delete_one({"_id": product["_id"]})
        reviews = self.db["review"].delete_many({"product_id": pid}).deleted_count
        carts = self._purge_from_carts(pid)
        logger.info("Deleted product %s; removed %d reviews, updated %d carts", pid, reviews, carts)

    def _purge_from_carts(self, product_id: str) -> int:
        carts = self.db["cart"]
        affected = [c["_id"] for c in carts.find({"items.product_id": product_id}, {"_id": 1})]
        if not affected:
            return 0
        carts.update_many(
            {"_id": {"$in": affected}},
            {"$pull": {"items": {"product_id": product_id}}, "$inc": {"version": 1}, "$set": {"updated_at": utcnow()}},
        )
        for cart in carts.find({"_id": {"$in": affected}}):
            # a newer write has already recomputed its own total
            carts.update_one(
                {"_id": cart["_id"], "version": cart["version"]},
                {"$set": {"total": items_total(cart.get("items", []))}},
            )
        return len(affected)

    # Stock holds
    #
    # Checkout takes units under a hold named after its checkout key. The key is recorded on the
    # product in the same write as the decrement, so taking or returning units for one checkout
    # happens at most once however often it is retried. Admin edits set stock directly.
    def reserve_stock(self, product_id: str, quantity: int, hold: str) -> bool:
        oid = to_object_id(product_id)
        doc = self.products.find_one_and_update(
            {"_id": oid, "stock": {"$gte": quantity}, "holds": {"$ne": hold}},
            {"$inc": {"stock": -quantity}, "$push": {"holds": hold}, "$set": {"updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return True
        return self.products.find_one({"_id": oid, "holds": hold}, {"_id": 1}) is not None

    def release_stock(self, product_id: str, quantity: int, hold: str) -> None:
        self.products.update_one(
            {"_id": to_object_id(product_id), "holds": hold},
            {"$inc": {"stock": quantity}, "$pull": {"holds": hold}, "$set": {"updated_at": utcnow()}},
        )

    def clear_holds(self, product_ids: List[str], hold: str) -> None:
        """Forget a hold whose units now belong to a placed order."""
        oids = [oid for oid in (to_object_id(p) for p in product_ids) if oid]
        self.products.update_many({"_id": {"$in": oids}, "holds": hold}, {"$pull": {"holds": hold}})


def get_product_service(db: Database = Depends(get_db)) -> ProductService:
    return ProductService(db)


router = APIRouter(prefix="/products", tags=["products"])


@router.get("")
def list_products(category: Optional[str] = None, featured: Optional[bool] = None, search: Optional[str] = None,
                  minPrice: Optional[float] = None, maxPrice: Optional[float] = None, sort: Optional[str] = None,
                  page: int = Query(1, ge=1), limit: int = Query(0, ge=0),
                  products: ProductService = Depends(get_product_service)):
    return products.list_products(category=category, featured=featured, search=search, min_price=minPrice,
                                  max_price=maxPrice, sort=sort, page=page, limit=limit)


@router.get("/category/{category}")
def list_by_category(category: str, products: ProductService = Depends(get_product_service)):
    return products.by_category(category)


@router.get("/search/{query}")
def search_products(query: str, products: ProductService = Depends(get_product_service)):
    return products.search(query)


@router.get("/{product_id}")
def get_product(product_id: str, products: ProductService = Depends(get_product_service)):
    return products.get(product_id)


@router.post("", status_code=201)
def create_product(data: ProductDTO, user: Dict[str, Any] = Depends(require_admin),
                   products: ProductService = Depends(get_product_service)):
    return products.create(data.model_dump())


@router.put("/{product_id}")
def update_product(product_id: str, data: ProductUpdateDTO, user: Dict[str, Any] = Depends(require_admin),
                   products: ProductService = Depends(get_product_service)):
    return products.update(product_id, data.model_dump(exclude_unset=True))


@router.delete("/{product_id}")
def delete_product(product_id: str, user: Dict[str, Any] = Depends(require_admin),
                   products: ProductService = Depends(get_product_service)):
    products.delete(product_id)
    return {"message": "Product deleted successfully"}
