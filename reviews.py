from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import ProductService, product_display
from database import create_document, get_db, serialize_doc, to_object_id, utcnow
from errors import AlreadyReviewed, Forbidden, NotEligible, NotFound
from schemas import OrderStatus, Review
from security import get_current_user


class ReviewDTO(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str


class ReviewService:
    """Reviews are limited to one per user and product, and only for products the user has received."""

    def __init__(self, db: Database, products: ProductService):
        self.db = db
        self.reviews = db["review"]
        self.products = products

    def _with_author(self, review: Dict[str, Any]) -> Dict[str, Any]:
        author = self.db["user"].find_one({"_id": to_object_id(review["user_id"])})
        data = serialize_doc(review)
        data["user"] = {"id": str(author["_id"]), "username": author.get("username")} if author else None
        return data

    def _get_document(self, review_id: str) -> Dict[str, Any]:
        oid = to_object_id(review_id)
        review = self.reviews.find_one({"_id": oid}) if oid else None
        if not review:
            raise NotFound("Review not found")
        return review

    def for_product(self, product_id: str) -> List[Dict[str, Any]]:
        cursor = self.reviews.find({"product_id": product_id}).sort("created_at", -1)
        return [self._with_author(r) for r in cursor]

    def for_user(self, user_id: str) -> List[Dict[str, Any]]:
        reviews = list(self.reviews.find({"user_id": user_id}).sort("created_at", -1))
        live = self.products.find_many([r["product_id"] for r in reviews])
        return [{**serialize_doc(r), "product": product_display(live.get(r["product_id"]))} for r in reviews]

    def has_received(self, user_id: str, product_id: str) -> bool:
        return self.db["order"].find_one({
            "user_id": user_id,
            "items.product_id": product_id,
            "status": OrderStatus.DELIVERED.value,
        }, {"_id": 1}) is not None

    def create(self, user_id: str, product_id: str, rating: int, comment: str) -> Dict[str, Any]:
        product = self.products.get_document(product_id)
        pid = str(product["_id"])
        if not self.has_received(user_id, pid):
            raise NotEligible()
        if self.reviews.find_one({"user_id": user_id, "product_id": pid}):
            raise AlreadyReviewed()
        review = Review(user_id=user_id, product_id=pid, rating=rating, comment=comment)
        try:
            review_id = create_document(self.db, "review", review)
        except DuplicateKeyError:
            raise AlreadyReviewed()
        return self._with_author(self._get_document(review_id))

    def update(self, review_id: str, user_id: str, rating: int, comment: str) -> Dict[str, Any]:
        review = self._get_document(review_id)
        if review["user_id"] != user_id:
            raise Forbidden("Not authorized")
        self.reviews.update_one(
            {"_id": review["_id"]},
            {"$set": {"rating": rating, "comment": comment, "updated_at": utcnow()}},
        )
        return self._with_author(self._get_document(review_id))

    def delete(self, review_id: str, principal: Dict[str, Any]) -> None:
        review = self._get_document(review_id)
        if review["user_id"] != str(principal["_id"]) and principal.get("role") != "admin":
            raise Forbidden("Not authorized")
        self.reviews.delete_one({"_id": review["_id"]})


def get_review_service(db: Database = Depends(get_db)) -> ReviewService:
    return ReviewService(db, ProductService(db))


router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("/product/{product_id}")
def product_reviews(product_id: str, reviews: ReviewService = Depends(get_review_service)):
    return reviews.for_product(product_id)


@router.get("/user")
def my_reviews(user: Dict[str, Any] = Depends(get_current_user), reviews: ReviewService = Depends(get_review_service)):
    return reviews.for_user(str(user["_id"]))


@router.post("/{product_id}", status_code=201)
def create_review(product_id: str, data: ReviewDTO, user: Dict[str, Any] = Depends(get_current_user),
                  reviews: ReviewService = Depends(get_review_service)):
    return reviews.create(str(user["_id"]), product_id, data.rating, data.comment)


@router.put("/{review_id}")
def update_review(review_id: str, data: ReviewDTO, user: Dict[str, Any] = Depends(get_current_user),
                  reviews: ReviewService = Depends(get_review_service)):
    return reviews.update(review_id, str(user["_id"]), data.rating, data.comment)


@router.delete("/{review_id}")
def delete_review(review_id: str, user: Dict[str, Any] = Depends(get_current_user),
                  reviews: ReviewService = Depends(get_review_service)):
    reviews.delete(review_id, user)
    return {"message": "Review deleted successfully"}
