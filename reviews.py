"""
Review aggregation: append reviews to a product and derive its rating on read.

The average is never cached on the product document; it is recomputed from
the stored reviews every time a product is read.
"""
import os
import logging
from typing import Iterable, List, Optional

from pymongo.database import Database

from database import create_document, oid, to_public
from errors import NotFound, ValidationFailed
from schemas import Review

logger = logging.getLogger(__name__)

REVIEW_MIN_TEXT_LENGTH = int(os.getenv("REVIEW_MIN_TEXT_LENGTH", "3"))
ANONYMOUS = "Anonymous"


def average_rating(ratings: Iterable[int]) -> Optional[float]:
    """Mean rating, or None when there is nothing to average (not zero)."""
    ratings = list(ratings)
    if not ratings:
        return None
    return round(sum(ratings) / len(ratings), 2)


def validate_review(rating, text, min_text_length: int = REVIEW_MIN_TEXT_LENGTH) -> List[dict]:
    errors = []
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        errors.append({"field": "rating", "message": "Rating must be a whole number from 1 to 5"})
    if not isinstance(text, str) or len(text.strip()) < min_text_length:
        errors.append({"field": "text", "message": f"Review must be at least {min_text_length} characters"})
    return errors


def add_review(db: Database, product_id: str, user_id: str, rating: int, text: str,
               min_text_length: int = REVIEW_MIN_TEXT_LENGTH) -> dict:
    product_oid = oid(product_id)
    if product_oid is None or db["product"].find_one({"_id": product_oid}, {"_id": 1}) is None:
        raise NotFound("Product not found")
    errors = validate_review(rating, text, min_text_length)
    if errors:
        raise ValidationFailed(errors)

    review = Review(product_id=str(product_oid), user_id=user_id, rating=rating, text=text.strip())
    review_id = create_document(db, "review", review)
    logger.info("Review %s added to product %s by user %s", review_id, product_id, user_id)
    return to_public(db["review"].find_one({"_id": oid(review_id)}))


def list_reviews(db: Database, product_id: str) -> List[dict]:
    """Reviews newest first, each annotated with the author's display name."""
    docs = list(db["review"].find({"product_id": product_id}).sort([("created_at", -1), ("_id", -1)]))
    user_ids = {oid(d.get("user_id")) for d in docs} - {None}
    names = {}
    if user_ids:
        for user in db["user"].find({"_id": {"$in": list(user_ids)}}, {"name": 1}):
            names[str(user["_id"])] = user.get("name")

    reviews = []
    for doc in docs:
        review = to_public(doc)
        review["author"] = names.get(doc.get("user_id")) or ANONYMOUS
        created = doc.get("created_at")
        review["date"] = created.date().isoformat() if created else None
        reviews.append(review)
    return reviews
