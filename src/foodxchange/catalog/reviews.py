"""
Product reviews and retirement

Pure functions over a loaded product; the façade writes the result back
under a revision check.
"""

from datetime import datetime

from foodxchange.catalog.commands import AddReview
from foodxchange.catalog.models import Product, ProductReview, derive_rating
from foodxchange.kernel.errors import PermissionDenied, ValidationFailure


def add_review(
    product: Product, command: AddReview, reviewer_id: str, now: datetime
) -> Product:
    """
    Append a review and re-derive the rating

    Raises:
        PermissionDenied: If the supplier reviews their own product
        ValidationFailure: If the reviewer already reviewed this product
    """
    if reviewer_id == product.supplier_id:
        raise PermissionDenied(reviewer_id, "review product", "suppliers cannot review their own products")
    if product.review_by(reviewer_id) is not None:
        raise ValidationFailure(f"{reviewer_id} has already reviewed product {product.id}")

    review = ProductReview(
        reviewer_id=reviewer_id,
        created_at=now,
        **command.model_dump(),
    )
    reviews = [*product.reviews, review]
    metrics = product.metrics.model_copy(update={"rating": derive_rating(reviews)})
    return product.model_copy(
        update={"reviews": reviews, "metrics": metrics, "updated_at": now}
    )


def soft_delete(product: Product, actor_id: str, now: datetime) -> Product:
    """
    Retire a product from the catalog (supplier only)

    The document stays in the store; inactive products read as not found.
    """
    if product.supplier_id != actor_id:
        raise PermissionDenied(actor_id, "delete product", f"not the supplier of {product.id}")
    return product.model_copy(
        update={"is_active": False, "deleted_at": now, "updated_at": now}
    )
