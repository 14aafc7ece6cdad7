"""
Catalog helpers shared by the category and product routes.
"""
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import UploadFile
from pymongo.database import Database

from database import is_obj_id, to_obj_id
from errors import NotFound, PayloadTooLarge, ValidationFailed
from schemas import Product

PHOTO_MAX_BYTES = 1_000_000
PRODUCTS_PER_PAGE = 6


def slugify(value: Optional[str]) -> str:
    normalized = " ".join(str(value or "").split()).lower()
    ascii_name = unicodedata.normalize("NFKD", normalized).encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_name).strip("-")
    if not slug:
        slug = uuid4().hex
    return slug


def read_photo(photo: Optional[UploadFile]) -> Optional[Dict[str, Any]]:
    """Raw bytes and content type of an uploaded photo; None when nothing was attached."""
    if photo is None or not photo.filename:
        return None
    data = photo.file.read(PHOTO_MAX_BYTES + 1)
    if len(data) > PHOTO_MAX_BYTES:
        raise PayloadTooLarge("Photo must be less than 1MB.")
    if not data:
        return None
    return {"data": data, "content_type": photo.content_type or "application/octet-stream"}


def _parse_price(raw: str) -> float:
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        raise ValidationFailed("Price must be a non-negative number.")
    if not value.is_finite() or value < 0:
        raise ValidationFailed("Price must be a non-negative number.")
    return float(value)


def _parse_quantity(raw: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValidationFailed("Quantity must be a non-negative integer.")
    if value < 0:
        raise ValidationFailed("Quantity must be a non-negative integer.")
    return value


def _parse_shipping(raw: Optional[str]) -> bool:
    return str(raw or "").strip().lower() in ("1", "true", "yes", "on")


def build_product(db: Database, name: Optional[str], description: Optional[str], price: Optional[str],
                  category: Optional[str], quantity: Optional[str], shipping: Optional[str]) -> Product:
    """Validate a product form; every field except shipping must be supplied on create and update."""
    required = [
        (name, "Name is required."),
        (description, "Description is required."),
        (price, "Price is required."),
        (category, "Category is required."),
        (quantity, "Quantity is required."),
    ]
    for value, message in required:
        if value is None or not str(value).strip():
            raise ValidationFailed(message)

    if not is_obj_id(category.strip()):
        raise ValidationFailed("Invalid category id")
    category_id = to_obj_id(category.strip())
    if not db["category"].find_one({"_id": category_id}, {"_id": 1}):
        raise NotFound("Category not found.")

    return Product(
        name=name.strip(),
        slug=slugify(name),
        description=description.strip(),
        price=_parse_price(price),
        category=category_id,
        quantity=_parse_quantity(quantity),
        shipping=_parse_shipping(shipping),
    )
