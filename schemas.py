"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.

Fields are snake_case in Python and camelCase on the wire and in the
database (``original_price`` <-> ``originalPrice``).
"""
import base64
import binascii
import os
import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

MAX_IMAGE_BYTES = int(float(os.getenv("MAX_IMAGE_MB", "10")) * 1024 * 1024)
ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")

DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


def validate_image(value: str) -> str:
    """Accept an http(s) URL or a base64 data URI of an allowed image type."""
    value = value.strip()
    if value.startswith(("http://", "https://")):
        return value
    match = DATA_URI_RE.match(value)
    if not match:
        raise ValueError("Image must be a URL or a base64 data URI")
    mime = match.group("mime").lower()
    if mime not in ALLOWED_IMAGE_TYPES:
        raise ValueError(f"Invalid file type: {mime}. Only JPEG, PNG, WebP, and GIF are allowed.")
    try:
        raw = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("Image payload is not valid base64")
    if not raw:
        raise ValueError("Image payload is empty")
    if len(raw) > MAX_IMAGE_BYTES:
        raise ValueError(f"Image exceeds {MAX_IMAGE_BYTES // (1024 * 1024)}MB limit")
    return value


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug


class Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class User(Schema):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., alias="passwordHash", description="bcrypt hash")
    is_admin: bool = Field(False, alias="isAdmin")


class Product(Schema):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    original_price: float = Field(..., ge=0, alias="originalPrice")
    sale_price: float = Field(..., ge=0, alias="salePrice")
    category: str = Field(..., min_length=1, description="Slug of an existing category")
    sizes: List[str] = []
    colors: List[str] = []
    images: List[str] = Field(..., min_length=1, description="Image URLs or base64 data URIs")
    is_available: bool = Field(True, alias="isAvailable")

    @field_validator("images")
    @classmethod
    def check_images(cls, images):
        return [validate_image(i) for i in images]


class ProductUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    original_price: Optional[float] = Field(None, ge=0, alias="originalPrice")
    sale_price: Optional[float] = Field(None, ge=0, alias="salePrice")
    category: Optional[str] = Field(None, min_length=1)
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    images: Optional[List[str]] = None
    is_available: Optional[bool] = Field(None, alias="isAvailable")

    @field_validator("images")
    @classmethod
    def check_images(cls, images):
        if images is None:
            return images
        if not images:
            raise ValueError("At least one image is required")
        return [validate_image(i) for i in images]


class OrderItem(Schema):
    # Snapshot of the product at order time; ``product`` is the product id.
    product: Optional[str] = None
    product_name: Optional[str] = Field(None, min_length=1, alias="productName")
    price: Optional[float] = Field(None, ge=0)
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None


class Order(Schema):
    customer_name: str = Field(..., min_length=1, alias="customerName")
    customer_phone: str = Field(..., min_length=1, alias="customerPhone")
    alternate_phone: Optional[str] = Field(None, alias="alternatePhone")
    customer_address: str = Field(..., min_length=1, alias="customerAddress")
    items: List[OrderItem] = Field(..., min_length=1)
    total_amount: float = Field(..., ge=0, alias="totalAmount")
    status: OrderStatus = "pending"

    @field_validator("customer_name", "customer_phone", "customer_address")
    @classmethod
    def not_blank(cls, value):
        if not value.strip():
            raise ValueError("Field cannot be blank")
        return value


class OrderStatusUpdate(Schema):
    status: OrderStatus


class BulkDeleteConfirmation(Schema):
    confirm: str


class Category(Schema):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = Field(True, alias="isActive")


class CategoryCreate(Schema):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = Field(True, alias="isActive")

    @field_validator("name")
    @classmethod
    def check_name(cls, name):
        if not slugify(name):
            raise ValueError("Category name must contain letters or digits")
        return name.strip()

    @field_validator("image")
    @classmethod
    def check_image(cls, image):
        return validate_image(image) if image else image


class CategoryUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")

    @field_validator("name")
    @classmethod
    def check_name(cls, name):
        if name is not None and not slugify(name):
            raise ValueError("Category name must contain letters or digits")
        return name.strip() if name else name

    @field_validator("image")
    @classmethod
    def check_image(cls, image):
        return validate_image(image) if image else image
