"""
Database Schemas for the Storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the
lowercase of the class name, with CamelCase split by underscores.

Example: class ProductVariant -> collection "product_variant"
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field

# Users

class User(BaseModel):
    name: Optional[str] = None
    email: EmailStr
    hashed_password: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_admin: bool = False

# Catalog

class Category(BaseModel):
    name: str
    slug: str = Field(..., pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$", description="URL-safe identifier")
    description: Optional[str] = None
    image_url: Optional[str] = None

class Specification(BaseModel):
    label: str
    value: str

class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str
    long_description: Optional[str] = None
    price: float = Field(..., ge=0)
    image_url: str
    category_id: Optional[str] = None
    in_stock: bool = True
    is_new: bool = False
    is_featured: bool = False
    specifications: List[Specification] = Field(default_factory=list)

class ProductVariant(BaseModel):
    product_id: str
    name: str = Field(..., min_length=1, description="Variant label, e.g. Black or XL")
    in_stock: bool = True

class Review(BaseModel):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    text: str

# Payment methods, tagged by "type"

class CardPayment(BaseModel):
    type: Literal["card"] = "card"

    def stored(self) -> dict:
        return {"type": self.type}

class BankLinkPayment(BaseModel):
    type: Literal["bank_link"] = "bank_link"
    provider_token: str = Field(..., min_length=1, description="Token issued by the bank-link provider")
    account_id: Optional[str] = None

    def stored(self) -> dict:
        # provider tokens are credentials and stay out of the order document
        return {"type": self.type, "account_id": self.account_id}

PaymentMethod = Annotated[Union[CardPayment, BankLinkPayment], Field(discriminator="type")]

# Orders

class ShippingInfo(BaseModel):
    shipping_address: str = Field(..., min_length=1)
    shipping_city: str = Field(..., min_length=1)
    shipping_state: Optional[str] = None
    shipping_postal_code: str = Field(..., min_length=1)
    shipping_country: str = Field(..., min_length=1)

class OrderItem(BaseModel):
    product_id: str
    name: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    quantity: int = Field(..., ge=1)
    variant: Optional[str] = None

class Order(ShippingInfo):
    user_id: str
    subtotal: float
    tax: float
    shipping: float
    total: float = Field(..., gt=0)
    status: str = Field("pending", description="pending|processing|shipped|delivered|cancelled")
    payment_method: dict
    payment_id: Optional[str] = None
    created_at: Optional[datetime] = None

# Misc

class NewsletterSubscriber(BaseModel):
    email: EmailStr
