from __future__ import annotations
import re
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

# Each class => one collection: packages, teams, products, orders, users

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_MAX_BYTES = 72


class Team(BaseModel):
    name: str


class Package(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    price: float = Field(gt=0)
    team: str = Field(min_length=1)
    duration: float = Field(gt=0)
    image_url: Optional[str] = None

    @field_validator("team")
    @classmethod
    def team_must_exist(cls, value: str, info: ValidationInfo) -> str:
        teams = (info.context or {}).get("teams")
        if teams is not None and value not in teams:
            raise ValueError("Team selection is required")
        return value


class Product(BaseModel):
    name: str = Field(min_length=1)
    price: float = Field(ge=0)
    description: str = ""
    image_urls: list[str] = Field(default_factory=list)


class CartItem(BaseModel):
    id: str
    name: str
    price: float
    image: Optional[str] = None
    quantity: int = Field(ge=1, default=1)


class BillingDetails(BaseModel):
    full_name: str = Field(min_length=1)
    email: str
    address: str = Field(min_length=1)
    city: str = Field(min_length=1)
    postal_code: str = Field(min_length=1)
    country: str = Field(min_length=1)
    payment_method: Literal["credit", "paypal"] = "credit"
    card_number: Optional[str] = None
    expiry_date: Optional[str] = None
    cvv: Optional[str] = None
    shipping_method: Literal["standard", "express"]

    @field_validator("email")
    @classmethod
    def email_shape(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_RE.match(value):
            raise ValueError("Invalid email")
        return value

    @model_validator(mode="after")
    def card_fields_for_credit(self) -> "BillingDetails":
        if self.payment_method == "credit":
            missing = [f for f in ("card_number", "expiry_date", "cvv") if not getattr(self, f)]
            if missing:
                raise ValueError(f"Card details are required: {', '.join(missing)}")
        return self


class Order(BaseModel):
    id: str
    full_name: str
    email: str
    address: str
    city: str
    postal_code: str
    country: str
    payment_method: str
    card_last4: Optional[str] = None
    shipping_method: str
    items: list[CartItem]
    total: float = Field(ge=0)
    created_at: datetime
    status: str = "pending"
    notification_status: Literal["pending", "sent", "failed"] = "pending"


class UserProfile(BaseModel):
    email: str


class Credentials(BaseModel):
    email: str
    password: str = Field(min_length=6)

    @field_validator("email")
    @classmethod
    def email_shape(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_RE.match(value):
            raise ValueError("Invalid email")
        return value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # bcrypt only looks at the first 72 bytes
        if len(value.encode()) > PASSWORD_MAX_BYTES:
            raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes")
        return value
