from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel
from pydantic.config import ConfigDict

from .utils import round_amount, sanitize_text

MAX_AMOUNT = Decimal("9999999999.99")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("name", mode="before")
    def clean_name(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("email")
    def normalize_email(cls, v: str):
        return v.lower()


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    def normalize_email(cls, v: str):
        return v.lower()


class UserRead(CamelModel):
    id: str
    name: str
    email: str
    role: str = "user"
    created_at: Optional[datetime] = None


class UserAdminRead(UserRead):
    transaction_count: int = 0


class TransactionCreate(CamelModel):
    type: Literal["income", "expense"]
    amount: Decimal = Field(..., gt=Decimal("0"), le=MAX_AMOUNT)
    description: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    date: date_type
    # Only honoured for admins creating a record on behalf of another user
    user_id: Optional[str] = None

    @field_validator("description", "category", mode="before")
    def clean_labels(cls, v):
        return sanitize_text(v) if isinstance(v, str) else v

    @field_validator("amount")
    def positive_after_rounding(cls, v: Decimal):
        if round_amount(v) <= 0:
            raise ValueError("amount must be at least 0.01")
        return v


class TransactionRead(CamelModel):
    id: str
    user_id: str
    type: str
    amount: Decimal
    description: str
    category: str
    date: date_type
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("amount")
    def two_places(self, v: Decimal):
        return str(round_amount(Decimal(v)))


class Pagination(CamelModel):
    current_page: int
    page_size: int
    total_pages: int
    total_count: int
    has_next: bool
    has_prev: bool


class TransactionPage(CamelModel):
    transactions: list[TransactionRead]
    pagination: Pagination


class TransactionEnvelope(CamelModel):
    message: str
    transaction: TransactionRead


class AuthResponse(CamelModel):
    message: str
    user: UserRead
    token: str


class MeResponse(CamelModel):
    user: UserRead
    permissions: list[str] = []


class UserList(CamelModel):
    users: list[UserAdminRead]


class Message(CamelModel):
    message: str
