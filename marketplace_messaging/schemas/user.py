from typing import Optional

from pydantic import BaseModel, field_validator

from marketplace_messaging.schemas.base import CamelModel
from marketplace_messaging.utils.ids import is_field_safe


class UserSummary(CamelModel):

    id: str
    name: Optional[str] = None
    role: Optional[str] = None
    store_name: Optional[str] = None
    profile_image: Optional[str] = None


class ProductSummary(CamelModel):

    id: str
    title: Optional[str] = None
    price: Optional[float] = None
    image: Optional[str] = None


class OrderSummary(CamelModel):

    id: str
    order_number: Optional[str] = None
    total_amount: Optional[float] = None


class TokenPayload(BaseModel):

    sub: str
    exp: Optional[int] = None

    @field_validator("sub")
    @classmethod
    def check_sub(cls, value: str) -> str:
        if not is_field_safe(value):
            raise ValueError("subject is not a usable user id")
        return value
