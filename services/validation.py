"""
Валидация входных данных для API и handlers.
"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from database.models import OrderStatus


class OrderItemInput(BaseModel):
    """Позиция заказа: id из меню и количество."""

    menu_item_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0, le=100, description="Количество")


class CreateOrderRequest(BaseModel):
    restaurant_id: int = Field(..., gt=0)
    items: list[OrderItemInput] = Field(..., min_length=1, max_length=50)
    address: Optional[str] = Field(default=None, max_length=500)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    comment: Optional[str] = Field(default=None, max_length=500)

    @field_validator("address", "comment")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class TransitionRequest(BaseModel):
    status: OrderStatus


class AssignCourierRequest(BaseModel):
    """Для курьера courier_id не нужен: он берёт заказ себе."""

    courier_id: Optional[int] = Field(default=None, gt=0)


class OrderIdInput(BaseModel):
    """Номер заказа, введённый вручную: «123» или «#123»."""

    order_id: int = Field(..., gt=0)

    @classmethod
    def from_string(cls, text: str) -> "OrderIdInput":
        try:
            order_id = int(text.strip().lstrip("#"))
        except ValueError:
            raise ValueError("Номер заказа должен быть числом")
        return cls(order_id=order_id)


def validate_input(model_class: type[BaseModel], text: str, error_message: Optional[str] = None) -> BaseModel:
    """
    Валидировать текст из сообщения бота.

    Raises:
        ValueError: При ошибке валидации (pydantic.ValidationError тоже ValueError)
    """
    try:
        return model_class.from_string(text)
    except ValueError as e:
        if error_message:
            raise ValueError(error_message) from e
        raise
