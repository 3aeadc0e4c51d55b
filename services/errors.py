"""
Иерархия ошибок бизнес-логики.

Каждая ошибка несёт стабильный ``code`` (для клиентов API и бота) и HTTP-статус.
"""
from typing import Any, Optional


class MarketplaceError(Exception):
    """Базовая ошибка: code + http_status + человекочитаемое сообщение."""

    code = "INTERNAL_ERROR"
    http_status = 500
    default_message = "Внутренняя ошибка"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidTransition(MarketplaceError):
    code = "INVALID_TRANSITION"
    http_status = 409
    default_message = "Недопустимый переход статуса"


class Unauthorized(MarketplaceError):
    """Роль не имеет права на этот переход (ребро графа)."""
    code = "UNAUTHORIZED"
    http_status = 403
    default_message = "Роль не может выполнить это действие"


class Unauthenticated(MarketplaceError):
    code = "UNAUTHENTICATED"
    http_status = 401
    default_message = "Требуется аутентификация"


class Forbidden(MarketplaceError):
    """Ресурс вне области доступа (чужой ресторан, чужой заказ)."""
    code = "FORBIDDEN"
    http_status = 403
    default_message = "Доступ запрещен"


class PreconditionFailed(MarketplaceError):
    code = "PRECONDITION_FAILED"
    http_status = 412
    default_message = "Не выполнено предусловие"


class NotFound(MarketplaceError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Не найдено"


class NotificationDeliveryFailed(MarketplaceError):
    """Только для логов диспетчера — наружу не пробрасывается."""
    code = "NOTIFICATION_DELIVERY_FAILED"
    http_status = 502
    default_message = "Не удалось доставить уведомление"
