class DomainException(Exception):
    pass


class ValidationError(DomainException):
    pass


class NotFoundError(DomainException):
    pass


class InsufficientStockError(DomainException):
    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Недостаточно товара {product_id}. Доступно: {available}, требуется: {requested}"
        )


class InvalidTransitionError(DomainException):
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(f"Недопустимый переход статуса: {_value(current)} -> {_value(requested)}")


class SignatureError(DomainException):
    pass


class GatewayError(DomainException):
    """Ошибка платежного шлюза, запрос можно повторить"""
    retryable = True


class DuplicateEventError(DomainException):
    def __init__(self, event_id: str, event_type: str = ""):
        self.event_id = event_id
        self.event_type = event_type
        super().__init__(f"Событие {event_id} уже обработано")


class GenerationError(DomainException):
    pass


def _value(status) -> str:
    return getattr(status, "value", str(status))
