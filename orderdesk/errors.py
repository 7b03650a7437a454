class DomainError(Exception):
    """Base class for domain/service errors."""


class NotFoundError(DomainError):
    def __init__(self, order_id: str = "") -> None:
        super().__init__(f"Order not found: {order_id}" if order_id else "Not found")
        self.order_id = order_id


class UnauthorizedError(DomainError):
    pass


class ForbiddenError(DomainError):
    pass


class ValidationError(DomainError):
    def __init__(self, detail):
        super().__init__("Validation error")
        self.detail = detail


class TransportError(DomainError):
    """The order backend could not be reached or rejected the call."""

    def __init__(self, detail):
        super().__init__("Transport error")
        self.detail = detail

    def __str__(self) -> str:
        return str(self.detail)
