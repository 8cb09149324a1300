from __future__ import annotations

__all__ = [
    "DeliveryServiceError",
    "OrderNotFound",
    "ProofNotFound",
    "UpdateValidationError",
    "StorageError",
    "DuplicateOrderError",
    "ImportSourceError",
]


class DeliveryServiceError(Exception):
    """Base class for business errors raised by the services layer."""


class OrderNotFound(DeliveryServiceError):
    def __init__(self, order_id: int) -> None:
        super().__init__(f"order#{order_id} not found")
        self.order_id = order_id


class ProofNotFound(DeliveryServiceError):
    def __init__(self, proof_id: int) -> None:
        super().__init__(f"proof#{proof_id} not found")
        self.proof_id = proof_id


class UpdateValidationError(DeliveryServiceError):
    """A courier update is incomplete; *field* names the missing input."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


class StorageError(DeliveryServiceError):
    """The order store rejected a write."""


class DuplicateOrderError(DeliveryServiceError):
    pass


class ImportSourceError(DeliveryServiceError):
    """The Shopify Admin API could not be read."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
