"""Import every model module so Base.metadata knows all tables."""

from payapi.models import (  # noqa: F401
    catalog,
    idempotency,
    payment_audit,
    points,
    records,
    user,
)
from payapi.models.base import Base

__all__ = ["Base"]
