from typing import Any, Optional

from ..errors import ValidationError
from ..models.order import ALLOWED_STATUSES


def require_order_id(value: Any) -> str:
    order_id = str(value or "").strip()
    if not order_id:
        raise ValidationError("Order ID required")
    return order_id


def normalize_status(value: Any) -> str:
    status = value.lower().strip() if isinstance(value, str) else ""
    if status not in ALLOWED_STATUSES:
        raise ValidationError("Valid status required: " + ", ".join(ALLOWED_STATUSES))
    return status


def optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None
