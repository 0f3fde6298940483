import secrets
from datetime import datetime, timezone
from typing import Optional


def _document_number(prefix: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-XXXXXX"""
    return _document_number("ORD", now)


def generate_purchase_order_number(now: Optional[datetime] = None) -> str:
    """PO-YYYYMMDD-XXXXXX"""
    return _document_number("PO", now)
