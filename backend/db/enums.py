import enum


class TransactionType(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"


class TransactionKind(str, enum.Enum):
    """What a ledger row did to the stock record(s) it touched."""

    ADJUSTMENT = "ADJUSTMENT"  # quantity += delta
    TRANSFER = "TRANSFER"  # quantity moved between two locations
    RESERVE = "RESERVE"  # reserved_quantity += n
    UNRESERVE = "UNRESERVE"  # reserved_quantity -= n
    DEDUCT = "DEDUCT"  # quantity -= n and reserved_quantity -= n
    RECEIPT = "RECEIPT"  # quantity += n from a purchase order


class ReferenceType(str, enum.Enum):
    ADJUSTMENT = "ADJUSTMENT"
    TRANSFER = "TRANSFER"
    ORDER = "ORDER"
    PURCHASE_ORDER = "PURCHASE_ORDER"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


class PurchaseOrderStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    RECEIVED = "RECEIVED"
    CANCELED = "CANCELED"


class LocationType(str, enum.Enum):
    WAREHOUSE = "WAREHOUSE"
    STORE = "STORE"
    OFFICE = "OFFICE"
