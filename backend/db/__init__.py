# Importing the package registers every table on Base.metadata
from .database import Base  # noqa: F401
from .users import User  # noqa: F401
from .catalog import Customer, Location, Product  # noqa: F401
from .supplier import Supplier  # noqa: F401
from .inventory.stock import StockRecord  # noqa: F401
from .inventory.movement import StockTransaction  # noqa: F401
from .order import Order, OrderItem  # noqa: F401
from .purchase_order import PurchaseOrder, PurchaseOrderItem  # noqa: F401
