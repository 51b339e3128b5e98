import enum

class OrderStatus(str, enum.Enum):
    pending = "PENDING"
    shipped = "SHIPPED"
    invoiced = "INVOICED"
    cancelled = "CANCELLED"

class PlannedShipmentStatus(str, enum.Enum):
    planned = "PLANNED"
    partially_fulfilled = "PARTIALLY_FULFILLED"
    fulfilled = "FULFILLED"
    cancelled = "CANCELLED"

# Only pending orders can be reopened for shipment edits
EDITABLE_ORDER_STATUSES = {OrderStatus.pending}
