from .tenancy import Franchise, FranchiseLocation, User
from .pricing import (
    Product,
    FranchisePricing,
    VolumeDiscountTier,
    FranchiseDiscount,
    TaxConfiguration,
    ShippingConfiguration,
)
from .inventory import InventoryRecord, InventoryReservation, InventoryTransaction
from .orders import (
    Order,
    OrderItem,
    ApprovalRecord,
    ApprovalThreshold,
    Shipment,
    FulfillmentOrder,
    OrderEvent,
    DocumentSequence,
)
from .communications import Notification
from .billing import Invoice

__all__ = [
    'Franchise', 'FranchiseLocation', 'User',
    'Product', 'FranchisePricing', 'VolumeDiscountTier', 'FranchiseDiscount',
    'TaxConfiguration', 'ShippingConfiguration',
    'InventoryRecord', 'InventoryReservation', 'InventoryTransaction',
    'Order', 'OrderItem', 'ApprovalRecord', 'ApprovalThreshold',
    'Shipment', 'FulfillmentOrder', 'OrderEvent', 'DocumentSequence',
    'Notification',
    'Invoice',
]
