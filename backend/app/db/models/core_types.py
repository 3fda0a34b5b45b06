import enum


class SiteType(str, enum.Enum):
    storage = "STORAGE"
    exit = "EXIT"


class SupplyRisk(str, enum.Enum):
    high = "HIGH"
    medium = "MEDIUM"
    low = "LOW"


class MovementType(str, enum.Enum):
    inbound = "IN"
    outbound = "OUT"
    transfer = "TRANSFER"


class Condition(str, enum.Enum):
    new = "NEW"
    used = "USED"


class OrderStatus(str, enum.Enum):
    pending = "PENDING"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class EventAction(str, enum.Enum):
    inserted = "inserted"
    updated = "updated"
    deleted = "deleted"
