import enum


class DocumentType(str, enum.Enum):
    receipt = "receipt"
    invoice = "invoice"
    sales_note = "sales_note"
    credit_note = "credit_note"


class DocumentStatus(str, enum.Enum):
    pending = "pending"
    generated = "generated"
    sent = "sent"
    cancelled = "cancelled"
    error = "error"


class EventStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class EventTopic(str, enum.Enum):
    orders_create = "orders/create"
    orders_cancelled = "orders/cancelled"


class SyncDirection(str, enum.Enum):
    to_external = "to_external"
    to_commerce = "to_commerce"
    bidirectional = "bidirectional"


class SyncSource(str, enum.Enum):
    manual = "manual"
    event = "event"


class SyncStatus(str, enum.Enum):
    success = "success"
    error = "error"


class NotificationType(str, enum.Enum):
    error = "error"
    warning = "warning"
    info = "info"
    success = "success"
