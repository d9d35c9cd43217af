from enum import Enum


class EventType(str, Enum):
    NEW_ORDER = "newOrder"
    ORDER_STATUS_UPDATED = "orderStatusUpdated"
    ORDER_DELETED = "orderDeleted"
    TABLE_CLEARED = "tableCleared"
    TABLE_STATUS_UPDATED = "tableStatusUpdated"
    PAYMENT_COMPLETED = "paymentCompleted"
    TRANSACTION_CREATED = "transactionCreated"
    SETTINGS_UPDATED = "settingsUpdated"


class EntityType(str, Enum):
    ORDER = "order"
    TABLE = "table"
    TRANSACTION = "transaction"
    SETTINGS = "settings"


class ClientRole(str, Enum):
    KITCHEN = "kitchen"
    RECEPTION = "reception"
    CUSTOMER = "customer"


# Staff roles see every event; customers only see their own table/order
STAFF_ROLES = {ClientRole.KITCHEN, ClientRole.RECEPTION}
