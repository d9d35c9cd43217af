from enum import Enum


class TableStatus(str, Enum):
    EMPTY = "empty"
    OCCUPIED = "occupied"
    ORDERING = "ordering"
    DINING = "dining"
    PAYMENT_PENDING = "payment_pending"
    COMPLETED = "completed"


class CartOperation(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    SET_QUANTITY = "set_quantity"
