from enum import Enum


class TransactionType(str, Enum):
    OPENING_BALANCE = "opening_balance"
    CLOSING_BALANCE = "closing_balance"
    CASH_PAYMENT = "cash_payment"
    CARD_PAYMENT = "card_payment"
    ONLINE_PAYMENT = "online_payment"
    EXPENSE = "expense"
    CASH_HANDOVER = "cash_handover"


PAYMENT_TRANSACTION_TYPES = (
    TransactionType.CASH_PAYMENT,
    TransactionType.CARD_PAYMENT,
    TransactionType.ONLINE_PAYMENT,
)

# Balance snapshots may legitimately be zero; money movements may not
BALANCE_TRANSACTION_TYPES = (
    TransactionType.OPENING_BALANCE,
    TransactionType.CLOSING_BALANCE,
)

PAYMENT_METHOD_TRANSACTION_TYPES = {
    "cash": TransactionType.CASH_PAYMENT,
    "card": TransactionType.CARD_PAYMENT,
    "online": TransactionType.ONLINE_PAYMENT,
}
