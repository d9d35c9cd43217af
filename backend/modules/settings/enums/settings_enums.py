from enum import Enum


class SettingKey(str, Enum):
    TABLE_COUNT = "table_count"
    DELIVERY_FEE = "delivery_fee"


MIN_TABLE_COUNT = 1
MAX_TABLE_COUNT = 100
