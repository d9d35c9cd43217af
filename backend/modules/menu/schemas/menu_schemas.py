from typing import Optional

from pydantic import BaseModel, ConfigDict

from core.money import MinorUnits


class MenuItemOut(BaseModel):
    id: int
    name: str
    category: Optional[str] = None
    price: MinorUnits
    is_available: bool

    model_config = ConfigDict(from_attributes=True)
