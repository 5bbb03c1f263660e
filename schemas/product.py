from pydantic import BaseModel, Field
from typing import Optional


class ProductOut(BaseModel):
    id: int
    name: str
    slug: str
    category: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    price: float
    stock: int
    is_active: bool

    class Config:
        from_attributes = True


class StockSet(BaseModel):
    stock: int = Field(ge=0)


class StockAdjust(BaseModel):
    delta: int


class StockDeduction(BaseModel):
    product_id: int
    success: bool
    new_stock: Optional[int] = None
    error: Optional[str] = None


class StockUpdateResult(BaseModel):
    product_id: int
    success: bool
    stock: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
