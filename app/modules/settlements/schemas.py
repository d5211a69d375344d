"""
Blocks shared by the printable data of both invoice kinds
"""
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class InvoiceParty(BaseModel):
    id: UUID
    official_name: Optional[str] = None
    shop_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    logo_url: Optional[str] = None


class InvoiceLineItem(BaseModel):
    description: str
    quantity: int
    unit_price: str
    tax: str
    total_price: str
