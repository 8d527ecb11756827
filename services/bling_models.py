from __future__ import annotations

from enum import IntEnum
from typing import List

from pydantic import BaseModel, Field, computed_field


class BlingAccount(IntEnum):
    """The two independently authorized Bling seller accounts."""

    ONE = 1
    TWO = 2

    @classmethod
    def parse(cls, value: object) -> "BlingAccount":
        """Accept 1/2 as int or string; raise ValueError for anything else."""
        try:
            return cls(int(str(value).strip()))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid Bling account: {value!r}") from None


class PaidAccount(BaseModel):
    """A settled accounts-payable bill (conta paga)."""

    # "{bling_id}-{account}"; the two accounts number their bills independently
    id: str
    description: str = Field(min_length=1)
    amount: float = Field(gt=0)
    payment_date: str
    account: BlingAccount
    supplier: str = ""


class RawProductItem(BaseModel):
    """One product line of an outgoing NF-e, before cross-account consolidation."""

    product_name: str = Field(min_length=1)
    quantity: float = Field(gt=0)
    unit_price: float
    account: BlingAccount


class ProductSale(BaseModel):
    """Product aggregated across invoices and accounts."""

    product_name: str
    quantity: float
    total_value: float
    accounts: List[BlingAccount]

    @computed_field
    @property
    def unit_price(self) -> float:
        """Quantity-weighted average price."""
        if self.quantity > 0:
            return self.total_value / self.quantity
        return 0.0
