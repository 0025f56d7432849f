"""
Pricing Service - turn a resolved row into a price insert record.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from backend.models.schema import Nomenclature, PriceListUpload
from services.row_parser import RowFields

DEFAULT_PRICE_BATCH_SIZE = 10000


@dataclass(frozen=True)
class PriceInsertRecord:
    """A fully resolved row of the ``prices`` table."""
    nomenclature_id: int
    price_list_id: int
    upload_id: int
    owner_id: str
    code: str
    replace_code: str
    brand: str
    description: str
    price: float
    price_default: float
    amount: int
    comment: str
    created_by: int
    created_at: datetime

    def to_row(self) -> dict:
        return asdict(self)


class PriceRowBuilder:
    """
    Compute the stored price and build the insert record.

    ``price = price_default * currency_value * markup`` in floating point,
    without rounding. Negative prices and zero amounts are passed through.
    """

    def __init__(self, upload: PriceListUpload, now: Optional[datetime] = None):
        self.upload_id = upload.id
        self.price_list_id = upload.price_list_id
        self.created_by = upload.created_by
        self.currency_value = float(upload.currency_value)
        self.markup = float(upload.markup)
        self.default_comment = upload.comment_price or ''
        self.now = now or datetime.utcnow()

    def compute_price(self, price_default: float) -> float:
        return price_default * self.currency_value * self.markup

    def build(self, entry: Nomenclature, fields: RowFields) -> PriceInsertRecord:
        # code and descriptive fields come from the catalog entry, not the row
        return PriceInsertRecord(
            nomenclature_id=entry.id,
            price_list_id=self.price_list_id,
            upload_id=self.upload_id,
            owner_id=fields.owner_id,
            code=entry.code,
            replace_code=entry.replace_code or '',
            brand=entry.brand,
            description=entry.description or '',
            price=self.compute_price(fields.price_default),
            price_default=fields.price_default,
            amount=fields.amount,
            comment=fields.comment or self.default_comment,
            created_by=self.created_by,
            created_at=self.now
        )
