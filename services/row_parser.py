"""
Row Parser - typed field extraction from spreadsheet rows.

A row is the tuple of cell values produced by openpyxl
(``iter_rows(values_only=True)``). Which column holds which field is described
by the upload's column-mapping payload, parsed once per upload into a
``ColumnMapping``.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from services.errors import ColumnMappingError, RowValidationError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('code', 'price', 'amount', 'owner_id')


class ColumnMapping(BaseModel):
    """1-based column positions of each semantic field (0 = not in the file)."""

    model_config = ConfigDict(extra='ignore', frozen=True)

    owner_id: int = Field(0, ge=0)
    code: int = Field(0, ge=0)
    replace_code: int = Field(0, ge=0)
    brand: int = Field(0, ge=0)
    description: int = Field(0, ge=0)
    price: int = Field(0, ge=0)
    amount: int = Field(0, ge=0)
    comment: int = Field(0, ge=0)

    @field_validator('*', mode='before')
    @classmethod
    def _null_means_absent(cls, value):
        return 0 if value is None or value == '' else value

    @classmethod
    def from_payload(cls, payload: Union[str, bytes, dict, None],
                     has_brand_override: bool = False,
                     upload_id: Optional[int] = None) -> 'ColumnMapping':
        """
        Parse and check a column-mapping payload.

        Args:
            payload: JSON text or already decoded object
            has_brand_override: True if the upload fixes the brand for the whole file
            upload_id: Used for error context only

        Raises:
            ColumnMappingError: Payload is not valid JSON, has invalid positions,
                or misses a required column
        """
        try:
            data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
            if not isinstance(data, dict):
                raise ColumnMappingError(
                    f"Column mapping must be a JSON object, got {type(data).__name__}",
                    upload_id=upload_id
                )
            mapping = cls.model_validate(data)
        except json.JSONDecodeError as e:
            raise ColumnMappingError(f"Malformed column mapping: {e}", upload_id=upload_id) from e
        except ValidationError as e:
            raise ColumnMappingError(
                f"Invalid column mapping: {e.error_count()} invalid field(s)",
                upload_id=upload_id,
                details={'errors': e.errors(include_url=False, include_context=False)}
            ) from e

        missing = [name for name in REQUIRED_COLUMNS if getattr(mapping, name) == 0]
        if not has_brand_override and mapping.brand == 0:
            missing.append('brand')
        if missing:
            raise ColumnMappingError(
                f"Column mapping misses required columns: {', '.join(missing)}",
                upload_id=upload_id,
                details={'missing': missing}
            )
        return mapping


@dataclass(frozen=True)
class RowFields:
    """Typed values extracted from one row."""
    code: str
    brand: str
    replace_code: str
    description: str
    price_default: float
    amount: int
    owner_id: str
    comment: str


def _to_number(text: str, convert):
    # digit separators are not accepted in price lists
    if '_' in text:
        raise ValueError(f"Digit separator in {text!r}")
    return convert(text)


def format_cell_value(value: Any) -> str:
    """Render a cell value the way it reads in the spreadsheet."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


class RowParser:
    """
    Extract ``RowFields`` from a row, stopping at the first bad field.

    Field order and checks:
        brand (the upload-level override wins over the column), code,
        non-empty code and brand, replacement code, description,
        price, amount, owner id (must be non-empty), comment.
    """

    def __init__(self, mapping: ColumnMapping, brand_override: Optional[str] = None):
        self.mapping = mapping
        self.brand_override = (brand_override or '').strip()

    def _read(self, values: Sequence[Any], position: int, row_number: int, message: str) -> str:
        if position > len(values):
            # trailing empty cells are not stored in the sheet
            return ''
        try:
            return format_cell_value(values[position - 1])
        except (TypeError, ValueError) as e:
            logger.debug(f"Row {row_number}: cannot read column {position}: {e}")
            raise RowValidationError(row_number, message) from e

    def _read_optional(self, values: Sequence[Any], position: int, row_number: int,
                       message: str) -> str:
        if position <= 0:
            return ''
        return self._read(values, position, row_number, message)

    def parse(self, values: Sequence[Any], row_number: int) -> RowFields:
        """
        Parse one row.

        Args:
            values: Cell values of the row
            row_number: 1-based sheet row number, used in error messages

        Raises:
            RowValidationError: On the first field that cannot be read or converted
        """
        m = self.mapping

        if self.brand_override:
            brand = self.brand_override
        else:
            brand = self._read(values, m.brand, row_number, 'Invalid brand format')

        code = self._read(values, m.code, row_number, 'Invalid nomenclature code format')
        if not code or not brand:
            raise RowValidationError(row_number, 'Missing nomenclature code or brand')

        replace_code = self._read_optional(values, m.replace_code, row_number,
                                           'Invalid replacement code format')
        description = self._read_optional(values, m.description, row_number,
                                          'Invalid position description format')

        price_text = self._read(values, m.price, row_number, 'Invalid price format')
        try:
            price_default = _to_number(price_text, float)
        except ValueError as e:
            raise RowValidationError(row_number, 'Price is not defined') from e

        amount_text = self._read(values, m.amount, row_number, 'Invalid amount format')
        try:
            amount = _to_number(amount_text, int)
        except ValueError as e:
            raise RowValidationError(row_number, 'Amount is not defined') from e

        owner_id = self._read(values, m.owner_id, row_number, 'Invalid owner identifier format')
        if not owner_id:
            raise RowValidationError(row_number, 'Owner identifier is not defined')

        comment = self._read_optional(values, m.comment, row_number,
                                      'Invalid position comment format')

        return RowFields(
            code=code,
            brand=brand,
            replace_code=replace_code,
            description=description,
            price_default=price_default,
            amount=amount,
            owner_id=owner_id,
            comment=comment
        )
