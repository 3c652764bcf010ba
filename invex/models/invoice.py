"""
Invoice Data Models

Pydantic models for the invoice lifecycle and the extraction candidate
returned by the vision service. A candidate becomes a ``ValidatedInvoice``
only after :class:`invex.processors.invoice.validator.InvoiceValidator`
has walked it field by field.
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InvoiceStatus(str, Enum):
    """Invoice processing status"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, target: 'InvoiceStatus') -> bool:
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())


ALLOWED_TRANSITIONS: Dict[InvoiceStatus, FrozenSet[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset({InvoiceStatus.PROCESSING}),
    InvoiceStatus.PROCESSING: frozenset({InvoiceStatus.COMPLETED, InvoiceStatus.FAILED}),
    InvoiceStatus.COMPLETED: frozenset(),
    InvoiceStatus.FAILED: frozenset(),
}


class FieldViolation(BaseModel):
    """A single field-level validation failure"""
    field: str
    message: str
    code: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class Party(BaseModel):
    """Vendor or customer block"""
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    name: Optional[str] = Field(None, max_length=255)
    address: Optional[str] = None
    tax_id: Optional[str] = Field(None, max_length=50)


class InvoiceMetadata(BaseModel):
    """Identifying fields of the invoice document"""
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    invoice_number: Optional[str] = Field(None, max_length=100)
    invoice_date: Optional[str] = Field(None, max_length=20)
    due_date: Optional[str] = Field(None, max_length=20)
    currency: Optional[str] = Field(None, max_length=3)


class Totals(BaseModel):
    """Totals as printed on the invoice"""
    model_config = ConfigDict(extra='forbid')

    subtotal: Optional[Decimal] = Field(None, ge=0)
    tax_amount: Optional[Decimal] = Field(None, ge=0)
    total: Optional[Decimal] = Field(None, ge=0)


class LineItem(BaseModel):
    """Invoice line item"""
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)

    description: str = Field(..., max_length=500)
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal
    amount: Decimal
    tax: Optional[Decimal] = Field(None, ge=0)


class ConfidenceScores(BaseModel):
    """Per-section extraction confidence, 0-100"""
    model_config = ConfigDict(extra='forbid')

    vendor: int = Field(..., ge=0, le=100)
    customer: int = Field(..., ge=0, le=100)
    metadata: int = Field(..., ge=0, le=100)
    totals: int = Field(..., ge=0, le=100)
    line_items: int = Field(..., ge=0, le=100)


class ValidatedInvoice(BaseModel):
    """
    Extraction candidate that passed structural validation.

    Amounts are ``Decimal`` built from the JSON text of each number, so
    reconciliation arithmetic is exact.
    """
    model_config = ConfigDict(extra='forbid')

    vendor: Party
    customer: Party
    metadata: InvoiceMetadata
    totals: Totals
    line_items: List[LineItem] = Field(..., min_length=1)
    confidence: ConfidenceScores
