"""
Invoice Validator

Validates extraction candidates before anything is persisted:

- Structure: walks the candidate against a field rule table and collects
  field-level violations (presence, type, length caps, ranges)
- Totals: line item amounts plus taxes must reconcile with the invoice
  total within 0.01; a subtotal mismatch is only logged
"""

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from invex.exceptions import ReconciliationError, ValidationError
from invex.models.invoice import FieldViolation, ValidatedInvoice

logger = logging.getLogger(__name__)

TOLERANCE = Decimal('0.01')


@dataclass(frozen=True)
class FieldRule:
    """Constraint for one scalar field"""
    kind: str  # 'string', 'number' or 'integer'
    required: bool = False
    max_length: Optional[int] = None
    minimum: Optional[Decimal] = None
    maximum: Optional[Decimal] = None


_PARTY_RULES = {
    'name': FieldRule('string', max_length=255),
    'address': FieldRule('string'),
    'tax_id': FieldRule('string', max_length=50),
}

SECTION_RULES: Dict[str, Dict[str, FieldRule]] = {
    'vendor': _PARTY_RULES,
    'customer': _PARTY_RULES,
    'metadata': {
        'invoice_number': FieldRule('string', max_length=100),
        'invoice_date': FieldRule('string', max_length=20),
        'due_date': FieldRule('string', max_length=20),
        'currency': FieldRule('string', max_length=3),
    },
    'totals': {
        'subtotal': FieldRule('number', minimum=Decimal('0')),
        'tax_amount': FieldRule('number', minimum=Decimal('0')),
        'total': FieldRule('number', minimum=Decimal('0')),
    },
    'confidence': {
        section: FieldRule('integer', required=True, minimum=Decimal('0'), maximum=Decimal('100'))
        for section in ('vendor', 'customer', 'metadata', 'totals', 'line_items')
    },
}

LINE_ITEM_RULES: Dict[str, FieldRule] = {
    'description': FieldRule('string', required=True, max_length=500),
    'quantity': FieldRule('number', required=True, minimum=Decimal('0')),
    'unit_price': FieldRule('number', required=True),
    'amount': FieldRule('number', required=True),
    'tax': FieldRule('number', minimum=Decimal('0')),
}

# Order in which sections are walked; the first violation found is reported
SECTION_ORDER = ['vendor', 'customer', 'metadata', 'totals', 'line_items', 'confidence']


def to_decimal(value: Any) -> Decimal:
    """Exact decimal for a JSON number (floats go through their repr)"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class InvoiceValidator:
    """
    Validates invoice extraction candidates.

    Usage:
        validator = InvoiceValidator()
        data = validator.validate_structure(candidate)
        validator.validate_totals(data)
    """

    def __init__(self, tolerance: Decimal = TOLERANCE):
        self.tolerance = to_decimal(tolerance)

    def validate(self, candidate: Dict[str, Any]) -> ValidatedInvoice:
        """Structure then totals; returns the validated invoice"""
        data = self.validate_structure(candidate)
        self.validate_totals(data)
        return data

    def validate_structure(self, candidate: Dict[str, Any]) -> ValidatedInvoice:
        """
        Validate the candidate's structure field by field.

        Raises:
            ValidationError: Naming the first failing field; all violations
                are attached as ``error.violations``
        """
        violations, cleaned = self._walk(candidate)

        if violations:
            first = violations[0]
            raise ValidationError(str(first), field=first.field, violations=violations)

        return ValidatedInvoice.model_validate(cleaned)

    def collect_violations(self, candidate: Dict[str, Any]) -> List[FieldViolation]:
        """Every structural violation, without raising"""
        violations, _ = self._walk(candidate)
        return violations

    def validate_totals(self, data: ValidatedInvoice) -> None:
        """
        Reconcile line items against the invoice total.

        No-op when the invoice total is unknown.

        Raises:
            ReconciliationError: If |sum(amount) + sum(tax) - total| > tolerance
        """
        invoice_total = data.totals.total
        if invoice_total is None:
            return

        calculated_subtotal = sum((item.amount for item in data.line_items), Decimal('0'))
        calculated_tax = sum((item.tax or Decimal('0') for item in data.line_items), Decimal('0'))
        calculated_total = calculated_subtotal + calculated_tax

        if abs(calculated_total - invoice_total) > self.tolerance:
            raise ReconciliationError(
                f"Invoice total mismatch: calculated {calculated_total}, expected {invoice_total}"
            )

        invoice_subtotal = data.totals.subtotal
        if invoice_subtotal is not None and abs(calculated_subtotal - invoice_subtotal) > self.tolerance:
            logger.warning(
                f"Invoice subtotal mismatch: calculated {calculated_subtotal}, "
                f"expected {invoice_subtotal} (rounding difference)"
            )

    def _walk(self, candidate: Any) -> Tuple[List[FieldViolation], Dict[str, Any]]:
        violations: List[FieldViolation] = []
        cleaned: Dict[str, Any] = {}

        if not isinstance(candidate, dict):
            violations.append(FieldViolation(field='$', message='must be an object', code='type'))
            return violations, cleaned

        for section in SECTION_ORDER:
            value = candidate.get(section)

            if section == 'line_items':
                cleaned[section] = self._walk_line_items(value, violations)
                continue

            if not isinstance(value, dict):
                violations.append(FieldViolation(
                    field=section,
                    message='is required' if value is None else 'must be an object',
                    code='required' if value is None else 'type'
                ))
                continue

            cleaned[section] = self._walk_fields(section, value, SECTION_RULES[section], violations)

        return violations, cleaned

    def _walk_line_items(self, value: Any, violations: List[FieldViolation]) -> List[Dict[str, Any]]:
        if value is None:
            violations.append(FieldViolation(field='line_items', message='is required', code='required'))
            return []
        if not isinstance(value, list):
            violations.append(FieldViolation(field='line_items', message='must be a list', code='type'))
            return []
        if not value:
            violations.append(FieldViolation(
                field='line_items', message='must contain at least 1 item', code='min_items'
            ))
            return []

        items = []
        for index, item in enumerate(value):
            path = f'line_items.{index}'
            if not isinstance(item, dict):
                violations.append(FieldViolation(field=path, message='must be an object', code='type'))
                continue
            items.append(self._walk_fields(path, item, LINE_ITEM_RULES, violations))
        return items

    def _walk_fields(
        self,
        prefix: str,
        values: Dict[str, Any],
        rules: Dict[str, FieldRule],
        violations: List[FieldViolation]
    ) -> Dict[str, Any]:
        cleaned = {}
        for name, rule in rules.items():
            path = f'{prefix}.{name}'
            value = values.get(name)

            if value is None:
                if rule.required:
                    violations.append(FieldViolation(field=path, message='is required', code='required'))
                cleaned[name] = None
                continue

            checked = self._check_value(path, value, rule, violations)
            cleaned[name] = checked
        return cleaned

    def _check_value(self, path: str, value: Any, rule: FieldRule, violations: List[FieldViolation]) -> Any:
        if rule.kind == 'string':
            if not isinstance(value, str):
                violations.append(FieldViolation(field=path, message='must be a string', code='type'))
                return None
            if rule.required and not value.strip():
                violations.append(FieldViolation(field=path, message='is required', code='required'))
                return None
            if rule.max_length is not None and len(value) > rule.max_length:
                violations.append(FieldViolation(
                    field=path,
                    message=f'must not be longer than {rule.max_length} characters',
                    code='max_length'
                ))
                return None
            return value

        number = self._as_number(value, integer=rule.kind == 'integer')
        if number is None:
            kind = 'an integer' if rule.kind == 'integer' else 'a number'
            violations.append(FieldViolation(field=path, message=f'must be {kind}', code='type'))
            return None

        if rule.minimum is not None and number < rule.minimum:
            violations.append(FieldViolation(
                field=path, message=f'must be at least {rule.minimum}', code='minimum'
            ))
            return None
        if rule.maximum is not None and number > rule.maximum:
            violations.append(FieldViolation(
                field=path, message=f'must not be greater than {rule.maximum}', code='maximum'
            ))
            return None

        return int(number) if rule.kind == 'integer' else number

    def _as_number(self, value: Any, integer: bool = False) -> Optional[Decimal]:
        # bool is an int subclass; True is not a price
        if isinstance(value, bool):
            return None

        if isinstance(value, float) and not math.isfinite(value):
            return None

        if isinstance(value, (int, float, Decimal)):
            number = to_decimal(value)
        elif isinstance(value, str):
            try:
                number = Decimal(value.strip())
            except InvalidOperation:
                return None
            if not number.is_finite():
                return None
        else:
            return None

        if integer and number != number.to_integral_value():
            return None
        return number
