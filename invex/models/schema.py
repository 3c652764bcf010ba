"""
Structured-output schema for invoice extraction.

Every object level sets ``additionalProperties: false`` and lists all of its
keys as required; nullable scalars use the ``[type, "null"]`` form that
strict structured outputs require.
"""

from typing import Any, Dict, List, Optional

SCHEMA_NAME = 'invoice_extraction'

TOP_LEVEL_KEYS: List[str] = ['vendor', 'customer', 'metadata', 'totals', 'line_items', 'confidence']
PARTY_KEYS: List[str] = ['name', 'address', 'tax_id']
METADATA_KEYS: List[str] = ['invoice_number', 'invoice_date', 'due_date', 'currency']
TOTALS_KEYS: List[str] = ['subtotal', 'tax_amount', 'total']
LINE_ITEM_KEYS: List[str] = ['description', 'quantity', 'unit_price', 'amount', 'tax']
CONFIDENCE_KEYS: List[str] = ['vendor', 'customer', 'metadata', 'totals', 'line_items']


def _nullable(json_type: str) -> Dict[str, Any]:
    return {'type': [json_type, 'null']}


def _object(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'type': 'object',
        'additionalProperties': False,
        'required': list(properties.keys()),
        'properties': properties,
    }


def invoice_extraction_schema() -> Dict[str, Any]:
    """Return the JSON schema sent with every extraction request"""
    party = _object({key: _nullable('string') for key in PARTY_KEYS})

    return _object({
        'vendor': party,
        'customer': party,
        'metadata': _object({key: _nullable('string') for key in METADATA_KEYS}),
        'totals': _object({key: _nullable('number') for key in TOTALS_KEYS}),
        'line_items': {
            'type': 'array',
            'items': _object({
                'description': {'type': 'string'},
                'quantity': {'type': 'number'},
                'unit_price': {'type': 'number'},
                'amount': {'type': 'number'},
                'tax': _nullable('number'),
            }),
        },
        'confidence': _object({key: {'type': 'integer'} for key in CONFIDENCE_KEYS}),
    })


def response_format(schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """``response_format`` payload for a strict JSON-schema completion"""
    return {
        'type': 'json_schema',
        'json_schema': {
            'name': SCHEMA_NAME,
            'strict': True,
            'schema': schema if schema is not None else invoice_extraction_schema(),
        },
    }
