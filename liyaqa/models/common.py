"""
Liyaqa - Shared model helpers
"""
import json
import uuid
from decimal import Decimal


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def safe_json_loads(value, default=None):
    """Safely parse JSON, returning default if None or invalid"""
    if default is None:
        default = []
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def iso(value):
    return value.isoformat() if value else None


def decimal_str(value):
    if value is None:
        return None
    return str(Decimal(value).quantize(Decimal('0.01')))
