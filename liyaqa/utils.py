"""
Liyaqa - Request Utilities
Safe parsing helpers for request parameters and payloads
"""
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from liyaqa.exceptions import ValidationError

TWO_PLACES = Decimal('0.01')


def safe_int(value, default=0, min_val=None, max_val=None):
    """
    Safely parse an integer from a request parameter.

    Args:
        value: The value to parse (string or None)
        default: Default value if parsing fails
        min_val: Minimum allowed value (optional)
        max_val: Maximum allowed value (optional)

    Returns:
        int: Parsed integer or default
    """
    try:
        result = int(value) if value is not None else default
    except (ValueError, TypeError):
        result = default

    if min_val is not None:
        result = max(result, min_val)
    if max_val is not None:
        result = min(result, max_val)

    return result


def safe_bool(value, default=False):
    """
    Safely parse a boolean from a request parameter.
    Accepts: true, false, 1, 0, yes, no (case insensitive)
    """
    if value is None:
        return default

    if isinstance(value, bool):
        return value

    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')

    return bool(value)


def get_pagination_params(request, default_limit=50, max_limit=200):
    """
    Get pagination parameters from request.

    Returns:
        tuple: (limit, offset, page)
    """
    limit = safe_int(request.args.get('limit'), default_limit, min_val=1, max_val=max_limit)
    offset = safe_int(request.args.get('offset'), 0, min_val=0)
    page = safe_int(request.args.get('page'), 1, min_val=1)

    # If page is provided but not offset, calculate offset
    if request.args.get('page') and not request.args.get('offset'):
        offset = (page - 1) * limit

    return limit, offset, page


def paginate(query, request, serializer=None, key='items', default_limit=50):
    """Apply pagination params to a query and build the list response body"""
    limit, offset, page = get_pagination_params(request, default_limit=default_limit)
    total = query.order_by(None).count()
    rows = query.offset(offset).limit(limit).all()
    serializer = serializer or (lambda row: row.to_dict())
    return {
        key: [serializer(row) for row in rows],
        'total': total,
        'limit': limit,
        'offset': offset,
        'page': page,
    }


def require_fields(data: dict, fields):
    """Raise ValidationError naming the first missing field"""
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f'{field} is required')


def parse_date(value, field='date'):
    """Parse an ISO date (YYYY-MM-DD); None passes through"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format')


def parse_datetime(value, field='datetime'):
    """Parse an ISO datetime; a trailing Z is accepted and dropped"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith('Z'):
        text = text[:-1]
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'{field} must be an ISO-8601 datetime')
    return parsed.replace(tzinfo=None)


def parse_time(value, field='time'):
    """Parse HH:MM or HH:MM:SS"""
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value))
    except (ValueError, TypeError):
        raise ValidationError(f'{field} must be a time in HH:MM format')


def parse_decimal(value, field='amount', default=None, min_val=None):
    """Parse a money/rate value into a 2-place Decimal"""
    if value is None or value == '':
        if default is None:
            return None
        value = default
    try:
        result = Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if min_val is not None and result < Decimal(str(min_val)):
        raise ValidationError(f'{field} must be at least {min_val}')
    return result


def money(value) -> Decimal:
    """Round to halalas"""
    return Decimal(str(value or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
