from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from trade_ledger.errors import ValidationError


USD = 'USD'

CENT = Decimal('0.01')
PRICE_STEP = Decimal('0.00000001')
ZERO = Decimal('0')


def to_decimal(value, field: str = 'amount') -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f'Invalid {field}')
    if not result.is_finite():
        raise ValidationError(f'Invalid {field}')
    return result

def round_usd(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def round_price(value) -> Decimal:
    return to_decimal(value, 'price').quantize(PRICE_STEP, rounding=ROUND_HALF_UP)
