# core/utils/__init__.py

# Utils package

from core.utils.fees import (
    calculate_platform_fee,
    calculate_detailer_payout,
)

from core.utils.stripe_money import (
    to_minor_units,
    from_minor_units,
    quantize_money,
)

__all__ = [
    # Fees
    'calculate_platform_fee',
    'calculate_detailer_payout',
    # Money
    'to_minor_units',
    'from_minor_units',
    'quantize_money',
]
