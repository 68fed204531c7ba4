# core/utils/fees.py

from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings

CENT = Decimal("0.01")


def _percentage_for(detailer=None) -> Decimal:
    if detailer is not None and getattr(detailer, "pricing_model", "") == "subscription":
        return Decimal(str(getattr(settings, "SUBSCRIPTION_PLATFORM_FEE_PERCENTAGE", "3")))
    return Decimal(str(getattr(settings, "PLATFORM_FEE_PERCENTAGE", "15")))


def calculate_platform_fee(total, percentage_override=None, detailer=None) -> Decimal:
    """
    Platform commission on a booking total, rounded half-up to cents.

    percentage_override wins over the detailer's pricing model; subscription
    detailers pay the reduced rate, everybody else the standard one.
    """
    total = Decimal(str(total))
    if percentage_override is not None:
        pct = Decimal(str(percentage_override))
    else:
        pct = _percentage_for(detailer)

    if pct < 0 or pct > 100:
        raise ValueError(f"Platform fee percentage must be between 0 and 100, got {pct}")

    return (total * pct / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_detailer_payout(total, percentage_override=None, detailer=None) -> Decimal:
    total = Decimal(str(total)).quantize(CENT, rounding=ROUND_HALF_UP)
    fee = calculate_platform_fee(total, percentage_override=percentage_override, detailer=detailer)
    return total - fee
