# core/utils/stripe_money.py


from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP

ZERO_DECIMAL_CURRENCIES = {
    "BIF","CLP","DJF","GNF","JPY","KMF","KRW","MGA","PYG","RWF","UGX","VND","VUV","XAF","XOF","XPF",
}

CENT = Decimal("0.01")


def _normalize_currency(currency: str) -> str:
    return (currency or "USD").upper().strip()


def currency_exponent(currency: str) -> int:
    return 0 if _normalize_currency(currency) in ZERO_DECIMAL_CURRENCIES else 2


def quantize_money(amount, currency: str = "USD") -> Decimal:
    q = Decimal("1") if currency_exponent(currency) == 0 else CENT
    return Decimal(str(amount)).quantize(q, rounding=ROUND_HALF_UP)


def to_minor_units(amount, currency: str = "USD") -> int:
    """
    Major units (Decimal, str or int) -> Stripe integer minor units.

    The amount is first rounded half-up to the currency's precision, so
    Decimal("10.005") becomes 1001 cents. Floats are routed through str()
    to avoid binary artefacts.
    """
    amt = quantize_money(amount, currency)
    if currency_exponent(currency) == 0:
        return int(amt)
    return int(amt * 100)


def from_minor_units(amount_minor: int, currency: str = "USD") -> Decimal:
    if currency_exponent(currency) == 0:
        return Decimal(int(amount_minor))
    return (Decimal(int(amount_minor)) / Decimal("100")).quantize(CENT)
