"""Currency recognition and minor-unit conversion for gateway requests.

Providers take amounts in the currency's smallest unit (paise, cents, yen).
Conversions go through Decimal so that 100.10 never becomes 10009.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Amount = Union[int, float, Decimal, str]

# Active ISO 4217 codes
ISO_4217_CODES = frozenset("""
AED AFN ALL AMD ANG AOA ARS AUD AWG AZN BAM BBD BDT BGN BHD BIF BMD BND BOB
BRL BSD BTN BWP BYN BZD CAD CDF CHF CLP CNY COP CRC CUP CVE CZK DJF DKK DOP
DZD EGP ERN ETB EUR FJD FKP GBP GEL GHS GIP GMD GNF GTQ GYD HKD HNL HTG HUF
IDR ILS INR IQD IRR ISK JMD JOD JPY KES KGS KHR KMF KPW KRW KWD KYD KZT LAK
LBP LKR LRD LSL LYD MAD MDL MGA MKD MMK MNT MOP MRU MUR MVR MWK MXN MYR MZN
NAD NGN NIO NOK NPR NZD OMR PAB PEN PGK PHP PKR PLN PYG QAR RON RSD RUB RWF
SAR SBD SCR SDG SEK SGD SHP SLE SOS SRD SSP STN SVC SYP SZL THB TJS TMT TND
TOP TRY TTD TWD TZS UAH UGX USD UYU UZS VES VND VUV WST XAF XCD XOF XPF YER
ZAR ZMW ZWL
""".split())

ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG",
    "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})

THREE_DECIMAL_CURRENCIES = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})


def normalize_currency(currency: str) -> str:
    """Upper-case and strip a currency code."""
    return (currency or "").strip().upper()


def is_supported_currency(currency: str) -> bool:
    """Check whether a code is a recognized ISO 4217 currency."""
    return normalize_currency(currency) in ISO_4217_CODES


def currency_exponent(currency: str) -> int:
    """Number of decimal places in the currency's minor unit."""
    code = normalize_currency(currency)
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_minor_units(amount: Amount, currency: str) -> int:
    """Convert a major-unit amount to the provider's integer minor units.
    
    Args:
        amount: Amount in major units (e.g. 100.50 INR)
        currency: ISO 4217 code
        
    Returns:
        Integer amount in minor units (e.g. 10050 paise)
    """
    scale = Decimal(10) ** currency_exponent(currency)
    value = Decimal(str(amount)) * scale
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(units: Union[int, str, None], currency: str) -> float:
    """Convert integer minor units back to a major-unit amount."""
    if units is None:
        return 0.0
    scale = Decimal(10) ** currency_exponent(currency)
    return float(Decimal(str(units)) / scale)


def parse_amount(amount: Amount) -> Optional[Decimal]:
    """Parse a major-unit amount, or return None if it is not a finite number."""
    if isinstance(amount, bool):
        return None
    try:
        value = Decimal(str(amount).strip())
    except (ArithmeticError, TypeError, ValueError):
        return None
    return value if value.is_finite() else None
