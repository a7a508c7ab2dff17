"""Destination country normalization for provider requests."""

from typing import Optional

DEFAULT_COUNTRY_CODE = "ZA"

# keys are matched case-insensitively
COUNTRY_CODE_MAP = {
    "south africa": "ZA",
    "sa": "ZA",
    "za": "ZA",
    "rsa": "ZA",
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "us": "US",
    "america": "US",
    "united kingdom": "GB",
    "uk": "GB",
    "gb": "GB",
    "great britain": "GB",
    "england": "GB",
    "canada": "CA",
    "ca": "CA",
    "australia": "AU",
    "au": "AU",
    "germany": "DE",
    "de": "DE",
    "france": "FR",
    "fr": "FR",
    "netherlands": "NL",
    "nl": "NL",
    "nigeria": "NG",
    "ng": "NG",
    "kenya": "KE",
    "ke": "KE",
    "ghana": "GH",
    "gh": "GH",
    "zimbabwe": "ZW",
    "zw": "ZW",
    "botswana": "BW",
    "bw": "BW",
    "namibia": "NA",
    "na": "NA",
    "mozambique": "MZ",
    "mz": "MZ",
}


def normalize_country_code(raw: Optional[str]) -> str:
    value = str(raw or "").strip()
    code = COUNTRY_CODE_MAP.get(value) or COUNTRY_CODE_MAP.get(value.lower())
    if not code and len(value) == 2 and value.isalpha():
        code = value.upper()
    if not code:
        return DEFAULT_COUNTRY_CODE
    return code


def order_country_code(order) -> str:
    """Shipping country first, billing country as fallback."""
    raw = getattr(order, "shipping_country", None) or getattr(order, "billing_country", None)
    return normalize_country_code(raw)
