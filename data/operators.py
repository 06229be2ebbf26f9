"""
Operator lookup tables.

Labels cells in export digests with their network operator and country.
Keys are numeric: trace records carry mcc/mnc as integers, so a two-digit
mnc such as ``01`` and a three-digit one such as ``001`` both become 1.
Where that is ambiguous for a country, the three-digit form is listed.
"""

from __future__ import annotations

from typing import NamedTuple


class Country(NamedTuple):
    code: str
    name: str


# =============================================================================
# Mobile Country Codes
# =============================================================================

COUNTRIES: dict[int, Country] = {
    # Andean region and neighbours
    732: Country('CO', 'Colombia'),
    734: Country('VE', 'Venezuela'),
    740: Country('EC', 'Ecuador'),
    716: Country('PE', 'Peru'),
    736: Country('BO', 'Bolivia'),
    714: Country('PA', 'Panama'),
    712: Country('CR', 'Costa Rica'),

    # Southern cone and Brazil
    724: Country('BR', 'Brazil'),
    722: Country('AR', 'Argentina'),
    730: Country('CL', 'Chile'),
    744: Country('PY', 'Paraguay'),
    748: Country('UY', 'Uruguay'),

    # North America
    310: Country('US', 'United States'),
    311: Country('US', 'United States'),
    312: Country('US', 'United States'),
    302: Country('CA', 'Canada'),
    334: Country('MX', 'Mexico'),

    # Europe
    214: Country('ES', 'Spain'),
    234: Country('GB', 'United Kingdom'),
    262: Country('DE', 'Germany'),
    208: Country('FR', 'France'),
}


# =============================================================================
# Network operators (mcc, mnc) -> brand
# =============================================================================

OPERATORS: dict[tuple[int, int], str] = {
    # Colombia
    (732, 101): 'Claro CO',
    (732, 103): 'Tigo',
    (732, 111): 'Tigo',
    (732, 123): 'Movistar CO',
    (732, 130): 'Avantel',
    (732, 154): 'Virgin Mobile CO',
    (732, 360): 'WOM CO',

    # Ecuador / Peru / Venezuela
    (740, 0): 'Movistar EC',
    (740, 1): 'Claro EC',
    (716, 6): 'Movistar PE',
    (716, 10): 'Claro PE',
    (716, 17): 'Entel PE',
    (734, 4): 'Movistar VE',
    (734, 6): 'Movilnet',

    # Mexico / US
    (334, 20): 'Telcel',
    (334, 50): 'AT&T MX',
    (310, 260): 'T-Mobile US',
    (310, 410): 'AT&T',
    (311, 480): 'Verizon',

    # Europe
    (214, 1): 'Vodafone ES',
    (214, 7): 'Movistar ES',
    (262, 1): 'Telekom DE',
    (262, 2): 'Vodafone DE',
}


def country_for(mcc: int | None) -> Country | None:
    """Country of a mobile country code."""
    if mcc is None:
        return None
    return COUNTRIES.get(int(mcc))


def operator_name(mcc: int | None, mnc: int | None) -> str | None:
    """Brand name of a network, or None if the network is not listed."""
    if mcc is None or mnc is None:
        return None
    return OPERATORS.get((int(mcc), int(mnc)))


def describe_operator(mcc: int | None, mnc: int | None) -> str | None:
    """Short label such as ``'Claro CO (CO)'``; falls back to the country code."""
    country = country_for(mcc)
    name = operator_name(mcc, mnc)
    if name:
        return f"{name} ({country.code})" if country else name
    return country.code if country else None
