"""
Instrument name parsing.

Derive option names are hyphen-delimited: CCY-EXPIRY-STRIKE-SIDEFLAG,
e.g. ETH-20240315-3000-C.
"""

from typing import Optional

from whaleflow.core.models import OptionSide, ParsedInstrument


def parse_instrument(name: Optional[str]) -> ParsedInstrument:
    """
    Decompose an instrument name into currency, expiry, strike and side.

    Names with fewer than 4 segments degrade to an instrument with empty
    expiry/strike and UNKNOWN side. Any side flag other than "C" maps to PUT.

    Args:
        name: Instrument identifier from the feed

    Returns:
        ParsedInstrument (never raises)
    """
    parts = (name or "").split("-")

    if len(parts) >= 4:
        return ParsedInstrument(
            currency=parts[0],
            expiry=parts[1],
            strike=parts[2],
            side=OptionSide.CALL if parts[3] == "C" else OptionSide.PUT,
        )

    return ParsedInstrument(
        currency=parts[0],
        expiry="",
        strike="",
        side=OptionSide.UNKNOWN,
    )


def perp_instrument_name(currency: str) -> str:
    """Perpetual instrument used as the spot reference for a currency."""
    return f"{currency.upper()}-PERP"


def is_perp_instrument(name: Optional[str]) -> bool:
    return bool(name) and name.upper().endswith("-PERP")
