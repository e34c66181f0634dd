"""
Normalization primitives shared by the candidate and logo resolvers.

Frequencies snap to one of two broadcast channel grids:

    Band        │ Range (MHz)   │ Step
    ────────────┼───────────────┼────────
    OIRT (low)  │ 65.9 – 74.0   │ 30 kHz
    CCIR (main) │ 74.0 – 108.0  │ 100 kHz

74.0 MHz itself belongs to the main band. Anything outside both ranges has no
channel and disables frequency filtering for that lookup.
"""

import math
import re
from typing import Any, Optional

LOW_BAND_MHZ = (65.9, 74.0)
LOW_BAND_STEP_KHZ = 30
MAIN_BAND_MHZ = (74.0, 108.0)
MAIN_BAND_STEP_KHZ = 100

DEFAULT_BRAND_WORD = "RADIO"

_NON_HEX = re.compile(r'[^0-9A-F]')
_WHITESPACE = re.compile(r'\s+')
_NON_ALNUM = re.compile(r'[\W_]+')
_EPSILON = 1e-9


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_frequency(value: Any) -> Optional[float]:
    """
    Snap a frequency in MHz to the nearest legal channel.

    Returns:
        Channel frequency rounded to 1 kHz, or None when outside both bands
    """
    try:
        mhz = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(mhz):
        return None

    if LOW_BAND_MHZ[0] <= mhz < LOW_BAND_MHZ[1]:
        band_min, band_max = LOW_BAND_MHZ
        step_khz = LOW_BAND_STEP_KHZ
    elif MAIN_BAND_MHZ[0] <= mhz <= MAIN_BAND_MHZ[1]:
        band_min, band_max = MAIN_BAND_MHZ
        step_khz = MAIN_BAND_STEP_KHZ
    else:
        return None

    channel_khz = _round_half_up(mhz * 1000 / step_khz) * step_khz
    channel_mhz = round(channel_khz / 1000, 3)
    if channel_mhz < band_min - _EPSILON or channel_mhz > band_max + _EPSILON:
        return None
    return channel_mhz


def normalize_identifier(value: Any) -> Optional[str]:
    """Uppercase and keep hex digits only; empty means absent."""
    if value is None:
        return None
    cleaned = _NON_HEX.sub('', str(value).upper())
    return cleaned or None


def normalize_name(value: Any, brand_word: str = DEFAULT_BRAND_WORD) -> str:
    """
    Comparable form of a station or logo file name.

    Uppercases, deletes every occurrence of the generic brand word, removes
    whitespace and strips everything that is not a letter or digit.
    """
    text = str(value or '').upper()
    if brand_word:
        text = text.replace(brand_word.upper(), '')
    text = _WHITESPACE.sub('', text)
    return _NON_ALNUM.sub('', text)
