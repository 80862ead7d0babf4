"""Integer masks and C-style numeric prefix parsing."""

from __future__ import annotations

import re
import sys

_WS = " \t\n\v\f\r"
_INT_RE = re.compile(r"[ \t\n\v\f\r]*([+-]?)([0-9]+)")
_FLOAT_RE = re.compile(
    r"[ \t\n\v\f\r]*([+-]?)(?:"
    r"(0x(?:[0-9a-f]+\.?[0-9a-f]*|\.[0-9a-f]+)(?:p[+-]?[0-9]+)?)"
    r"|((?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:e[+-]?[0-9]+)?)"
    r"|(inf(?:inity)?|nan(?:\([0-9a-z_]*\))?)"
    r")",
    re.IGNORECASE,
)

_LONG_MIN = -(1 << 63)
_LONG_MAX = (1 << 63) - 1
_ULONG_MAX = (1 << 64) - 1


def _check_bits(bits: int) -> None:
    if bits not in (32, 64):
        raise ValueError("bits must be 32 or 64")


def uint_mask(bits: int, width: int = 64) -> int:
    """Mask of the low ``bits`` bits within an unsigned integer of ``width`` bits."""
    if width not in (8, 16, 32, 64):
        raise ValueError("width must be 8, 16, 32 or 64")
    if not 0 <= bits <= width:
        raise ValueError(f"bits must be between 0 and {width}")
    return ((1 << width) - 1) >> (width - bits)


def parse_int_prefix(text: str, bits: int = 32) -> tuple[int, str]:
    """Parse a leading signed decimal integer, returning it and the rest of ``text``.

    Out-of-range values saturate at the 64-bit limits and are then wrapped to
    ``bits`` bits. Without digits the result is ``(0, text)``.
    """
    _check_bits(bits)
    match = _INT_RE.match(text)
    if match is None:
        return 0, text
    value = int(match.group(2))
    if match.group(1) == "-":
        value = -value
    value = min(max(value, _LONG_MIN), _LONG_MAX)
    half = 1 << (bits - 1)
    value = ((value + half) % (1 << bits)) - half
    return value, text[match.end():]


def parse_uint_prefix(text: str, bits: int = 32) -> tuple[int, str]:
    """Parse a leading unsigned decimal integer, returning it and the rest of ``text``.

    A leading minus negates modulo 2**64; magnitudes beyond 64 bits saturate.
    The result is then wrapped to ``bits`` bits. Without digits the result is
    ``(0, text)``.
    """
    _check_bits(bits)
    match = _INT_RE.match(text)
    if match is None:
        return 0, text
    magnitude = int(match.group(2))
    if magnitude > _ULONG_MAX:
        value = _ULONG_MAX
    elif match.group(1) == "-":
        value = (-magnitude) % (1 << 64)
    else:
        value = magnitude
    return value % (1 << bits), text[match.end():]


def parse_float_prefix(text: str) -> tuple[float, str]:
    """Parse a leading floating-point number, returning it and the rest of ``text``.

    Accepts decimal and hexadecimal forms, ``inf``/``infinity`` and ``nan``.
    Without a number the result is ``(0.0, text)``.
    """
    match = _FLOAT_RE.match(text)
    if match is None:
        return 0.0, text
    sign, hex_part, dec_part, special = match.groups()
    if hex_part is not None:
        value = float.fromhex(hex_part)
    elif dec_part is not None:
        value = float(dec_part)
    else:
        value = float("nan") if special.lower().startswith("nan") else float("inf")
    if sign == "-":
        value = -value
    return value, text[match.end():]


def double_to_int(value: float) -> int:
    """Truncate ``value`` to an integer after nudging it up by 16 machine epsilons."""
    return int((1.0 + 16.0 * sys.float_info.epsilon) * value)