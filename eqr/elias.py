"""
Elias-Delta Integer Codec
=========================
Self-delimiting variable-length integers.

Unsigned layout for a value ``v >= 1`` with ``L = v.bit_length()``:

    (L.bit_length() - 1) zeros | L in binary | v without its leading 1

Signed values carry a one-bit flag first: ``0`` is the value zero, ``1`` is
followed by the unsigned code of the zig-zag mapped value.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .bitreader import BitReader

if TYPE_CHECKING:
    from .encoder import BitWriter


def elias_delta_decode(reader: BitReader) -> int:
    """Decode one unsigned Elias-Delta value (always >= 1)."""
    zeros = 0
    while reader.read_bit() == 0:
        zeros += 1

    gamma = 1
    for _ in range(zeros):
        gamma = (gamma << 1) | reader.read_bit()

    value = 1
    for _ in range(gamma - 1):
        value = (value << 1) | reader.read_bit()
    return value


def elias_delta_decode_signed(reader: BitReader) -> int:
    """Decode a zero-flagged, zig-zag mapped signed value."""
    if reader.read_bit() == 0:
        return 0
    zigzag = elias_delta_decode(reader)
    return (zigzag >> 1) ^ -(zigzag & 1)


def zigzag_encode(value: int) -> int:
    """Map a signed integer onto the unsigned integers (0, -1, 1, -2 ...)."""
    return value * 2 if value >= 0 else -value * 2 - 1


def elias_delta_encode(writer: BitWriter, value: int) -> None:
    """Write ``value`` (>= 1) as an unsigned Elias-Delta code."""
    if value < 1:
        raise ValueError(f"Elias-Delta encodes integers >= 1, got {value}")
    length = value.bit_length()
    length_bits = length.bit_length()
    writer.write_bits(0, length_bits - 1)
    writer.write_bits(length, length_bits)
    writer.write_bits(value, length - 1)


def elias_delta_encode_signed(writer: BitWriter, value: int) -> None:
    """Write ``value`` using the zero flag and zig-zag mapping."""
    if value == 0:
        writer.write_bit(0)
        return
    writer.write_bit(1)
    elias_delta_encode(writer, zigzag_encode(value))
