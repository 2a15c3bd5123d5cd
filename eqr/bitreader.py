"""
Bit Reader
==========
Sequential, peekable bit cursor over a byte buffer.

Bits are read MSB-first within each byte: the first bit read from a byte
is bit 7, the last is bit 0.
"""

from __future__ import annotations

from .errors import EndOfData

MAX_READ_BITS = 32


class BitReader:
    """MSB-first bit cursor with arbitrary-width reads."""

    def __init__(self, data: bytes, start_offset_bits: int = 0):
        if start_offset_bits < 0:
            raise ValueError(
                f"start_offset_bits must be >= 0, got {start_offset_bits}"
            )
        self._data = bytes(data)
        self._total_bits = len(self._data) * 8
        self.byte_pos = start_offset_bits // 8
        self.bit_pos = start_offset_bits % 8

    @property
    def position(self) -> int:
        """Absolute cursor position in bits."""
        return self.byte_pos * 8 + self.bit_pos

    @property
    def total_bits(self) -> int:
        return self._total_bits

    @property
    def remaining_bits(self) -> int:
        return max(0, self._total_bits - self.position)

    def has_remaining(self) -> bool:
        """True while the cursor sits inside the buffer (byte granularity)."""
        return self.byte_pos < len(self._data)

    def read_bit(self) -> int:
        if self.byte_pos >= len(self._data):
            raise EndOfData(self.position)
        bit = (self._data[self.byte_pos] >> (7 - self.bit_pos)) & 1
        self.bit_pos += 1
        if self.bit_pos == 8:
            self.bit_pos = 0
            self.byte_pos += 1
        return bit

    def read_bits(self, n: int) -> int:
        """
        Read ``n`` bits (1..32) as an unsigned integer, MSB-first.

        Raises:
            ValueError: If ``n`` is outside 1..32.
            EndOfData: If the buffer runs out before ``n`` bits are read.
        """
        if not 1 <= n <= MAX_READ_BITS:
            raise ValueError(
                f"Number of bits must be between 1 and {MAX_READ_BITS}, got {n}"
            )
        value = 0
        for _ in range(n):
            value = (value << 1) | self.read_bit()
        return value

    def peek_bits(self, n: int) -> int:
        """Read ``n`` bits and restore the cursor, even when the read fails."""
        saved = (self.byte_pos, self.bit_pos)
        try:
            return self.read_bits(n)
        finally:
            self.byte_pos, self.bit_pos = saved

    def skip_bits(self, n: int) -> None:
        for _ in range(n):
            self.read_bit()

    def __repr__(self) -> str:
        return (
            f"BitReader(position={self.position}, "
            f"total_bits={self._total_bits})"
        )
