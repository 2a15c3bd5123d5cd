"""
Test Suite for Bit-Level Codecs
===============================
BitReader, BitWriter and the Elias-Delta integer codec.
"""

from __future__ import annotations

import pytest

from eqr.bitreader import BitReader
from eqr.elias import (
    elias_delta_decode,
    elias_delta_decode_signed,
    elias_delta_encode,
    elias_delta_encode_signed,
    zigzag_encode,
)
from eqr.encoder import BitWriter, Num, Op, Var, parse_expression_items
from eqr.errors import DecodeError, EndOfData


def _bits(text: str) -> BitReader:
    """Reader over a bit string such as ``"0100"`` (zero-padded)."""
    writer = BitWriter()
    for char in text:
        writer.write_bit(int(char))
    return BitReader(writer.to_bytes())


# ═══════════════════════════════════════════════════════════════════════════════
# BIT READER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBitReader:
    """Test the MSB-first bit cursor."""

    def test_read_bits_msb_first(self):
        reader = BitReader(bytes([0b10110100]))
        assert reader.read_bits(3) == 0b101
        assert reader.read_bits(5) == 0b10100

    def test_read_single_bits(self):
        reader = BitReader(bytes([0b10000001]))
        bits = [reader.read_bit() for _ in range(8)]
        assert bits == [1, 0, 0, 0, 0, 0, 0, 1]

    def test_read_across_byte_boundary(self):
        reader = BitReader(bytes([0b00001111, 0b11110000]))
        reader.skip_bits(4)
        assert reader.read_bits(8) == 0xFF
        assert reader.position == 12

    def test_read_32_bits(self):
        reader = BitReader(bytes([0xDE, 0xAD, 0xBE, 0xEF]))
        assert reader.read_bits(32) == 0xDEADBEEF

    def test_peek_does_not_advance(self):
        reader = BitReader(bytes([0b10110100]))
        assert reader.peek_bits(3) == 0b101
        assert reader.peek_bits(3) == 0b101
        assert reader.position == 0
        assert reader.read_bits(3) == 0b101

    def test_peek_failure_restores_cursor(self):
        reader = BitReader(bytes([0xFF]))
        reader.read_bits(4)
        with pytest.raises(EndOfData):
            reader.peek_bits(8)
        assert reader.position == 4
        assert reader.read_bits(4) == 0b1111

    def test_has_remaining_byte_granularity(self):
        reader = BitReader(bytes([0xAA]))
        reader.read_bits(7)
        assert reader.has_remaining()
        reader.read_bit()
        assert not reader.has_remaining()

    def test_read_past_end_raises(self):
        reader = BitReader(bytes([0x00]))
        reader.read_bits(8)
        with pytest.raises(EndOfData) as exc_info:
            reader.read_bit()
        assert exc_info.value.bit_offset == 8

    def test_end_of_data_is_decode_error(self):
        reader = BitReader(b"")
        with pytest.raises(DecodeError):
            reader.read_bit()
        with pytest.raises(EOFError):
            reader.read_bit()

    def test_invalid_widths(self):
        reader = BitReader(bytes(8))
        with pytest.raises(ValueError):
            reader.read_bits(0)
        with pytest.raises(ValueError):
            reader.read_bits(33)

    def test_start_offset(self):
        reader = BitReader(bytes([0x00, 0x00, 0b00000011]), start_offset_bits=22)
        assert reader.byte_pos == 2
        assert reader.bit_pos == 6
        assert reader.read_bits(2) == 0b11
        assert reader.remaining_bits == 0

    def test_negative_start_offset_rejected(self):
        with pytest.raises(ValueError):
            BitReader(b"\x00", start_offset_bits=-1)

    def test_total_and_remaining_bits(self):
        reader = BitReader(bytes(3))
        assert reader.total_bits == 24
        reader.skip_bits(5)
        assert reader.remaining_bits == 19


# ═══════════════════════════════════════════════════════════════════════════════
# BIT WRITER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestBitWriter:
    """Test the MSB-first bit accumulator."""

    def test_pads_final_byte_with_zeros(self):
        writer = BitWriter()
        writer.write_bits(0b101, 3)
        assert writer.bit_length == 3
        assert writer.to_bytes() == bytes([0b10100000])

    def test_multi_byte(self):
        writer = BitWriter()
        writer.write_bits(0xABC, 12)
        assert writer.to_bytes() == bytes([0xAB, 0xC0])

    def test_zero_width_write(self):
        writer = BitWriter()
        writer.write_bits(5, 0)
        assert writer.bit_length == 0
        assert writer.to_bytes() == b""

    def test_reader_sees_written_bits(self):
        writer = BitWriter()
        writer.write_bits(0b1, 1)
        writer.write_bits(0b0110, 4)
        writer.write_bits(0b111, 3)
        reader = BitReader(writer.to_bytes())
        assert reader.read_bits(1) == 1
        assert reader.read_bits(4) == 0b0110
        assert reader.read_bits(3) == 0b111

    def test_parse_expression_items(self):
        assert parse_expression_items("(a + 12) = b") == [
            Op("("), Var("a"), Op("+"), Num(12), Op(")"), Op("="), Var("b"),
        ]

    def test_parse_expression_items_rejects_unencodable_text(self):
        with pytest.raises(ValueError, match="Cannot encode"):
            parse_expression_items("plus: a + b = 7")


# ═══════════════════════════════════════════════════════════════════════════════
# ELIAS-DELTA TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestEliasDelta:
    """Test unsigned and signed Elias-Delta coding."""

    @pytest.mark.parametrize("bits,expected", [
        ("1", 1),
        ("0100", 2),
        ("0101", 3),
        ("01100", 4),
        ("001010001", 17),
    ])
    def test_known_codes(self, bits, expected):
        assert elias_delta_decode(_bits(bits)) == expected

    def test_encoder_emits_known_code(self):
        writer = BitWriter()
        elias_delta_encode(writer, 17)
        assert writer.bit_length == 9
        reader = BitReader(writer.to_bytes())
        assert reader.read_bits(9) == 0b001010001

    def test_unsigned_round_trip(self):
        values = list(range(1, 1100)) + [2**16, 2**19 + 12345, 2**20 - 1]
        writer = BitWriter()
        for value in values:
            elias_delta_encode(writer, value)
        reader = BitReader(writer.to_bytes())
        assert [elias_delta_decode(reader) for _ in values] == values

    def test_unsigned_rejects_zero(self):
        with pytest.raises(ValueError):
            elias_delta_encode(BitWriter(), 0)

    def test_signed_zero_uses_flag(self):
        writer = BitWriter()
        elias_delta_encode_signed(writer, 0)
        assert writer.bit_length == 1
        assert elias_delta_decode_signed(BitReader(writer.to_bytes())) == 0

    def test_signed_minus_one(self):
        # flag 1, zig-zag 1 -> "1"
        assert elias_delta_decode_signed(_bits("11")) == -1

    def test_signed_round_trip(self):
        values = list(range(-600, 600)) + [-2**19, 2**19 - 1, -777777, 424242]
        writer = BitWriter()
        for value in values:
            elias_delta_encode_signed(writer, value)
        reader = BitReader(writer.to_bytes())
        assert [elias_delta_decode_signed(reader) for _ in values] == values

    def test_zigzag_mapping(self):
        assert [zigzag_encode(v) for v in (0, -1, 1, -2, 2)] == [0, 1, 2, 3, 4]

    def test_truncated_code_raises(self):
        # two leading zeros promise a 3-bit length that never arrives
        reader = BitReader(bytes([0b00000000]))
        with pytest.raises(EndOfData):
            elias_delta_decode(reader)
