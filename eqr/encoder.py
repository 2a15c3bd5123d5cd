"""
Payload Encoder
===============
Bit writer and payload builder producing the binary layout consumed by
``PayloadDecoder``.

Usage:
    payload = (
        PayloadBuilder()
        .label(LabelKind.PLUS, "Addition")
        .random_int("a", 1, 9)
        .exercise([Var("a"), Op("+"), Num(2)], tags=[LabelKind.PLUS])
        .build()
    )
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence, Union

from .elias import elias_delta_encode, elias_delta_encode_signed
from .models import LabelKind, StringEncoding

DEFAULT_HEADER_BITS = 22

STRING_TERMINATOR = 0b0000011

ENCODING_SELECTORS = {
    StringEncoding.ASCII: 0b00,
    StringEncoding.UTF8: 0b01,
}

LABEL_SELECTORS = {
    LabelKind.MINUS: 0b00,
    LabelKind.PLUS: 0b01,
    LabelKind.STAR: 0b10,
    LabelKind.MORE_OPERANDS: 0b11,
}

TAG_CODES = {
    LabelKind.MINUS: 0b001,
    LabelKind.PLUS: 0b010,
    LabelKind.STAR: 0b011,
    LabelKind.MORE_OPERANDS: 0b100,
}

OPERATOR_CODES = {
    "+": 0b000,
    "-": 0b001,
    "*": 0b010,
    "/": 0b011,
    "^": 0b100,
    "=": 0b101,
}

EXTENDED_OPERATOR_CODES = {
    "(": 0b1010,
    ")": 0b1011,
}

END_OF_EXPRESSION = 0b110
EXTENDED_OPERATOR = 0b111


class BitWriter:
    """MSB-first bit accumulator."""

    def __init__(self):
        self._bits: list[int] = []

    @property
    def bit_length(self) -> int:
        return len(self._bits)

    def write_bit(self, bit: int) -> None:
        self._bits.append(1 if bit else 0)

    def write_bits(self, value: int, nbits: int) -> None:
        if nbits < 0:
            raise ValueError("nbits must be >= 0")
        for shift in range(nbits - 1, -1, -1):
            self._bits.append((value >> shift) & 1)

    def to_bytes(self) -> bytes:
        """Pack the bits, zero-padding the final byte."""
        out = bytearray()
        for start in range(0, len(self._bits), 8):
            chunk = self._bits[start:start + 8]
            byte = 0
            for bit in chunk:
                byte = (byte << 1) | bit
            byte <<= 8 - len(chunk)
            out.append(byte)
        return bytes(out)


# ─── Expression Items ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Op:
    """Operator or parenthesis."""
    symbol: str


@dataclass(frozen=True)
class Var:
    """Name operand, written as a string."""
    name: str
    encoding: StringEncoding = StringEncoding.ASCII


@dataclass(frozen=True)
class Num:
    """Integer constant operand (sign bit + unsigned magnitude)."""
    value: int


@dataclass(frozen=True)
class RawOperator:
    """Operator with an arbitrary code, for malformed-stream fixtures."""
    code: int
    extended_code: Optional[int] = None


@dataclass(frozen=True)
class UnsupportedConstant:
    """Constant operand with a sub-type the decoder does not render."""
    subtype: int = 0b01


@dataclass(frozen=True)
class ReservedOperand:
    """Operand kind 10 or 11."""
    kind: int = 0b10


ExprItem = Union[Op, Var, Num, RawOperator, UnsupportedConstant, ReservedOperand]

_TEXT_TOKEN = re.compile(r"\d+|[A-Za-z_][A-Za-z0-9_]*|[-+*/^=()]")


def parse_expression_items(text: str) -> list[ExprItem]:
    """Split simple infix text into encoder items (non-negative literals only)."""
    leftover = _TEXT_TOKEN.sub("", text).strip()
    if leftover:
        raise ValueError(f"Cannot encode {leftover!r} in expression {text!r}")
    items: list[ExprItem] = []
    for token in _TEXT_TOKEN.findall(text):
        if token.isdigit():
            items.append(Num(int(token)))
        elif token in OPERATOR_CODES or token in EXTENDED_OPERATOR_CODES:
            items.append(Op(token))
        else:
            items.append(Var(token))
    return items


# ─── Payload Sections ─────────────────────────────────────────────────────────


@dataclass
class _SolutionEntry:
    question: str
    steps: str
    tags: list[LabelKind] = field(default_factory=list)


@dataclass
class _ExerciseEntry:
    items: list[ExprItem]
    tags: list[LabelKind] = field(default_factory=list)
    prefix: Optional[str] = None
    raw_tag_codes: list[int] = field(default_factory=list)


class PayloadBuilder:
    """
    Fluent builder for complete payloads.

    Sections are always emitted in order: opaque header, header entries,
    header end, solutions, solution end, exercises, exercise end.
    """

    def __init__(self, header_bits: int = DEFAULT_HEADER_BITS):
        self.header_bits = header_bits
        self._header_entries: list[tuple] = []
        self._solutions: list[_SolutionEntry] = []
        self._exercises: list[_ExerciseEntry] = []
        self.terminate_exercises = True

    def label(
        self,
        kind: LabelKind,
        text: str,
        encoding: StringEncoding = StringEncoding.ASCII,
    ) -> PayloadBuilder:
        self._header_entries.append(("label", kind, text, encoding))
        return self

    def random_int(self, name: str, minimum: int, maximum: int) -> PayloadBuilder:
        self._header_entries.append(("rand", name, minimum, maximum))
        return self

    def reserved_header(self, subtype: int) -> PayloadBuilder:
        """Header entry with a reserved 4-bit sub-type (no body)."""
        self._header_entries.append(("reserved", subtype))
        return self

    def solution(
        self,
        question: str,
        steps: str,
        tags: Iterable[LabelKind] = (),
    ) -> PayloadBuilder:
        self._solutions.append(_SolutionEntry(question, steps, list(tags)))
        return self

    def exercise(
        self,
        expression: Union[str, Sequence[ExprItem]],
        tags: Iterable[LabelKind] = (),
        prefix: Optional[str] = None,
        raw_tag_codes: Iterable[int] = (),
    ) -> PayloadBuilder:
        if isinstance(expression, str):
            items = parse_expression_items(expression)
        else:
            items = list(expression)
        self._exercises.append(
            _ExerciseEntry(items, list(tags), prefix, list(raw_tag_codes))
        )
        return self

    # ── Serialization ──────────────────────────────────────────────────

    def build(self) -> bytes:
        return self.build_writer().to_bytes()

    def build_writer(self) -> BitWriter:
        writer = BitWriter()
        writer.write_bits(0, self.header_bits)

        for entry in self._header_entries:
            if entry[0] == "label":
                _, kind, text, encoding = entry
                writer.write_bits(0b01, 2)
                writer.write_bits(LABEL_SELECTORS[kind], 2)
                write_string(writer, text, encoding)
            elif entry[0] == "rand":
                _, name, minimum, maximum = entry
                writer.write_bits(0b10, 2)
                writer.write_bits(0b0000, 4)
                write_string(writer, name)
                elias_delta_encode_signed(writer, minimum)
                elias_delta_encode_signed(writer, maximum)
            else:
                writer.write_bits(0b10, 2)
                writer.write_bits(entry[1], 4)
        writer.write_bits(0b00, 2)

        for solution in self._solutions:
            writer.write_bits(0b01, 2)
            writer.write_bits(0b00, 2)
            writer.write_bits(0b00, 2)
            write_ascii(writer, solution.question)
            writer.write_bits(0b00, 2)
            writer.write_bits(0b00, 2)
            write_ascii(writer, solution.steps)
            write_tags(writer, solution.tags)
        writer.write_bits(0b00, 2)

        for exercise in self._exercises:
            writer.write_bits(0b01, 2)
            if exercise.prefix is not None:
                writer.write_bit(1)
                write_string(writer, exercise.prefix)
            else:
                writer.write_bit(0)
            for item in exercise.items:
                write_expression_item(writer, item)
            writer.write_bit(1)
            writer.write_bits(END_OF_EXPRESSION, 3)
            for code in exercise.raw_tag_codes:
                writer.write_bits(code, 3)
            write_tags(writer, exercise.tags)
        if self.terminate_exercises:
            writer.write_bits(0b00, 2)

        return writer


def write_ascii(writer: BitWriter, text: str) -> None:
    for char in text:
        code = ord(char)
        if code >= 0x80 or code == STRING_TERMINATOR:
            raise ValueError(f"Character {char!r} cannot be 7-bit encoded")
        writer.write_bits(code, 7)
    writer.write_bits(STRING_TERMINATOR, 7)


def write_utf8(writer: BitWriter, text: str) -> None:
    for byte in text.encode("utf-8"):
        writer.write_bits(byte, 8)
    writer.write_bits(STRING_TERMINATOR, 8)


def write_string(
    writer: BitWriter,
    text: str,
    encoding: StringEncoding = StringEncoding.ASCII,
) -> None:
    writer.write_bits(ENCODING_SELECTORS[encoding], 2)
    if encoding == StringEncoding.ASCII:
        write_ascii(writer, text)
    else:
        write_utf8(writer, text)


def write_tags(writer: BitWriter, tags: Iterable[LabelKind]) -> None:
    for tag in tags:
        writer.write_bits(TAG_CODES[tag], 3)
    writer.write_bits(0b000, 3)


def write_expression_item(writer: BitWriter, item: ExprItem) -> None:
    match item:
        case Op(symbol=symbol) if symbol in OPERATOR_CODES:
            writer.write_bit(1)
            writer.write_bits(OPERATOR_CODES[symbol], 3)
        case Op(symbol=symbol) if symbol in EXTENDED_OPERATOR_CODES:
            writer.write_bit(1)
            writer.write_bits(EXTENDED_OPERATOR, 3)
            writer.write_bits(EXTENDED_OPERATOR_CODES[symbol], 4)
        case Var(name=name, encoding=encoding):
            writer.write_bit(0)
            writer.write_bits(0b00, 2)
            write_string(writer, name, encoding)
        case Num(value=value):
            if value == 0:
                raise ValueError("Integer constants must be non-zero")
            writer.write_bit(0)
            writer.write_bits(0b01, 2)
            writer.write_bits(0b00, 2)
            writer.write_bit(1 if value < 0 else 0)
            elias_delta_encode(writer, abs(value))
        case RawOperator(code=code, extended_code=extended_code):
            writer.write_bit(1)
            writer.write_bits(code, 3)
            if extended_code is not None:
                writer.write_bits(extended_code, 4)
        case UnsupportedConstant(subtype=subtype):
            writer.write_bit(0)
            writer.write_bits(0b01, 2)
            writer.write_bits(subtype, 2)
        case ReservedOperand(kind=kind):
            writer.write_bit(0)
            writer.write_bits(kind, 2)
        case _:
            raise ValueError(f"Unknown expression item: {item!r}")
