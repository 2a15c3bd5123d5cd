"""
Payload Decoder
===============
Deterministic state machine turning a scanned payload into an
``IntermediateRepresentation``.

Phases, each closed by an explicit marker:
    HEADER     labels and random-integer generators (errors propagate)
    SOLUTIONS  worked solutions (errors abort the phase, results kept)
    EXERCISES  exercise templates (errors resynchronize by one bit)

Per-item decoding returns a ``PhaseStep`` whose kind tells the phase loop
whether to keep going, stop cleanly, or treat the item as failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .bitreader import BitReader
from .elias import elias_delta_decode, elias_delta_decode_signed
from .encoder import DEFAULT_HEADER_BITS, STRING_TERMINATOR
from .errors import DecodeError, EndOfData, MalformedEncoding, MalformedHeader
from .models import (
    Anomaly,
    AnomalyType,
    Exercise,
    IntermediateRepresentation,
    LabelKind,
    RandomRange,
    Solution,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPRESSION_CHAR_LIMIT = 500

# ─── Bit Patterns ─────────────────────────────────────────────────────────────

HEADER_END = 0b00
HEADER_LABEL = 0b01
HEADER_FUNCTION = 0b10
FUNCTION_RAND_INT = 0b0000

SOLUTION_PREFIX = 0b01
EXERCISE_PREFIX = 0b01
SECTION_END = 0b00
ITEM_END = 0b000

LABEL_KINDS = {
    0b00: LabelKind.MINUS,
    0b01: LabelKind.PLUS,
    0b10: LabelKind.STAR,
    0b11: LabelKind.MORE_OPERANDS,
}

TAG_KINDS = {
    0b001: LabelKind.MINUS,
    0b010: LabelKind.PLUS,
    0b011: LabelKind.STAR,
    0b100: LabelKind.MORE_OPERANDS,
}

OPERATORS = {
    0b000: " + ",
    0b001: " - ",
    0b010: " * ",
    0b011: " / ",
    0b100: " ^ ",
    0b101: " = ",
}

EXTENDED_OPERATORS = {
    0b1010: " ( ",
    0b1011: " ) ",
}

OP_END_OF_EXPRESSION = 0b110
OP_EXTENDED = 0b111

OPERAND_NAME = 0b00
OPERAND_CONSTANT = 0b01
CONSTANT_INTEGER = 0b00


class DecoderState(Enum):
    """Phase the decoder is currently in."""
    HEADER = "HEADER"
    SOLUTIONS = "SOLUTIONS"
    EXERCISES = "EXERCISES"
    DONE = "DONE"


class StepKind(Enum):
    """Outcome of decoding one solution or exercise."""
    OK = "ok"
    STOP = "stop"
    FAILED = "failed"


@dataclass(frozen=True)
class PhaseStep:
    kind: StepKind
    value: Any = None
    error: Optional[DecodeError] = None

    @classmethod
    def ok(cls, value: Any) -> PhaseStep:
        return cls(StepKind.OK, value)

    @classmethod
    def stop(cls) -> PhaseStep:
        return cls(StepKind.STOP)

    @classmethod
    def failed(cls, error: DecodeError) -> PhaseStep:
        return cls(StepKind.FAILED, error=error)


@dataclass(frozen=True)
class ExpressionText:
    """Decoded expression text and whether an end marker closed it."""
    text: str
    terminated: bool


class PayloadDecoder:
    """
    Decodes one payload. Construct a new decoder per payload; calling
    ``decode`` again restarts from a fresh cursor.
    """

    def __init__(
        self,
        payload: bytes,
        header_bits: int = DEFAULT_HEADER_BITS,
        expression_char_limit: int = DEFAULT_EXPRESSION_CHAR_LIMIT,
    ):
        self.payload = bytes(payload)
        self.header_bits = header_bits
        self.expression_char_limit = expression_char_limit
        self._reset()

    def _reset(self):
        self.state = DecoderState.HEADER
        self.reader = BitReader(self.payload, start_offset_bits=self.header_bits)
        self.labels: dict[LabelKind, str] = {}
        self.rand_generators: dict[str, RandomRange] = {}
        self.solutions: list[Solution] = []
        self.exercises: list[Exercise] = []
        self.anomalies: list[Anomaly] = []

    def decode(self) -> IntermediateRepresentation:
        """
        Decode the payload.

        Raises:
            MalformedHeader: On an unknown header marker.
            DecodeError: On any other failure inside the header phase.
        """
        self._reset()
        logger.debug(
            f"Decoding {len(self.payload)} byte payload "
            f"(header skip {self.header_bits} bits)"
        )

        self.state = DecoderState.HEADER
        self._decode_header()
        logger.info(
            f"Header: {len(self.labels)} labels, "
            f"{len(self.rand_generators)} generators"
        )

        self.state = DecoderState.SOLUTIONS
        self._decode_solution_section()
        logger.info(f"Solutions: {len(self.solutions)} decoded")

        self.state = DecoderState.EXERCISES
        self._decode_exercise_section()
        logger.info(f"Exercises: {len(self.exercises)} decoded")

        self.state = DecoderState.DONE
        return IntermediateRepresentation(
            labels=dict(self.labels),
            rand_generators=dict(self.rand_generators),
            solutions=tuple(self.solutions),
            exercises=tuple(self.exercises),
            anomalies=tuple(self.anomalies),
        )

    # ── Header ─────────────────────────────────────────────────────────

    def _decode_header(self):
        while True:
            offset = self.reader.position
            marker = self.reader.read_bits(2)
            if marker == HEADER_LABEL:
                self._decode_label()
            elif marker == HEADER_FUNCTION:
                subtype = self.reader.read_bits(4)
                if subtype == FUNCTION_RAND_INT:
                    self._decode_rand_int()
                else:
                    self._anomaly(
                        AnomalyType.RESERVED_HEADER_SUBTYPE,
                        f"Reserved header sub-type {subtype:04b} skipped",
                        offset,
                    )
            elif marker == HEADER_END:
                return
            else:
                raise MalformedHeader(marker, offset)

    def _decode_label(self):
        kind = LABEL_KINDS[self.reader.read_bits(2)]
        text = self._decode_string()
        self.labels[kind] = text
        logger.debug(f"Label {kind.value} = {text!r}")

    def _decode_rand_int(self):
        name = self._decode_string()
        minimum = elias_delta_decode_signed(self.reader)
        maximum = elias_delta_decode_signed(self.reader)
        self.rand_generators[name] = RandomRange(min=minimum, max=maximum)
        logger.debug(f"Generator {name} in [{minimum}, {maximum}]")

    # ── Solutions ──────────────────────────────────────────────────────

    def _decode_solution_section(self):
        while self.reader.has_remaining():
            if not self._peek_equals(2, SOLUTION_PREFIX):
                break

            offset = self.reader.position
            step = self._guard(self._decode_solution)
            if step.kind == StepKind.OK:
                self.solutions.append(step.value)
                continue
            if step.kind == StepKind.FAILED:
                logger.warning(
                    f"Solution phase aborted at bit {offset}: {step.error}"
                )
                self._anomaly(
                    AnomalyType.SOLUTION_PHASE_ABORTED,
                    f"Solution phase aborted: {step.error}",
                    offset,
                )
            break

        if self._peek_equals(2, SECTION_END):
            self.reader.skip_bits(2)

    def _decode_solution(self) -> PhaseStep:
        self.reader.skip_bits(2)  # solution prefix
        self.reader.skip_bits(2)  # question prefix
        self.reader.skip_bits(2)  # encoding
        question = self._decode_ascii()

        if not self.reader.has_remaining():
            return PhaseStep.stop()

        self.reader.skip_bits(2)  # steps prefix
        self.reader.skip_bits(2)  # encoding
        steps = self._decode_ascii()
        tags = self._decode_tags()
        self._skip_item_end()

        return PhaseStep.ok(Solution(question=question, steps=steps, tags=tags))

    # ── Exercises ──────────────────────────────────────────────────────

    def _decode_exercise_section(self):
        while self.reader.has_remaining():
            offset = self.reader.position
            step = self._guard(self._decode_exercise)

            if step.kind == StepKind.OK:
                self.exercises.append(step.value)
            elif step.kind == StepKind.STOP:
                break
            elif self.reader.has_remaining():
                self.reader.skip_bits(1)
                logger.debug(
                    f"Exercise at bit {offset} failed ({step.error}); "
                    f"resynchronizing"
                )
                self._anomaly(
                    AnomalyType.EXERCISE_RESYNC,
                    f"Skipped one bit after error: {step.error}",
                    offset,
                )
            else:
                logger.debug(f"Exercise at bit {offset} cut off by end of data")
                break

    def _decode_exercise(self) -> PhaseStep:
        if self.reader.remaining_bits < 2:
            return PhaseStep.stop()
        if self.reader.peek_bits(2) == SECTION_END:
            self.reader.skip_bits(2)
            return PhaseStep.stop()
        if self.reader.peek_bits(2) != EXERCISE_PREFIX:
            return PhaseStep.stop()

        self.reader.skip_bits(2)
        has_prefix = self.reader.read_bit() == 1
        prefix = self._decode_string() if has_prefix else ""

        expression = self._decode_expression()
        if not expression.terminated:
            return PhaseStep.failed(EndOfData(self.reader.position))
        if not expression.text.strip():
            return PhaseStep.stop()

        tags = self._decode_tags()
        self._skip_item_end()

        if has_prefix and prefix:
            text = f"{prefix}: {expression.text}"
        else:
            text = expression.text
        return PhaseStep.ok(Exercise(expression=text, tags=tags))

    # ── Expressions ────────────────────────────────────────────────────

    def _decode_expression(self) -> ExpressionText:
        """
        Accumulate operator/operand tokens until the end-of-expression code.
        Stops early, returning what was gathered, on exhausted input, a
        decoding error, or when the text exceeds the character limit.
        """
        parts: list[str] = []
        length = 0
        terminated = False

        while self.reader.has_remaining():
            offset = self.reader.position
            try:
                is_operator = self.reader.read_bit() == 1
                if is_operator:
                    token = self._decode_operator(offset)
                    if token is None:
                        terminated = True
                        break
                else:
                    token = self._decode_operand(offset)
            except EndOfData:
                break
            except DecodeError as e:
                logger.debug(f"Expression stopped at bit {offset}: {e}")
                terminated = True
                break

            parts.append(token)
            length += len(token)
            if length > self.expression_char_limit:
                self._anomaly(
                    AnomalyType.EXPRESSION_TRUNCATED,
                    f"Expression exceeded {self.expression_char_limit} characters",
                    offset,
                )
                terminated = True
                break

        return ExpressionText("".join(parts).strip(), terminated)

    def _decode_operator(self, offset: int) -> Optional[str]:
        """Return the operator text, or None at the end-of-expression code."""
        code = self.reader.read_bits(3)
        if code == OP_END_OF_EXPRESSION:
            return None
        if code == OP_EXTENDED:
            ext = self.reader.read_bits(4)
            if ext in EXTENDED_OPERATORS:
                return EXTENDED_OPERATORS[ext]
            self._anomaly(
                AnomalyType.UNKNOWN_OPERATOR,
                f"Unknown extended operator {ext:04b}",
                offset,
            )
            return f" ?ext{ext}? "
        if code in OPERATORS:
            return OPERATORS[code]
        self._anomaly(
            AnomalyType.UNKNOWN_OPERATOR,
            f"Unknown operator {code:03b}",
            offset,
        )
        return f" ?{code}? "

    def _decode_operand(self, offset: int) -> str:
        kind = self.reader.read_bits(2)
        if kind == OPERAND_NAME:
            return self._decode_string()

        if kind == OPERAND_CONSTANT:
            subtype = self.reader.read_bits(2)
            if subtype == CONSTANT_INTEGER:
                sign = "-" if self.reader.read_bit() == 1 else ""
                return f"{sign}{elias_delta_decode(self.reader)}"
            self._anomaly(
                AnomalyType.UNSUPPORTED_CONSTANT,
                f"Constant sub-type {subtype:02b} dropped",
                offset,
            )
            return ""

        self._anomaly(
            AnomalyType.RESERVED_OPERAND,
            f"Reserved operand kind {kind:02b} dropped",
            offset,
        )
        return ""

    # ── Tags & Strings ─────────────────────────────────────────────────

    def _decode_tags(self) -> tuple[LabelKind, ...]:
        tags: list[LabelKind] = []
        while self.reader.has_remaining() and self.reader.peek_bits(3) != ITEM_END:
            offset = self.reader.position
            code = self.reader.read_bits(3)
            tag = TAG_KINDS.get(code)
            if tag is None:
                self._anomaly(
                    AnomalyType.UNKNOWN_TAG,
                    f"Unknown tag code {code:03b} ignored",
                    offset,
                )
                continue
            tags.append(tag)
        return tuple(tags)

    def _decode_string(self) -> str:
        offset = self.reader.position
        selector = self.reader.read_bits(2)
        if selector == 0b00:
            return self._decode_ascii()
        if selector == 0b01:
            return self._decode_utf8()
        raise MalformedEncoding(selector, offset)

    def _decode_ascii(self) -> str:
        chars: list[str] = []
        while True:
            code = self.reader.read_bits(7)
            if code == STRING_TERMINATOR:
                return "".join(chars)
            chars.append(chr(code))

    def _decode_utf8(self) -> str:
        data = bytearray()
        while True:
            byte = self.reader.read_bits(8)
            if byte == STRING_TERMINATOR:
                return data.decode("utf-8", errors="replace")
            data.append(byte)

    # ── Helpers ────────────────────────────────────────────────────────

    def _guard(self, decode_item) -> PhaseStep:
        """Run one item decoder, turning decode errors into a FAILED step."""
        try:
            return decode_item()
        except DecodeError as e:
            return PhaseStep.failed(e)

    def _peek_equals(self, n: int, value: int) -> bool:
        """Compare the next ``n`` bits without moving; False if too few remain."""
        if self.reader.remaining_bits < n:
            return False
        return self.reader.peek_bits(n) == value

    def _skip_item_end(self):
        if self._peek_equals(3, ITEM_END):
            self.reader.skip_bits(3)

    def _anomaly(self, anomaly_type: AnomalyType, message: str, offset: int):
        logger.debug(f"[bit {offset}] {anomaly_type.value}: {message}")
        self.anomalies.append(
            Anomaly(type=anomaly_type, message=message, bit_offset=offset)
        )


def decode_payload(
    payload: bytes,
    header_bits: int = DEFAULT_HEADER_BITS,
    expression_char_limit: int = DEFAULT_EXPRESSION_CHAR_LIMIT,
) -> IntermediateRepresentation:
    """Decode ``payload`` with a fresh ``PayloadDecoder``."""
    return PayloadDecoder(
        payload,
        header_bits=header_bits,
        expression_char_limit=expression_char_limit,
    ).decode()
