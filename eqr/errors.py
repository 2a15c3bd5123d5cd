"""
Error Taxonomy
==============
Exceptions raised by the decoder, compiler and virtual machine.

Propagation:
    - DecodeError: only header-phase errors escape ``PayloadDecoder.decode``;
      solution/exercise phase errors are absorbed by the phase loops.
    - CompileError: always propagates out of ``ExpressionCompiler.compile``.
    - VMError: never escapes ``StackVirtualMachine.execute``; converted into
      a failed ``VMExecutionResult``.
"""

from __future__ import annotations


class EQRError(Exception):
    """Base exception for all eQR core errors."""


# ─── Decoding ─────────────────────────────────────────────────────────────────


class DecodeError(EQRError):
    """Raised when a payload cannot be decoded."""


class EndOfData(DecodeError, EOFError):
    """Raised when the bit cursor is exhausted mid-read."""

    def __init__(self, bit_offset: int, requested: int = 1):
        self.bit_offset = bit_offset
        self.requested = requested
        super().__init__(
            f"End of data at bit {bit_offset} (requested {requested} bit(s))"
        )


class MalformedHeader(DecodeError):
    """Raised on an unrecognized 2-bit header marker."""

    def __init__(self, marker: int, bit_offset: int):
        self.marker = marker
        self.bit_offset = bit_offset
        super().__init__(
            f"Invalid header marker {marker:02b} at bit {bit_offset}"
        )


class MalformedEncoding(DecodeError):
    """Raised on an unrecognized string-encoding selector."""

    def __init__(self, selector: int, bit_offset: int):
        self.selector = selector
        self.bit_offset = bit_offset
        super().__init__(
            f"Invalid string encoding {selector:02b} at bit {bit_offset}"
        )


# ─── Compilation ──────────────────────────────────────────────────────────────


class CompileError(EQRError):
    """Raised when an expression cannot be compiled."""


class MalformedEquation(CompileError):
    """Raised when an equation does not split into exactly two sides."""

    def __init__(self, equation: str):
        self.equation = equation
        super().__init__(f"Invalid equation format: {equation}")


# ─── Execution ────────────────────────────────────────────────────────────────


class VMError(EQRError):
    """Base class for errors raised while executing a VM program."""


class StackUnderflow(VMError):
    """Raised when an instruction finds fewer operands than it needs."""

    def __init__(self, mnemonic: str, required: int, available: int):
        self.mnemonic = mnemonic
        self.required = required
        self.available = available
        super().__init__(
            f"Stack underflow on {mnemonic}: "
            f"requires {required}, have {available}"
        )


class UndefinedVariable(VMError):
    """Raised when LOAD references a name missing from the variable table."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Undefined variable: {name}")


class DivisionByZero(VMError):
    """Raised when DIV pops a divisor of exactly zero."""

    def __init__(self):
        super().__init__("Division by zero")


class RunawayExecution(VMError):
    """Raised when a program exceeds the step ceiling."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Execution steps exceeded limit ({limit})")


class InvalidInstruction(VMError):
    """Raised on a value that is not an instruction or a negative jump target."""


class ArithmeticDomainError(VMError):
    """
    Raised when POW has no real result or overflows.

    Covers negative bases with fractional exponents, such as ``(-8) ^ 0.5``,
    and zero raised to a negative power, such as ``0 ^ -1``.
    """

    def __init__(self, base: float, exponent: float):
        self.base = base
        self.exponent = exponent
        super().__init__(f"No real result for {base} ^ {exponent}")
