"""
Stack Virtual Machine
=====================
Closed instruction set, immutable programs and the executor.

Instructions are frozen dataclasses; ``Instruction`` is their union and
``StackVirtualMachine._step`` dispatches on it with ``match``. Values
outside the union raise ``InvalidInstruction``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

from pydantic import BaseModel, Field

from .errors import (
    ArithmeticDomainError,
    DivisionByZero,
    InvalidInstruction,
    RunawayExecution,
    StackUnderflow,
    UndefinedVariable,
    VMError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 10_000
DEFAULT_TOLERANCE = 1e-4


# ─── Instruction Set ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PUSH:
    value: float

    def __str__(self):
        return f"PUSH {self.value}"


@dataclass(frozen=True)
class POP:
    def __str__(self):
        return "POP"


@dataclass(frozen=True)
class DUP:
    def __str__(self):
        return "DUP"


@dataclass(frozen=True)
class SWAP:
    def __str__(self):
        return "SWAP"


@dataclass(frozen=True)
class ADD:
    def __str__(self):
        return "ADD"


@dataclass(frozen=True)
class SUB:
    def __str__(self):
        return "SUB"


@dataclass(frozen=True)
class MUL:
    def __str__(self):
        return "MUL"


@dataclass(frozen=True)
class DIV:
    def __str__(self):
        return "DIV"


@dataclass(frozen=True)
class POW:
    def __str__(self):
        return "POW"


@dataclass(frozen=True)
class NEG:
    def __str__(self):
        return "NEG"


@dataclass(frozen=True)
class EQ:
    def __str__(self):
        return "EQ"


@dataclass(frozen=True)
class NEQ:
    def __str__(self):
        return "NEQ"


@dataclass(frozen=True)
class GT:
    def __str__(self):
        return "GT"


@dataclass(frozen=True)
class LT:
    def __str__(self):
        return "LT"


@dataclass(frozen=True)
class LOAD:
    name: str

    def __str__(self):
        return f"LOAD {self.name}"


@dataclass(frozen=True)
class STORE:
    name: str

    def __str__(self):
        return f"STORE {self.name}"


@dataclass(frozen=True)
class JMP:
    address: int

    def __str__(self):
        return f"JMP {self.address}"


@dataclass(frozen=True)
class JF:
    """Jump if the popped value is 0.0."""
    address: int

    def __str__(self):
        return f"JF {self.address}"


@dataclass(frozen=True)
class JT:
    """Jump if the popped value is not 0.0."""
    address: int

    def __str__(self):
        return f"JT {self.address}"


@dataclass(frozen=True)
class HALT:
    def __str__(self):
        return "HALT"


@dataclass(frozen=True)
class NOP:
    def __str__(self):
        return "NOP"


Instruction = Union[
    PUSH, POP, DUP, SWAP,
    ADD, SUB, MUL, DIV, POW, NEG,
    EQ, NEQ, GT, LT,
    LOAD, STORE,
    JMP, JF, JT,
    HALT, NOP,
]


@dataclass(frozen=True)
class VMProgram:
    """Compiled program plus the metadata the executor needs."""
    instructions: tuple[Instruction, ...] = field(default_factory=tuple)
    is_equation: bool = False
    original_expression: str = ""

    def __len__(self) -> int:
        return len(self.instructions)

    def disassemble(self) -> str:
        return "\n".join(
            f"{index:3d}: {instruction}"
            for index, instruction in enumerate(self.instructions)
        )


class VMExecutionResult(BaseModel):
    """Outcome of one ``execute`` call."""
    success: bool
    result: Optional[float] = None
    is_equation: bool = False
    is_equal: Optional[bool] = None
    error: Optional[str] = None
    execution_steps: int = 0
    final_stack: list[float] = Field(default_factory=list)


# ─── Executor ─────────────────────────────────────────────────────────────────


class StackVirtualMachine:
    """
    Executes ``VMProgram`` instances against an operand stack.

    Bound variables (``set_variable`` / ``set_variables``) persist across
    runs. Each ``execute`` works on a fresh stack, program counter, step
    counter and a private copy of the variable table, so ``STORE`` inside
    one run never leaks into the next. Not safe for concurrent use.
    """

    def __init__(
        self,
        max_steps: int = DEFAULT_MAX_STEPS,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.max_steps = max_steps
        self.tolerance = tolerance
        self._bound: dict[str, float] = {}
        self._reset({})

    def _reset(self, variables: Mapping[str, float]):
        self.stack: list[float] = []
        self.variables: dict[str, float] = dict(variables)
        self.pc = 0
        self.steps = 0
        self.running = False

    # ── Variables ──────────────────────────────────────────────────────

    def set_variable(self, name: str, value: float):
        self._bound[name] = float(value)

    def set_variables(self, values: Mapping[str, float]):
        for name, value in values.items():
            self.set_variable(name, value)

    def clear_variables(self):
        self._bound.clear()

    @property
    def bound_variables(self) -> dict[str, float]:
        return dict(self._bound)

    # ── Execution ──────────────────────────────────────────────────────

    def execute(
        self,
        program: VMProgram,
        variables: Optional[Mapping[str, float]] = None,
    ) -> VMExecutionResult:
        """
        Run ``program`` to completion.

        Never raises ``VMError``: failures come back as a result with
        ``success=False``, the error text, the steps executed and the
        stack at the point of failure.
        """
        table = dict(self._bound)
        if variables:
            table.update({name: float(value) for name, value in variables.items()})
        self._reset(table)
        self.running = True

        try:
            while self.running and self.pc < len(program.instructions):
                self._step(program.instructions[self.pc])
                self.pc += 1
                self.steps += 1
                if self.steps > self.max_steps:
                    raise RunawayExecution(self.max_steps)
        except VMError as e:
            self.running = False
            logger.debug(
                f"VM failed after {self.steps} steps on "
                f"{program.original_expression!r}: {e}"
            )
            return VMExecutionResult(
                success=False,
                is_equation=program.is_equation,
                error=str(e),
                execution_steps=self.steps,
                final_stack=list(self.stack),
            )

        self.running = False
        top = self.stack[-1] if self.stack else None

        if program.is_equation:
            return VMExecutionResult(
                success=True,
                result=top,
                is_equation=True,
                is_equal=top == 1.0,
                execution_steps=self.steps,
                final_stack=list(self.stack),
            )
        return VMExecutionResult(
            success=True,
            result=top if top is not None else 0.0,
            execution_steps=self.steps,
            final_stack=list(self.stack),
        )

    def _step(self, instruction: Instruction):
        match instruction:
            case PUSH(value=value):
                self.stack.append(float(value))
            case POP():
                self._require("POP", 1)
                self.stack.pop()
            case DUP():
                self._require("DUP", 1)
                self.stack.append(self.stack[-1])
            case SWAP():
                self._require("SWAP", 2)
                self.stack[-1], self.stack[-2] = self.stack[-2], self.stack[-1]

            case ADD():
                b, a = self._pop_pair("ADD")
                self.stack.append(a + b)
            case SUB():
                b, a = self._pop_pair("SUB")
                self.stack.append(a - b)
            case MUL():
                b, a = self._pop_pair("MUL")
                self.stack.append(a * b)
            case DIV():
                b, a = self._pop_pair("DIV")
                if b == 0.0:
                    raise DivisionByZero()
                self.stack.append(a / b)
            case POW():
                b, a = self._pop_pair("POW")
                self.stack.append(self._power(a, b))
            case NEG():
                self._require("NEG", 1)
                self.stack.append(-self.stack.pop())

            case EQ():
                b, a = self._pop_pair("EQ")
                self.stack.append(1.0 if abs(a - b) < self.tolerance else 0.0)
            case NEQ():
                b, a = self._pop_pair("NEQ")
                self.stack.append(0.0 if abs(a - b) < self.tolerance else 1.0)
            case GT():
                b, a = self._pop_pair("GT")
                self.stack.append(1.0 if a > b else 0.0)
            case LT():
                b, a = self._pop_pair("LT")
                self.stack.append(1.0 if a < b else 0.0)

            case LOAD(name=name):
                if name not in self.variables:
                    raise UndefinedVariable(name)
                self.stack.append(self.variables[name])
            case STORE(name=name):
                self._require("STORE", 1)
                self.variables[name] = self.stack.pop()

            case JMP(address=address):
                self._jump(address)
            case JF(address=address):
                self._require("JF", 1)
                if self.stack.pop() == 0.0:
                    self._jump(address)
            case JT(address=address):
                self._require("JT", 1)
                if self.stack.pop() != 0.0:
                    self._jump(address)

            case HALT():
                self.running = False
            case NOP():
                pass
            case _:
                raise InvalidInstruction(f"Unknown instruction: {instruction!r}")

    def _jump(self, address: int):
        # the loop increments pc after every instruction
        if address < 0:
            raise InvalidInstruction(f"Jump target out of range: {address}")
        self.pc = address - 1

    def _require(self, mnemonic: str, count: int):
        if len(self.stack) < count:
            raise StackUnderflow(mnemonic, count, len(self.stack))

    def _pop_pair(self, mnemonic: str) -> tuple[float, float]:
        """Pop the right operand, then the left one."""
        self._require(mnemonic, 2)
        b = self.stack.pop()
        a = self.stack.pop()
        return b, a

    @staticmethod
    def _power(base: float, exponent: float) -> float:
        try:
            value = math.pow(base, exponent)
        except (ValueError, OverflowError) as e:
            raise ArithmeticDomainError(base, exponent) from e
        return value
