"""
Expression Compiler
===================
Turns infix arithmetic text into a ``VMProgram``.

    tokenize("3 + 4 * x")        -> ["3", "+", "4", "*", "x"]
    infix_to_postfix(tokens)     -> ["3", "4", "x", "*", "+"]
    ExpressionCompiler().compile -> PUSH 3.0, PUSH 4.0, LOAD x, MUL, ADD, HALT

Equations ``lhs = rhs`` compile both sides and finish with ``EQ``.
"""

from __future__ import annotations

import logging
import re

from .errors import MalformedEquation
from .vm import ADD, DIV, EQ, HALT, LOAD, MUL, POW, PUSH, SUB, Instruction, VMProgram

logger = logging.getLogger(__name__)

OPERATORS = "+-*/^()"
UNARY_CONTEXT = "+-*/^("

PRECEDENCE = {
    "+": 1,
    "-": 1,
    "*": 2,
    "/": 2,
    "^": 3,
}

ARITHMETIC = {
    "+": ADD,
    "-": SUB,
    "*": MUL,
    "/": DIV,
    "^": POW,
}

IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")


def tokenize(expression: str) -> list[str]:
    """
    Split an expression into number, identifier and operator tokens.

    A ``-`` opens a negative number when it starts the text or when the
    last non-blank character is an operator or ``(``. Unknown characters
    are dropped.
    """
    tokens: list[str] = []
    i = 0
    n = len(expression)

    while i < n:
        char = expression[i]

        if char.isspace():
            i += 1
            continue

        if char.isdigit() or char == ".":
            start = i
            while i < n and (expression[i].isdigit() or expression[i] == "."):
                i += 1
            tokens.append(expression[start:i])
            continue

        if char.isalpha():
            start = i
            while i < n and (expression[i].isalnum() or expression[i] == "_"):
                i += 1
            tokens.append(expression[start:i])
            continue

        if char == "-" and _is_unary_position(expression, i):
            start = i
            i += 1
            while i < n and (expression[i].isdigit() or expression[i] == "."):
                i += 1
            tokens.append(expression[start:i])
            continue

        if char in OPERATORS:
            tokens.append(char)
        i += 1

    return tokens


def _is_unary_position(expression: str, index: int) -> bool:
    """
    A "-" is unary at the start of the text or after an operator or "(".

    Blanks between that operator and the "-" are skipped, so "3 - -2" reads
    as 3 minus -2 rather than failing on a SUB with one operand. A check on
    the character directly before the "-" would reject it.
    """
    before = expression[:index].rstrip()
    return not before or before[-1] in UNARY_CONTEXT


def _is_number(token: str) -> bool:
    # float() would also accept names such as "inf" and "nan"
    if token[:1].isalpha():
        return False
    try:
        float(token)
    except ValueError:
        return False
    return True


def infix_to_postfix(tokens: list[str]) -> list[str]:
    """
    Shunting-yard conversion. Operators of equal precedence pop each
    other, so ``^`` groups left to right like the others.
    """
    output: list[str] = []
    operators: list[str] = []

    for token in tokens:
        if token == "(":
            operators.append(token)
        elif token == ")":
            while operators and operators[-1] != "(":
                output.append(operators.pop())
            if operators:
                operators.pop()
        elif token in PRECEDENCE:
            while (
                operators
                and operators[-1] != "("
                and PRECEDENCE[operators[-1]] >= PRECEDENCE[token]
            ):
                output.append(operators.pop())
            operators.append(token)
        else:
            output.append(token)

    while operators:
        top = operators.pop()
        if top != "(":
            output.append(top)

    return output


class ExpressionCompiler:
    """Compiles expressions and equations into ``VMProgram`` objects."""

    def compile(self, expression: str) -> VMProgram:
        """
        Raises:
            MalformedEquation: If the text holds more than one ``=``.
        """
        if "=" in expression:
            instructions = self._compile_equation(expression)
            is_equation = True
        else:
            instructions = self._compile_expression(expression)
            is_equation = False

        instructions.append(HALT())
        program = VMProgram(
            instructions=tuple(instructions),
            is_equation=is_equation,
            original_expression=expression,
        )
        logger.debug(
            f"Compiled {expression!r} into {len(program)} instructions"
        )
        return program

    def _compile_equation(self, equation: str) -> list[Instruction]:
        sides = equation.split("=")
        if len(sides) != 2:
            raise MalformedEquation(equation)

        left, right = sides
        instructions = self._compile_expression(left.strip())
        instructions.extend(self._compile_expression(right.strip()))
        instructions.append(EQ())
        return instructions

    def _compile_expression(self, expression: str) -> list[Instruction]:
        instructions: list[Instruction] = []
        for token in infix_to_postfix(tokenize(expression)):
            if _is_number(token):
                instructions.append(PUSH(float(token)))
            elif token in ARITHMETIC:
                instructions.append(ARITHMETIC[token]())
            elif IDENTIFIER_PATTERN.match(token):
                instructions.append(LOAD(token))
        return instructions
