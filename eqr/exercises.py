"""
Exercise Orchestrator
=====================
Binds a decoded payload to random variable values and runs its exercises
through the compiler and VM.

    EducationalVM       owns the rolled variables, the compiler and the VM
    ExerciseGenerator   filters exercises by tag, builds ExerciseInstance
                        objects and verifies learner answers
"""

from __future__ import annotations

import logging
import math
import random
from typing import Iterable, Mapping, Optional

from .compiler import ExpressionCompiler
from .errors import CompileError
from .models import (
    EquationEvaluation,
    Exercise,
    ExecutionResult,
    ExerciseInstance,
    ExpressionEvaluation,
    IntermediateRepresentation,
    LabelKind,
    Solution,
    VerificationResult,
)
from .vm import DEFAULT_MAX_STEPS, DEFAULT_TOLERANCE, StackVirtualMachine

logger = logging.getLogger(__name__)


# ─── Text Processing ──────────────────────────────────────────────────────────


def substitute_labels(expression: str, labels: Mapping[LabelKind, str]) -> str:
    """Replace ``minus``/``plus``/``star``/``more_operands`` with label text."""
    for kind, text in labels.items():
        expression = expression.replace(kind.placeholder, text)
    return expression


def substitute_variables(expression: str, variables: Mapping[str, int]) -> str:
    """Plain substring replacement of each variable name by its value."""
    for name, value in variables.items():
        expression = expression.replace(name, str(value))
    return expression


def parse_exercise_expression(expression: str) -> tuple[Optional[str], str]:
    """
    Split processed exercise text into ``(question_text, math_expression)``.

    ``"Sum: 3 + 4 = 7"`` -> ``("Sum: 3 + 4 = ?", "3 + 4")``
    ``"3 + 4 = 7"``      -> ``("3 + 4 = ?", "3 + 4")``
    ``"Sum: 3 + 4"``     -> ``("Sum", "3 + 4")``
    ``"3 + 4"``          -> ``(None, "3 + 4")``
    """
    colon = expression.find(": ")
    if colon != -1:
        question = expression[:colon]
        remainder = expression[colon + 2:]
        if "=" in remainder:
            parts = [part.strip() for part in remainder.split("=")]
            if len(parts) == 2:
                return f"{question}: {parts[0]} = ?", parts[0]
        return question, remainder

    if "=" in expression:
        parts = [part.strip() for part in expression.split("=")]
        if len(parts) == 2:
            return f"{parts[0]} = ?", parts[0]
    return None, expression


# ─── Educational VM ───────────────────────────────────────────────────────────


class EducationalVM:
    """
    Session-level wrapper around one decoded payload.

    Holds the current variable roll; ``initialize_variables`` rerolls it.
    """

    def __init__(
        self,
        ir: IntermediateRepresentation,
        rng: Optional[random.Random] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.ir = ir
        self.rng = rng or random.Random()
        self.compiler = ExpressionCompiler()
        self.vm = StackVirtualMachine(max_steps=max_steps, tolerance=tolerance)
        self._variables: dict[str, int] = {}

    @property
    def variables(self) -> dict[str, int]:
        return dict(self._variables)

    @property
    def labels(self) -> dict[LabelKind, str]:
        return dict(self.ir.labels)

    @property
    def solutions(self) -> list[Solution]:
        return list(self.ir.solutions)

    def initialize_variables(self) -> dict[str, int]:
        """Draw one integer per generator, inclusive on both ends."""
        self._variables = {}
        for name, spec in self.ir.rand_generators.items():
            low, high = spec.as_tuple()
            if low > high:
                logger.warning(
                    f"Generator {name!r} has inverted range [{low}, {high}]; "
                    f"drawing from [{high}, {low}]"
                )
                low, high = high, low
            self._variables[name] = self.rng.randint(low, high)

        self.vm.clear_variables()
        self.vm.set_variables(self._variables)
        logger.debug(f"Variables rolled: {self._variables}")
        return self.variables

    def substitute_variables(self, expression: str) -> str:
        return substitute_variables(expression, self._variables)

    def execute_exercises(self) -> list[ExecutionResult]:
        """Substitute, compile and run every exercise in payload order."""
        results = [
            self._execute(index, exercise.expression, "Final stack")
            for index, exercise in enumerate(self.ir.exercises, start=1)
        ]
        valid = sum(1 for result in results if result.is_valid)
        logger.info(f"Executed {len(results)} exercises ({valid} valid)")
        return results

    def test_expression(self, expression: str) -> ExecutionResult:
        """Run an arbitrary expression against the current variables."""
        return self._execute(0, expression, "Test execution - Stack")

    def _execute(self, exercise_id: int, expression: str, debug_prefix: str) -> ExecutionResult:
        substituted = self.substitute_variables(expression)
        try:
            program = self.compiler.compile(substituted)
        except CompileError as e:
            logger.debug(f"Compile failed for {substituted!r}: {e}")
            return ExecutionResult(
                id=exercise_id,
                original_expression=expression,
                substituted_expression=substituted,
                is_valid=False,
                error_message=str(e),
            )

        vm_result = self.vm.execute(program)
        common = dict(
            id=exercise_id,
            original_expression=expression,
            substituted_expression=substituted,
            vm_steps=vm_result.execution_steps,
            compiled_instructions=program.disassemble(),
            final_stack=vm_result.final_stack,
        )
        if not vm_result.success:
            return ExecutionResult(is_valid=False, error_message=vm_result.error, **common)

        debug_info = f"{debug_prefix}: {vm_result.final_stack}"
        if vm_result.is_equation:
            evaluation = EquationEvaluation(
                is_equal=bool(vm_result.is_equal), debug_info=debug_info
            )
        else:
            evaluation = ExpressionEvaluation(
                result=vm_result.result if vm_result.result is not None else 0.0,
                debug_info=debug_info,
            )
        return ExecutionResult(is_valid=True, result=evaluation, **common)


# ─── Exercise Generator ───────────────────────────────────────────────────────


class ExerciseGenerator:
    """Produces exercise instances from a payload and checks answers."""

    def __init__(
        self,
        ir: IntermediateRepresentation,
        vm: Optional[EducationalVM] = None,
        tolerance: float = DEFAULT_TOLERANCE,
    ):
        self.ir = ir
        self.vm = vm or EducationalVM(ir)
        self.tolerance = tolerance

    def get_exercises_by_tag(self, selected_tags: Iterable[LabelKind]) -> list[ExerciseInstance]:
        """
        Reroll variables and build instances for matching exercises.

        Selecting only PLUS matches exercises tagged exactly ``{PLUS}``;
        any other selection matches on any shared tag.
        """
        selected = set(selected_tags)
        self.vm.initialize_variables()

        if selected == {LabelKind.PLUS}:
            matching = [e for e in self.ir.exercises if set(e.tags) == {LabelKind.PLUS}]
        else:
            matching = self._overlapping(selected)
        return self._instances(matching)

    def generate_new_exercises(self, selected_tags: Iterable[LabelKind]) -> list[ExerciseInstance]:
        """Reroll variables and build instances using any-overlap matching."""
        selected = set(selected_tags)
        self.vm.initialize_variables()
        return self._instances(self._overlapping(selected))

    def _overlapping(self, selected: set[LabelKind]) -> list[Exercise]:
        return [e for e in self.ir.exercises if selected.intersection(e.tags)]

    def _instances(self, exercises: list[Exercise]) -> list[ExerciseInstance]:
        instances = [
            self.generate_instance(index, exercise)
            for index, exercise in enumerate(exercises, start=1)
        ]
        logger.info(f"Generated {len(instances)} exercise instances")
        return instances

    def generate_instance(self, exercise_id: int, exercise: Exercise) -> ExerciseInstance:
        variables = self.vm.variables
        processed = substitute_labels(exercise.expression, self.vm.labels)
        processed = substitute_variables(processed, variables)
        question, math_expression = parse_exercise_expression(processed)

        return ExerciseInstance(
            id=exercise_id,
            original_expression=exercise.expression,
            processed_expression=processed,
            question_text=question,
            math_expression=math_expression,
            tags=exercise.tags,
            variables=variables,
        )

    def verify_answer(self, user_answer: float, instance: ExerciseInstance) -> VerificationResult:
        """Check ``user_answer`` against a fresh VM evaluation. Never raises."""
        outcome = self.vm.test_expression(instance.math_expression)

        if outcome.is_valid and isinstance(outcome.result, ExpressionEvaluation):
            correct = outcome.result.result
            return VerificationResult(
                is_correct=abs(user_answer - correct) < self.tolerance,
                correct_answer=correct,
                user_answer=user_answer,
                steps=outcome.vm_steps,
                debug_info=f"VM: {instance.math_expression} = {correct}",
            )

        reason = outcome.error_message or "result is not a number"
        logger.debug(f"Verification failed for exercise {instance.id}: {reason}")
        return VerificationResult(
            is_correct=False,
            correct_answer=math.nan,
            user_answer=user_answer,
            steps=outcome.vm_steps,
            error=f"VM calculation failed: {reason}",
        )
