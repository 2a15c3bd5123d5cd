"""
Data Models
===========
Pydantic models for decoded payloads, exercise instances and verification
results. All models are serializable to JSON for the presentation layer.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class LabelKind(str, Enum):
    """Operation category used both for display labels and exercise tags."""
    MINUS = "MINUS"
    PLUS = "PLUS"
    STAR = "STAR"
    MORE_OPERANDS = "MORE_OPERANDS"

    @property
    def placeholder(self) -> str:
        """Lowercase literal token replaced by the label text in templates."""
        return self.value.lower()


Tag = LabelKind


class StringEncoding(str, Enum):
    """String payload encodings."""
    ASCII = "ascii"
    UTF8 = "utf8"


class AnomalyType(str, Enum):
    """Data-quality issues noticed while decoding a payload."""
    UNKNOWN_TAG = "unknown_tag"
    UNSUPPORTED_CONSTANT = "unsupported_constant"
    RESERVED_OPERAND = "reserved_operand"
    UNKNOWN_OPERATOR = "unknown_operator"
    RESERVED_HEADER_SUBTYPE = "reserved_header_subtype"
    EXPRESSION_TRUNCATED = "expression_truncated"
    SOLUTION_PHASE_ABORTED = "solution_phase_aborted"
    EXERCISE_RESYNC = "exercise_resync"


# ─── Anomaly Model ────────────────────────────────────────────────────────────


class Anomaly(BaseModel):
    """A skipped or recovered region of the bit stream."""
    model_config = ConfigDict(frozen=True)

    type: AnomalyType
    message: str
    bit_offset: int = Field(ge=0)


# ─── Intermediate Representation ──────────────────────────────────────────────


class RandomRange(BaseModel):
    """
    Inclusive integer range for a random variable.
    ``min <= max`` is expected but not enforced.
    """
    model_config = ConfigDict(frozen=True)

    min: int
    max: int

    @computed_field
    @property
    def is_inverted(self) -> bool:
        return self.min > self.max

    def as_tuple(self) -> tuple[int, int]:
        return self.min, self.max


class Solution(BaseModel):
    """A worked solution: question text, steps text and tags."""
    model_config = ConfigDict(frozen=True)

    question: str
    steps: str
    tags: tuple[LabelKind, ...] = ()


class Exercise(BaseModel):
    """An exercise template and its tags."""
    model_config = ConfigDict(frozen=True)

    expression: str
    tags: tuple[LabelKind, ...] = ()


class IntermediateRepresentation(BaseModel):
    """
    Immutable result of decoding one scanned payload.
    """
    model_config = ConfigDict(frozen=True)

    labels: dict[LabelKind, str] = Field(default_factory=dict)
    rand_generators: dict[str, RandomRange] = Field(default_factory=dict)
    solutions: tuple[Solution, ...] = ()
    exercises: tuple[Exercise, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()

    @computed_field
    @property
    def has_content(self) -> bool:
        return bool(
            self.labels
            or self.rand_generators
            or self.solutions
            or self.exercises
        )

    @computed_field
    @property
    def solution_count(self) -> int:
        return len(self.solutions)

    @computed_field
    @property
    def exercise_count(self) -> int:
        return len(self.exercises)


# ─── Exercise Models ──────────────────────────────────────────────────────────


class ExerciseInstance(BaseModel):
    """
    One generated attempt of an exercise with variables substituted.
    Superseded, never mutated, by the next generation.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    original_expression: str
    processed_expression: str
    question_text: Optional[str] = None
    math_expression: str
    tags: tuple[LabelKind, ...] = ()
    variables: dict[str, int] = Field(default_factory=dict)


class VerificationResult(BaseModel):
    """Outcome of checking a learner's answer against the VM."""
    is_correct: bool
    correct_answer: float
    user_answer: float
    steps: int = 0
    debug_info: Optional[str] = None
    error: Optional[str] = None


class EquationEvaluation(BaseModel):
    """Evaluation of an equation program."""
    kind: Literal["equation"] = "equation"
    is_equal: bool
    debug_info: Optional[str] = None


class ExpressionEvaluation(BaseModel):
    """Evaluation of a plain expression program."""
    kind: Literal["expression"] = "expression"
    result: float
    debug_info: Optional[str] = None


Evaluation = Union[EquationEvaluation, ExpressionEvaluation]


class ExecutionResult(BaseModel):
    """Result of substituting, compiling and running one expression."""
    id: int
    original_expression: str
    substituted_expression: str
    is_valid: bool
    result: Optional[Evaluation] = None
    error_message: Optional[str] = None
    vm_steps: int = 0
    compiled_instructions: Optional[str] = None
    final_stack: list[float] = Field(default_factory=list)


# ─── Validation Models ────────────────────────────────────────────────────────


class PayloadValidation(BaseModel):
    """Whether a scanned payload is usable educational content."""
    is_valid: bool
    error_message: str = ""
    ir: Optional[IntermediateRepresentation] = None


class ContentReport(BaseModel):
    """Summary of what a decoded payload contains."""
    label_count: int = 0
    generator_count: int = 0
    solution_count: int = 0
    exercise_count: int = 0
    tag_breakdown: dict[str, int] = Field(default_factory=dict)
    inverted_ranges: list[str] = Field(default_factory=list)
    untagged_exercises: list[int] = Field(default_factory=list)
    anomaly_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def anomaly_count(self) -> int:
        return sum(self.anomaly_breakdown.values())
