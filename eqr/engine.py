"""
eQR Engine
==========
Main orchestrator tying decoding, validation, compilation and exercise
sessions together behind one configuration object.

Usage:
    engine = EQREngine(EngineConfig(seed=7))
    session = engine.open_session(payload)
    instances = session.get_exercises_by_tag({LabelKind.PLUS})
    result = session.verify_answer(12, instances[0])

Architecture:
    bytes → PayloadDecoder → IntermediateRepresentation →
    EducationalVM / ExerciseGenerator → ExpressionCompiler →
    VMProgram → StackVirtualMachine → result
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .compiler import ExpressionCompiler
from .decoder import DEFAULT_EXPRESSION_CHAR_LIMIT, PayloadDecoder
from .encoder import DEFAULT_HEADER_BITS
from .errors import DecodeError
from .exercises import EducationalVM, ExerciseGenerator
from .models import ContentReport, IntermediateRepresentation, PayloadValidation
from .validator import PayloadValidator
from .vm import DEFAULT_MAX_STEPS, DEFAULT_TOLERANCE, StackVirtualMachine, VMExecutionResult, VMProgram

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class EngineConfig:
    """Configuration for the eQR engine."""

    # Decoding
    header_bits: int = DEFAULT_HEADER_BITS
    expression_char_limit: int = DEFAULT_EXPRESSION_CHAR_LIMIT

    # Execution
    max_steps: int = DEFAULT_MAX_STEPS
    equality_tolerance: float = DEFAULT_TOLERANCE

    # Variable rolls; None draws a fresh seed per session
    seed: Optional[int] = None

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class EQREngine:
    """
    Main eQR engine.

    Orchestrates the pipeline:
        1. Payload decoding
        2. Validation and content reporting
        3. Exercise sessions (variable rolls, instances, answer checks)
        4. Ad-hoc compilation and evaluation

    Holds no per-payload state; every session owns its own VM.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.compiler = ExpressionCompiler()
        self.validator = PayloadValidator(
            header_bits=self.config.header_bits,
            expression_char_limit=self.config.expression_char_limit,
        )
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        # Configure root logger for the eqr package
        eqr_logger = logging.getLogger("eqr")
        eqr_logger.setLevel(log_level)

        # Console handler
        if not eqr_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            eqr_logger.addHandler(console)
        else:
            for handler in eqr_logger.handlers:
                handler.setLevel(log_level)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            eqr_logger.addHandler(file_handler)

    # ── Decoding ───────────────────────────────────────────────────────

    def decode(self, payload: bytes) -> IntermediateRepresentation:
        """
        Decode a raw payload.

        Raises:
            DecodeError: If the header phase cannot be decoded.
        """
        logger.info(f"Decoding payload ({len(payload)} bytes)")
        decoder = PayloadDecoder(
            payload,
            header_bits=self.config.header_bits,
            expression_char_limit=self.config.expression_char_limit,
        )
        try:
            ir = decoder.decode()
        except DecodeError as e:
            logger.error(f"Payload decoding failed: {e}")
            raise

        if ir.anomalies:
            logger.warning(f"Decoded with {len(ir.anomalies)} anomalies")
        return ir

    def validate(self, payload: bytes) -> PayloadValidation:
        return self.validator.validate(payload)

    def report(self, ir: IntermediateRepresentation) -> ContentReport:
        return self.validator.report(ir)

    # ── Sessions ───────────────────────────────────────────────────────

    def create_vm(self, ir: IntermediateRepresentation) -> EducationalVM:
        return EducationalVM(
            ir,
            rng=random.Random(self.config.seed),
            max_steps=self.config.max_steps,
            tolerance=self.config.equality_tolerance,
        )

    def open_session(self, payload: bytes) -> ExerciseGenerator:
        """
        Decode ``payload`` and return an exercise generator over it, with
        variables already rolled.

        Raises:
            DecodeError: If the header phase cannot be decoded.
        """
        ir = self.decode(payload)
        vm = self.create_vm(ir)
        vm.initialize_variables()
        return ExerciseGenerator(ir, vm, tolerance=self.config.equality_tolerance)

    # ── Expressions ────────────────────────────────────────────────────

    def compile(self, expression: str) -> VMProgram:
        return self.compiler.compile(expression)

    def evaluate(
        self,
        expression: str,
        variables: Optional[Mapping[str, float]] = None,
    ) -> VMExecutionResult:
        """
        Compile and run ``expression`` on a fresh VM.

        Raises:
            CompileError: If the expression cannot be compiled.
        """
        program = self.compile(expression)
        vm = StackVirtualMachine(
            max_steps=self.config.max_steps,
            tolerance=self.config.equality_tolerance,
        )
        return vm.execute(program, variables)
