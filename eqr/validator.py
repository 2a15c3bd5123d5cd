"""
Payload Validator
=================
Decides whether a scanned payload is usable educational content and
summarizes what it contains.

A payload is rejected when:
    - it is shorter than 4 bytes
    - its header is malformed (unknown marker or string encoding)
    - decoding fails for any other reason
    - it decodes but carries no labels, generators, solutions or exercises

The content report additionally flags inverted random ranges and
untagged exercises, and breaks down decode anomalies by type.
"""

from __future__ import annotations

import logging
from collections import Counter

from .decoder import DEFAULT_EXPRESSION_CHAR_LIMIT, PayloadDecoder
from .encoder import DEFAULT_HEADER_BITS
from .errors import DecodeError, MalformedEncoding, MalformedHeader
from .models import ContentReport, IntermediateRepresentation, PayloadValidation

logger = logging.getLogger(__name__)

MIN_PAYLOAD_BYTES = 4


class PayloadValidator:
    """
    Validates raw payloads and reports on decoded ones.
    """

    def __init__(
        self,
        header_bits: int = DEFAULT_HEADER_BITS,
        expression_char_limit: int = DEFAULT_EXPRESSION_CHAR_LIMIT,
    ):
        self.header_bits = header_bits
        self.expression_char_limit = expression_char_limit

    def validate(self, payload: bytes) -> PayloadValidation:
        """
        Decode ``payload`` and judge whether it is a valid eQR payload.

        Returns:
            PayloadValidation carrying the IR when valid.
        """
        if len(payload) < MIN_PAYLOAD_BYTES:
            logger.warning(f"Payload rejected: only {len(payload)} bytes")
            return PayloadValidation(
                is_valid=False,
                error_message="Payload too short",
            )

        decoder = PayloadDecoder(
            payload,
            header_bits=self.header_bits,
            expression_char_limit=self.expression_char_limit,
        )
        try:
            ir = decoder.decode()
        except (MalformedHeader, MalformedEncoding) as e:
            logger.warning(f"Payload rejected: {e}")
            return PayloadValidation(
                is_valid=False,
                error_message=f"Not a valid eQR payload: {e}",
            )
        except DecodeError as e:
            logger.warning(f"Payload rejected: {e}")
            return PayloadValidation(
                is_valid=False,
                error_message=f"Decoding failed: {e}",
            )

        if not ir.has_content:
            logger.warning("Payload rejected: decoded without content")
            return PayloadValidation(
                is_valid=False,
                error_message="Payload contains no educational content",
                ir=ir,
            )

        return PayloadValidation(is_valid=True, ir=ir)

    def report(self, ir: IntermediateRepresentation) -> ContentReport:
        """Summarize a decoded payload and log the summary."""
        tag_counts: Counter[str] = Counter()
        for exercise in ir.exercises:
            tag_counts.update(tag.value for tag in exercise.tags)

        report = ContentReport(
            label_count=len(ir.labels),
            generator_count=len(ir.rand_generators),
            solution_count=len(ir.solutions),
            exercise_count=len(ir.exercises),
            tag_breakdown=dict(sorted(tag_counts.items())),
            inverted_ranges=sorted(
                name for name, spec in ir.rand_generators.items()
                if spec.is_inverted
            ),
            untagged_exercises=[
                index for index, exercise in enumerate(ir.exercises, start=1)
                if not exercise.tags
            ],
            anomaly_breakdown=dict(sorted(
                Counter(a.type.value for a in ir.anomalies).items()
            )),
        )

        self._log_report(report)
        return report

    def _log_report(self, report: ContentReport):
        logger.info("=" * 60)
        logger.info("CONTENT REPORT")
        logger.info("=" * 60)
        logger.info(f"Labels: {report.label_count}")
        logger.info(f"Random Generators: {report.generator_count}")
        logger.info(f"Solutions: {report.solution_count}")
        logger.info(f"Exercises: {report.exercise_count}")

        if report.tag_breakdown:
            logger.info("Tag Breakdown:")
            for tag, count in report.tag_breakdown.items():
                logger.info(f"  • {tag}: {count}")

        if report.inverted_ranges:
            logger.warning(
                f"Inverted Ranges: {', '.join(report.inverted_ranges)}"
            )
        if report.untagged_exercises:
            logger.warning(
                f"Untagged Exercises: {report.untagged_exercises}"
            )

        if report.anomaly_breakdown:
            logger.info("Anomaly Breakdown:")
            for anomaly_type, count in report.anomaly_breakdown.items():
                logger.info(f"  • {anomaly_type}: {count}")

        logger.info("=" * 60)
