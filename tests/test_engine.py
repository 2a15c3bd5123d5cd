"""
Test Suite for the Engine, Validator and CLI
============================================
End-to-end pipeline from payload bytes to verified answers.
"""

from __future__ import annotations

import json
import logging

import pytest
from click.testing import CliRunner

from eqr import __version__
from eqr.cli import cli, parse_hex
from eqr.encoder import BitWriter, PayloadBuilder
from eqr.engine import EngineConfig, EQREngine
from eqr.errors import CompileError, MalformedHeader
from eqr.models import LabelKind
from eqr.validator import PayloadValidator


def _payload() -> bytes:
    return (
        PayloadBuilder()
        .label(LabelKind.PLUS, "Sum")
        .random_int("a", 4, 4)
        .random_int("b", 3, 3)
        .random_int("c", 5, 1)
        .solution("What is 2+3?", "2+3=5", tags=[LabelKind.PLUS])
        .exercise("a + b = 7", prefix="plus", tags=[LabelKind.PLUS])
        .exercise("a * b", tags=[LabelKind.STAR, LabelKind.PLUS], raw_tag_codes=[0b110])
        .exercise("a - b")
        .build()
    )


def _malformed_header() -> bytes:
    writer = BitWriter()
    writer.write_bits(0, 22)
    writer.write_bits(0b11, 2)
    writer.write_bits(0, 8)
    return writer.to_bytes()


def _engine(**overrides) -> EQREngine:
    overrides.setdefault("log_level", "ERROR")
    return EQREngine(EngineConfig(**overrides))


# ═══════════════════════════════════════════════════════════════════════════════
# VALIDATOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestPayloadValidator:
    """Test payload acceptance rules and the content report."""

    def test_valid_payload(self):
        validation = PayloadValidator().validate(_payload())
        assert validation.is_valid
        assert validation.error_message == ""
        assert validation.ir.exercise_count == 3

    def test_too_short(self):
        validation = PayloadValidator().validate(b"\x00\x01\x02")
        assert not validation.is_valid
        assert validation.error_message == "Payload too short"
        assert validation.ir is None

    def test_malformed_header(self):
        validation = PayloadValidator().validate(_malformed_header())
        assert not validation.is_valid
        assert validation.error_message.startswith("Not a valid eQR payload")

    def test_truncated_header(self):
        writer = BitWriter()
        writer.write_bits(0, 22)
        writer.write_bits(0b01, 2)     # label
        writer.write_bits(0b01, 2)     # PLUS
        writer.write_bits(0b00, 2)     # ascii
        writer.write_bits(0b1000, 4)   # first half of a character
        validation = PayloadValidator().validate(writer.to_bytes())
        assert not validation.is_valid
        assert validation.error_message.startswith("Decoding failed")

    def test_no_content(self):
        validation = PayloadValidator().validate(PayloadBuilder().build())
        assert not validation.is_valid
        assert validation.error_message == "Payload contains no educational content"
        assert validation.ir is not None

    def test_report(self, caplog):
        validator = PayloadValidator()
        ir = validator.validate(_payload()).ir
        with caplog.at_level(logging.INFO, logger="eqr"):
            report = validator.report(ir)

        assert report.label_count == 1
        assert report.generator_count == 3
        assert report.solution_count == 1
        assert report.exercise_count == 3
        assert report.tag_breakdown == {"PLUS": 2, "STAR": 1}
        assert report.inverted_ranges == ["c"]
        assert report.untagged_exercises == [3]
        assert report.anomaly_breakdown == {"unknown_tag": 1}
        assert report.anomaly_count == 1
        assert "CONTENT REPORT" in caplog.text


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestEQREngine:
    """Test the pipeline facade."""

    def test_session_round_trip(self):
        session = _engine(seed=11).open_session(_payload())
        instances = session.get_exercises_by_tag({LabelKind.PLUS})

        assert [i.question_text for i in instances] == ["Sum: 4 + 3 = ?"]
        result = session.verify_answer(7, instances[0])
        assert result.is_correct

    def test_session_fuzzy_selection(self):
        session = _engine().open_session(_payload())
        instances = session.generate_new_exercises({LabelKind.PLUS})
        assert [i.math_expression for i in instances] == ["4 + 3", "4 * 3"]

    def test_session_variables_rolled(self):
        session = _engine(seed=3).open_session(_payload())
        variables = session.vm.variables
        assert variables["a"] == 4
        assert 1 <= variables["c"] <= 5

    def test_decode_propagates_header_errors(self):
        with pytest.raises(MalformedHeader):
            _engine().decode(_malformed_header())

    def test_evaluate(self):
        engine = _engine()
        assert engine.evaluate("x * (y + 1)", {"x": 2, "y": 4}).result == 10.0
        assert engine.evaluate("2 ^ 3 = 8").is_equal is True

    def test_evaluate_respects_step_limit(self):
        result = _engine(max_steps=2).evaluate("1 + 2")
        assert not result.success
        assert "limit (2)" in result.error

    def test_compile_errors_propagate(self):
        with pytest.raises(CompileError):
            _engine().compile("a = b = c")

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "eqr.log"
        engine = _engine(log_level="INFO", log_file=str(log_file))
        try:
            engine.decode(_payload())
            assert log_file.exists()
        finally:
            eqr_logger = logging.getLogger("eqr")
            for handler in list(eqr_logger.handlers):
                if isinstance(handler, logging.FileHandler):
                    eqr_logger.removeHandler(handler)
                    handler.close()
        assert "Decoding payload" in log_file.read_text(encoding="utf-8")


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCLI:
    """Test the click command line."""

    def test_parse_hex(self):
        assert parse_hex("0x00 01\nff") == b"\x00\x01\xff"

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_decode_json(self):
        result = CliRunner().invoke(cli, ["decode", _payload().hex(), "--json-output"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["labels"]["PLUS"] == "Sum"
        assert data["exercise_count"] == 3
        assert data["anomalies"][0]["type"] == "unknown_tag"

    def test_decode_tables(self):
        result = CliRunner().invoke(cli, ["decode", _payload().hex()])
        assert result.exit_code == 0
        assert "Exercises" in result.output
        assert "What is 2+3?" in result.output

    def test_decode_malformed(self):
        result = CliRunner().invoke(cli, ["decode", _malformed_header().hex()])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_decode_bad_hex(self):
        result = CliRunner().invoke(cli, ["decode", "zz"])
        assert result.exit_code == 2

    def test_validate(self):
        result = CliRunner().invoke(cli, ["validate", _payload().hex(), "--json-output"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["is_valid"] is True
        assert data["report"]["inverted_ranges"] == ["c"]

    def test_validate_too_short(self):
        result = CliRunner().invoke(cli, ["validate", "000102"])
        assert result.exit_code == 1
        assert "too short" in result.output

    def test_run(self):
        result = CliRunner().invoke(
            cli, ["run", _payload().hex(), "--seed", "1", "--json-output"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["variables"]["a"] == 4
        assert [r["is_valid"] for r in data["results"]] == [False, True, True]
        assert data["results"][1]["result"]["result"] == 12.0

    def test_exercises(self):
        result = CliRunner().invoke(
            cli, ["exercises", _payload().hex(), "--tag", "star", "--json-output"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [i["math_expression"] for i in data] == ["4 * 3"]

    def test_compile(self):
        result = CliRunner().invoke(cli, ["compile", "3 + x"])
        assert result.exit_code == 0
        assert "0: PUSH 3.0" in result.output
        assert "1: LOAD x" in result.output

    def test_compile_malformed(self):
        result = CliRunner().invoke(cli, ["compile", "1 = 2 = 3"])
        assert result.exit_code == 1

    def test_evaluate(self):
        result = CliRunner().invoke(cli, ["evaluate", "x * 2", "--var", "x=4"])
        assert result.exit_code == 0
        assert "result = 8.0" in result.output

    def test_evaluate_equation(self):
        result = CliRunner().invoke(cli, ["evaluate", "2 + 2 = 4"])
        assert result.exit_code == 0
        assert "is_equal = True" in result.output

    def test_evaluate_failure(self):
        result = CliRunner().invoke(cli, ["evaluate", "1 / 0"])
        assert result.exit_code == 1
        assert "Division by zero" in result.output

    def test_evaluate_bad_var(self):
        result = CliRunner().invoke(cli, ["evaluate", "x", "--var", "x"])
        assert result.exit_code == 2
