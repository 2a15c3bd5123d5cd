"""
CLI Interface
=============
Command-line interface for the eQR engine.

Payloads are passed as hexadecimal strings (whitespace and an optional
``0x`` prefix are ignored).

Usage:
    eqr decode <hex> [--json-output]
    eqr validate <hex>
    eqr run <hex> [--seed N]
    eqr exercises <hex> --tag PLUS [--tag STAR] [--seed N]
    eqr compile "<expression>"
    eqr evaluate "<expression>" [--var a=3]
"""

from __future__ import annotations

import json
import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .engine import EngineConfig, EQREngine
from .errors import CompileError, DecodeError
from .models import ExpressionEvaluation, LabelKind

console = Console()

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


def parse_hex(text: str) -> bytes:
    """Turn ``"0x00 01 ff"``-style text into bytes."""
    cleaned = "".join(text.split())
    if cleaned[:2].lower() == "0x":
        cleaned = cleaned[2:]
    try:
        return bytes.fromhex(cleaned)
    except ValueError as e:
        raise click.BadParameter(f"not a hexadecimal payload ({e})") from e


def parse_var(values: tuple[str, ...]) -> dict[str, float]:
    variables: dict[str, float] = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected name=value, got {item!r}")
        try:
            variables[name.strip()] = float(value)
        except ValueError as e:
            raise click.BadParameter(f"{name.strip()} must be numeric") from e
    return variables


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="eqr")
def cli():
    """eQR Engine: educational payload decoder and exercise VM."""
    pass


@cli.command()
@click.argument("payload")
@click.option("--header-bits", default=22, type=int, help="Opaque header bits to skip")
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def decode(payload: str, header_bits: int, log_level: str, json_output: bool):
    """Decode a payload and show its contents."""

    if json_output:
        log_level = "ERROR"

    engine = EQREngine(EngineConfig(header_bits=header_bits, log_level=log_level))
    try:
        ir = engine.decode(parse_hex(payload))
    except DecodeError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if json_output:
        _print_json(ir.model_dump(mode="json"))
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]eQR Payload[/]\n"
            f"[dim]{ir.solution_count} solutions, "
            f"{ir.exercise_count} exercises[/]",
            border_style="cyan",
        )
    )
    _display_ir(ir)


@cli.command()
@click.argument("payload")
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
@click.option("--json-output", is_flag=True, default=False, help="Output JSON")
def validate(payload: str, log_level: str, json_output: bool):
    """Check whether a payload carries usable content."""

    if json_output:
        log_level = "ERROR"

    engine = EQREngine(EngineConfig(log_level=log_level))
    validation = engine.validate(parse_hex(payload))
    report = engine.report(validation.ir) if validation.is_valid else None

    if json_output:
        _print_json({
            "is_valid": validation.is_valid,
            "error_message": validation.error_message,
            "report": report.model_dump(mode="json") if report else None,
        })
    elif not validation.is_valid:
        console.print(f"[red]Invalid payload:[/] {validation.error_message}")
    else:
        console.print("[green]Valid eQR payload[/]")
        _display_report(report)

    if not validation.is_valid:
        sys.exit(1)


@cli.command()
@click.argument("payload")
@click.option("--seed", default=None, type=int, help="Seed for variable rolls")
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
@click.option("--json-output", is_flag=True, default=False, help="Output JSON")
def run(payload: str, seed: int, log_level: str, json_output: bool):
    """Roll variables and execute every exercise."""

    if json_output:
        log_level = "ERROR"

    engine = EQREngine(EngineConfig(seed=seed, log_level=log_level))
    try:
        ir = engine.decode(parse_hex(payload))
    except DecodeError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    vm = engine.create_vm(ir)
    variables = vm.initialize_variables()
    results = vm.execute_exercises()

    if json_output:
        _print_json({
            "variables": variables,
            "results": [r.model_dump(mode="json") for r in results],
        })
        return

    console.print(f"[dim]Variables: {variables}[/]")
    table = Table(title="Exercise Execution", border_style="cyan")
    table.add_column("#", style="bold", justify="right")
    table.add_column("Expression")
    table.add_column("Result")
    table.add_column("Steps", justify="right")
    for result in results:
        if not result.is_valid:
            outcome = f"[red]{result.error_message}[/]"
        elif isinstance(result.result, ExpressionEvaluation):
            outcome = f"[green]{result.result.result}[/]"
        else:
            outcome = f"[green]equal={result.result.is_equal}[/]"
        table.add_row(
            str(result.id),
            result.substituted_expression,
            outcome,
            str(result.vm_steps),
        )
    console.print(table)


@cli.command()
@click.argument("payload")
@click.option(
    "--tag", "-t",
    "tags",
    multiple=True,
    required=True,
    type=click.Choice([kind.value for kind in LabelKind], case_sensitive=False),
    help="Tag to select (repeatable)",
)
@click.option("--seed", default=None, type=int, help="Seed for variable rolls")
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
@click.option("--json-output", is_flag=True, default=False, help="Output JSON")
def exercises(payload: str, tags: tuple[str, ...], seed: int, log_level: str, json_output: bool):
    """List exercise instances for the selected tags."""

    if json_output:
        log_level = "ERROR"

    engine = EQREngine(EngineConfig(seed=seed, log_level=log_level))
    try:
        session = engine.open_session(parse_hex(payload))
    except DecodeError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    instances = session.get_exercises_by_tag(LabelKind(tag.upper()) for tag in tags)

    if json_output:
        _print_json([i.model_dump(mode="json") for i in instances])
        return

    if not instances:
        console.print("[yellow]No exercises match the selected tags[/]")
        return

    table = Table(title="Exercises", border_style="cyan")
    table.add_column("#", style="bold", justify="right")
    table.add_column("Question")
    table.add_column("Expression")
    table.add_column("Answer", justify="right")
    for instance in instances:
        check = session.verify_answer(0.0, instance)
        answer = (
            f"{check.correct_answer:g}" if check.error is None
            else f"[red]{check.error}[/]"
        )
        table.add_row(
            str(instance.id),
            instance.question_text or "",
            instance.math_expression,
            answer,
        )
    console.print(table)


@cli.command(name="compile")
@click.argument("expression")
def compile_expression(expression: str):
    """Compile an expression and print the disassembly."""

    engine = EQREngine(EngineConfig(log_level="WARNING"))
    try:
        program = engine.compile(expression)
    except CompileError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    kind = "equation" if program.is_equation else "expression"
    console.print(f"[dim]{kind}: {expression}[/]")
    console.print(program.disassemble(), highlight=False, markup=False)


@cli.command()
@click.argument("expression")
@click.option("--var", "variables", multiple=True, help="Variable binding name=value")
@click.option("--json-output", is_flag=True, default=False, help="Output JSON")
def evaluate(expression: str, variables: tuple[str, ...], json_output: bool):
    """Compile and run an expression."""

    engine = EQREngine(EngineConfig(log_level="ERROR" if json_output else "WARNING"))
    try:
        result = engine.evaluate(expression, parse_var(variables))
    except CompileError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if json_output:
        _print_json(result.model_dump(mode="json"))
    elif not result.success:
        console.print(f"[red]Error:[/] {result.error}")
    elif result.is_equation:
        console.print(f"is_equal = {result.is_equal}")
    else:
        console.print(f"result = {result.result}")

    if not result.success:
        sys.exit(1)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_ir(ir):
    """Display a decoded payload as rich tables."""
    if ir.labels or ir.rand_generators:
        table = Table(title="Header", border_style="cyan")
        table.add_column("Entry", style="bold")
        table.add_column("Value")
        for kind, text in ir.labels.items():
            table.add_row(f"label {kind.value}", text)
        for name, spec in ir.rand_generators.items():
            table.add_row(f"rand {name}", f"[{spec.min}, {spec.max}]")
        console.print(table)

    if ir.solutions:
        table = Table(title="Solutions", border_style="cyan")
        table.add_column("#", style="bold", justify="right")
        table.add_column("Question")
        table.add_column("Steps")
        table.add_column("Tags")
        for index, solution in enumerate(ir.solutions, start=1):
            table.add_row(
                str(index),
                solution.question,
                solution.steps,
                ", ".join(tag.value for tag in solution.tags),
            )
        console.print(table)

    if ir.exercises:
        table = Table(title="Exercises", border_style="cyan")
        table.add_column("#", style="bold", justify="right")
        table.add_column("Expression")
        table.add_column("Tags")
        for index, exercise in enumerate(ir.exercises, start=1):
            table.add_row(
                str(index),
                exercise.expression,
                ", ".join(tag.value for tag in exercise.tags),
            )
        console.print(table)

    if ir.anomalies:
        console.print(f"[yellow]Anomalies: {len(ir.anomalies)}[/]")
        for anomaly in ir.anomalies:
            console.print(
                f"  [dim]bit {anomaly.bit_offset}[/] "
                f"{anomaly.type.value}: {anomaly.message}",
                highlight=False,
            )
    console.print()


def _display_report(report):
    """Display a content report as a rich table."""
    table = Table(title="Content Report", border_style="cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Labels", str(report.label_count))
    table.add_row("Random Generators", str(report.generator_count))
    table.add_row("Solutions", str(report.solution_count))
    table.add_row("Exercises", str(report.exercise_count))
    for tag, count in report.tag_breakdown.items():
        table.add_row(f"  tag {tag}", str(count))
    if report.inverted_ranges:
        table.add_row(
            "[yellow]Inverted Ranges[/]", ", ".join(report.inverted_ranges)
        )
    if report.untagged_exercises:
        table.add_row(
            "[yellow]Untagged Exercises[/]",
            ", ".join(str(i) for i in report.untagged_exercises),
        )
    table.add_row("Anomalies", str(report.anomaly_count))
    console.print(table)
    console.print()
