#!/usr/bin/env python3
"""
diagnose.py - Affect Expression Diagnostics CLI

Subcommands:
    simulate         Monte Carlo trigger rate of one expression
    overlap          Redundancy analysis of a prototype family
    complexity       Complexity distribution and axis bundles of a catalog
    validate-config  Validate a simulation or overlap config file

Every command accepts --output rich|json and --receipts PATH (append
receipts as JSONL).

Exit codes: 0 success, 1 validation failed, 2 error.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import numpy as np
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from tqdm import tqdm

import config_schema
from receipts import StopRule, write_receipt_jsonl
from complexity_analyzer import PrototypeComplexityAnalyzer
from monte_carlo import MonteCarloSimulator, compute_threshold_sensitivity, threshold_conditions
from overlap_analyzer import PrototypeOverlapAnalyzer
from affect.expression import ExpressionDefinition
from affect.types_state import MalformedDefinitionError, Prototype, load_catalog

console = Console()

MAX_CLAUSES_SHOWN = 10
MAX_SENSITIVITY_CONDITIONS = 5
CATALOG_SECTIONS = {"emotions": "emotion", "moods": "mood", "sexualStates": "sexual"}


# =============================================================================
# OUTPUT HELPERS
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message with red X."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow warning sign."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_next(command: str) -> None:
    """Print suggested next command."""
    console.print(f"\n[dim]Next:[/dim] [cyan]{command}[/cyan]")


def _fmt(value: Any, digits: int = 4) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        if value != value:
            return "NaN"
        return f"{value:.{digits}f}"
    return str(value)


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, np.generic):
        return value.item()
    return str(value)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=_json_default))


def _write_receipts(path: Optional[str], receipts: List[Dict[str, Any]]) -> None:
    if not path:
        return
    with open(path, "a") as fh:
        for receipt in receipts:
            if receipt:
                write_receipt_jsonl(receipt, fh)


def _fail(output: str, message: str, code: int = 2) -> None:
    if output == "json":
        click.echo(json.dumps({"error": message}))
    else:
        print_error(message)
    sys.exit(code)


# =============================================================================
# INPUT HELPERS
# =============================================================================

def read_document(path: str) -> Any:
    """Parse a JSON or YAML file."""
    path_obj = Path(path)
    content = path_obj.read_text()
    if path_obj.suffix in (".yaml", ".yml"):
        return yaml.safe_load(content)
    return json.loads(content)


def catalog_from_document(document: Any) -> List[Prototype]:
    """
    Prototype catalog from a file document.

    Accepts a flat {id: definition} mapping, a list of definitions, or a
    mapping with 'emotions' / 'moods' / 'sexualStates' sections whose
    entries default to the matching prototype type.
    """
    if isinstance(document, dict) and any(k in document for k in CATALOG_SECTIONS):
        prototypes: List[Prototype] = []
        for section, default_type in CATALOG_SECTIONS.items():
            prototypes += load_catalog(document.get(section), default_type)
        return prototypes
    return load_catalog(document)


def _load_config(path: Optional[str], kind: str, strict: bool):
    if path is None:
        return config_schema.default(kind)
    return config_schema.load(path, kind=kind, strict=strict)


# =============================================================================
# CLI GROUP
# =============================================================================

@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """Affect expression diagnostics: simulation, overlap and complexity."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# --- simulate ---

@cli.command("simulate")
@click.argument("expression_path", type=click.Path(exists=True))
@click.option("--prototypes", "-p", "prototypes_path", required=True, type=click.Path(exists=True),
              help="Prototype catalog (JSON/YAML)")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Simulation config")
@click.option("--samples", "-n", type=int, help="Override sample count")
@click.option("--mode", type=click.Choice(["static", "dynamic"]), help="Override sampling mode")
@click.option("--distribution", type=click.Choice(["uniform", "gaussian"]), help="Override distribution")
@click.option("--seed", type=int, help="Random seed")
@click.option("--sensitivity", is_flag=True, help="Threshold sensitivity for simple conditions")
@click.option("--strict", is_flag=True, help="Fail on invalid config instead of self-healing")
@click.option("--receipts", "receipts_path", type=click.Path(), help="Append receipts (JSONL)")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
def simulate_cmd(expression_path: str, prototypes_path: str, config_path: Optional[str],
                 samples: Optional[int], mode: Optional[str], distribution: Optional[str],
                 seed: Optional[int], sensitivity: bool, strict: bool,
                 receipts_path: Optional[str], output: str) -> None:
    """Estimate how often an expression triggers."""
    try:
        definition = ExpressionDefinition.from_dict(read_document(expression_path))
        catalog = catalog_from_document(read_document(prototypes_path))
        config = _load_config(config_path, "simulation", strict)

        overrides: Dict[str, Any] = {}
        if samples is not None:
            overrides["sample_count"] = samples
        if mode is not None:
            overrides["sampling_mode"] = mode
        if distribution is not None:
            overrides["distribution"] = distribution
        if seed is not None:
            overrides["seed"] = seed
        if sensitivity:
            overrides["store_samples_for_sensitivity"] = True
        if overrides:
            config = config_schema.with_overrides(config, **overrides)

        simulator = MonteCarloSimulator(catalog)
        with tqdm(total=config.sample_count, desc=f"Simulating {definition.id}",
                  disable=output == "json") as bar:
            def on_progress(processed: int, total: int) -> None:
                bar.update(processed - bar.n)
            result = simulator.simulate(definition, config, on_progress=on_progress)

        grids = []
        if sensitivity:
            for condition in threshold_conditions(definition.prerequisites)[:MAX_SENSITIVITY_CONDITIONS]:
                grids.append(compute_threshold_sensitivity(
                    result.stored_contexts, condition["var_path"],
                    condition["operator"], condition["threshold"]))

        _write_receipts(receipts_path, [result.receipt])

        if output == "json":
            data = result.to_dict()
            data.pop("storedContexts")
            data["expression"] = definition.to_dict()
            if grids:
                data["sensitivity"] = grids
            _echo_json(data)
            return

        _render_simulation(definition, result, grids, config.confidence_level)

    except (MalformedDefinitionError, config_schema.ConfigError) as e:
        _fail(output, f"Invalid input: {e}", 1)
    except StopRule as e:
        _fail(output, f"Simulation halted: {e}")
    except (OSError, ValueError) as e:
        _fail(output, f"Simulation failed: {e}")


def _render_simulation(definition: ExpressionDefinition, result, grids: List[Dict[str, Any]],
                       confidence_level: float) -> None:
    ci = result.confidence_interval
    content = (
        f"Expression: {definition.id}    Prerequisites: {len(definition.prerequisites)}\n"
        f"Trigger rate: [bold]{result.trigger_rate:.4%}[/bold]  "
        f"({result.trigger_count}/{result.sample_count})\n"
        f"{confidence_level * 100:g}% CI: [{ci.low:.4%}, {ci.high:.4%}]\n"
        f"Sampling: {result.sampling_mode} / {result.distribution}    Errors: {result.error_count}"
    )
    style = "green" if result.trigger_rate > 0 else "red"
    console.print(Panel(content, title=f"[bold {style}]Monte Carlo Simulation[/bold {style}]",
                        border_style=style))

    for warning in result.unseeded_var_warnings:
        print_warning(f"{warning['path']}: {warning['suggestion']}")

    if result.clause_statistics:
        table = Table(title="Blocking clauses")
        table.add_column("Clause", style="cyan")
        table.add_column("Fail rate", justify="right")
        table.add_column("Avg violation", justify="right")
        table.add_column("Near miss", justify="right")
        table.add_column("Last mile", justify="right")
        table.add_column("Ceiling gap", justify="right")
        for clause in result.clause_statistics[:MAX_CLAUSES_SHOWN]:
            table.add_row(
                clause["clauseDescription"],
                _fmt(clause["failureRate"]),
                _fmt(clause["averageViolation"]),
                _fmt(clause["nearMissRate"]),
                _fmt(clause["lastMileFailRate"]),
                _fmt(clause["ceilingGap"]),
            )
        console.print(table)

    for conjunction in result.overconstrained_conjunctions:
        print_warning(
            f"Overconstrained {conjunction['description']} at {conjunction['clauseId']}: "
            f"naive joint probability {conjunction['naiveJointProbability']:.6f}"
        )

    for grid in grids:
        table = Table(title=f"Sensitivity: {grid['conditionPath']} {grid['operator']} "
                            f"{grid['originalThreshold']}")
        table.add_column("Threshold", justify="right")
        table.add_column("Pass rate", justify="right")
        for point in grid["grid"]:
            table.add_row(_fmt(point["threshold"], 2), _fmt(point["passRate"]))
        console.print(table)

    nearest = result.witness_analysis.get("nearestMiss")
    if result.trigger_count == 0 and nearest:
        print_warning(f"No triggers. Nearest miss failed {nearest['failedLeafCount']} condition(s):")
        for leaf in nearest["failedLeaves"]:
            console.print(f"  {leaf['description']} (actual {_fmt(leaf['actual'])})")


# --- overlap ---

@cli.command("overlap")
@click.argument("prototypes_path", type=click.Path(exists=True))
@click.option("--family", "-f", type=click.Choice(["emotion", "sexual"]), default="emotion")
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Overlap config")
@click.option("--seed", type=int, help="Random seed")
@click.option("--strict", is_flag=True, help="Fail on invalid config instead of self-healing")
@click.option("--receipts", "receipts_path", type=click.Path(), help="Append receipts (JSONL)")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
def overlap_cmd(prototypes_path: str, family: str, config_path: Optional[str], seed: Optional[int],
                strict: bool, receipts_path: Optional[str], output: str) -> None:
    """Find redundant or nested prototypes in one family."""
    try:
        catalog = catalog_from_document(read_document(prototypes_path))
        config = _load_config(config_path, "overlap", strict)
        analyzer = PrototypeOverlapAnalyzer(config, rng=np.random.default_rng(seed))

        bar = tqdm(desc="Evaluating pairs", disable=output == "json")

        def on_progress(stage: str, current: int, total: int) -> None:
            if stage == "evaluating":
                bar.total = total
                bar.update(current - bar.n)

        try:
            result = analyzer.analyze(catalog, family, on_progress=on_progress)
        finally:
            bar.close()

        _write_receipts(receipts_path, [result["receipt"]])

        if output == "json":
            _echo_json(result)
            return

        meta = result["metadata"]
        insight = meta["summary_insight"]
        content = (
            f"Family: {family}    Prototypes: {meta['total_prototypes']}\n"
            f"Candidate pairs: {meta['candidate_pairs_found']} found, "
            f"{meta['candidate_pairs_evaluated']} evaluated\n"
            f"Status: [bold]{insight['status']}[/bold]\n{insight['message']}"
        )
        style = "yellow" if result["recommendations"] else "green"
        console.print(Panel(content, title=f"[bold {style}]Prototype Overlap[/bold {style}]",
                            border_style=style))

        if result["recommendations"]:
            table = Table(title="Recommendations")
            table.add_column("Type", style="cyan")
            table.add_column("Pair")
            table.add_column("Narrower")
            table.add_column("Confidence")
            table.add_column("Severity", justify="right")
            for rec in result["recommendations"]:
                table.add_row(rec["type"], f"{rec['prototype_a']} / {rec['prototype_b']}",
                              rec["narrower_prototype"] or "-", rec["confidence"],
                              _fmt(rec["severity"], 3))
            console.print(table)

        for near in result["near_misses"]:
            print_warning(f"Near miss {near['prototype_a']} / {near['prototype_b']}: "
                          f"{near['near_miss_info']['reason']}")

    except config_schema.ConfigError as e:
        _fail(output, f"Invalid config: {e}", 1)
    except MalformedDefinitionError as e:
        _fail(output, f"Invalid catalog: {e}", 1)
    except (OSError, ValueError) as e:
        _fail(output, f"Overlap analysis failed: {e}")


# --- complexity ---

@cli.command("complexity")
@click.argument("prototypes_path", type=click.Path(exists=True))
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Overlap config")
@click.option("--receipts", "receipts_path", type=click.Path(), help="Append receipts (JSONL)")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
def complexity_cmd(prototypes_path: str, config_path: Optional[str],
                   receipts_path: Optional[str], output: str) -> None:
    """Complexity distribution and common axis bundles of a catalog."""
    try:
        catalog = catalog_from_document(read_document(prototypes_path))
        config = _load_config(config_path, "overlap", False)
        analysis = PrototypeComplexityAnalyzer(config).analyze(catalog)

        _write_receipts(receipts_path, [analysis.receipt])

        if output == "json":
            _echo_json(analysis.to_dict())
            return

        dist = analysis.distribution
        content = (
            f"Prototypes: {analysis.total_prototypes}\n"
            f"Active axes: mean {_fmt(dist.get('mean'), 2)}, median {_fmt(dist.get('median'), 1)}, "
            f"range {_fmt(dist.get('min'), 0)}-{_fmt(dist.get('max'), 0)}"
        )
        console.print(Panel(content, title="[bold]Prototype Complexity[/bold]"))

        if analysis.histogram:
            table = Table(title="Active axis histogram")
            table.add_column("Axes", justify="right")
            table.add_column("Prototypes", justify="right")
            for entry in analysis.histogram:
                table.add_row(str(entry["value"]), str(entry["count"]))
            console.print(table)

        if analysis.common_bundles:
            table = Table(title="Common axis bundles")
            table.add_column("Axes", style="cyan")
            table.add_column("Support", justify="right")
            table.add_column("Suggested name")
            for bundle in analysis.common_bundles:
                table.add_row(", ".join(bundle["axes"]), f"{bundle['support']:.0%}",
                              bundle["suggested_name"])
            console.print(table)

        for rec in analysis.recommendations:
            print_warning(f"{rec['type']}: {rec['subject']} ({rec['basis']})")
        if analysis.distribution and not analysis.recommendations:
            print_success("No complexity outliers or composite-axis candidates")

    except (OSError, ValueError) as e:
        _fail(output, f"Complexity analysis failed: {e}")


# --- validate-config ---

@cli.command("validate-config")
@click.argument("config_path", type=click.Path(exists=True))
@click.option("--kind", "-k", type=click.Choice(["overlap", "simulation"]), default="overlap")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
def validate_config_cmd(config_path: str, kind: str, output: str) -> None:
    """Validate a simulation or overlap config file."""
    try:
        data = read_document(config_path)
        if isinstance(data, dict) and isinstance(data.get(kind), dict):
            data = data[kind]
        is_valid, errors, warns = config_schema.validate(data, kind)

        if output == "json":
            click.echo(json.dumps({"path": config_path, "kind": kind, "valid": is_valid,
                                   "errors": errors, "warnings": warns}, indent=2))
        else:
            status = "PASSED" if is_valid else "FAILED"
            style = "green" if is_valid else "red"
            lines = [f"File: {config_path}    Kind: {kind}", ""]
            lines += [f"[red]✗[/red] {msg}" for msg in errors]
            lines += [f"[yellow]⚠[/yellow] {msg}" for msg in warns]
            if is_valid and not warns:
                lines.append("[green]✓[/green] All values within bounds")
            console.print(Panel("\n".join(lines),
                                title=f"[bold {style}]Config Validation: {status}[/bold {style}]",
                                border_style=style))
            if is_valid:
                print_next(f"diagnose {'simulate EXPR -p CATALOG' if kind == 'simulation' else 'overlap CATALOG'}"
                           f" -c {config_path}")
        if not is_valid:
            sys.exit(1)

    except (OSError, ValueError, yaml.YAMLError) as e:
        _fail(output, f"Validation failed: {e}")


# --- entry point ---

def main() -> int:
    """Entry point for the diagnostics CLI."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return 2
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
