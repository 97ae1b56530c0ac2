"""
ICU CLI Main Entry Point

Usage:
    icu run <pipeline.yaml> [--input input.json] [--out trace.jsonl] [--timeout 30]
    icu validate <pipeline.yaml>
    icu --version
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click

from .. import __version__
from ..orchestrator import StepGraph, StepGraphError, load_steps_from_yaml, read_pipeline_file
from ..services.config_service import get_executor_settings, get_trace_settings
from ..services.icu_client import ClientConfig, SchemaICU

_STATE_MARKS = {
    "completed": "ok",
    "failed": "FAILED",
    "skipped": "skipped",
}


def _capabilities(config_file: Optional[str]) -> Dict[str, Any]:
    try:
        client = SchemaICU(ClientConfig.from_settings(config_file))
    except (OSError, ValueError) as e:
        raise click.BadParameter(f"Could not load config: {e}", param_hint="--config")
    return client.capabilities()


def _load_input(input_file: Optional[str]) -> Any:
    if not input_file:
        return {}
    try:
        return json.loads(Path(input_file).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise click.BadParameter(f"Could not load input file: {e}", param_hint="--input")


@click.group()
@click.version_option(version=__version__, prog_name="icu")
@click.option("--verbose", "-v", is_flag=True, help="Log scheduling detail")
def cli(verbose: bool):
    """ICU CLI - run and validate agent pipelines."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("run")
@click.argument("pipeline", type=click.Path(exists=True, dir_okay=False))
@click.option("--input", "-i", "input_file", default=None, help="JSON file with the initial context")
@click.option("--out", "-o", default=None, help="Output trace file path")
@click.option("--timeout", "-t", type=float, default=None, help="Default per-step timeout in seconds")
@click.option("--config", "-c", "config_file", default=None, help="Path to config.yaml")
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
def run_cmd(
    pipeline: str,
    input_file: Optional[str],
    out: Optional[str],
    timeout: Optional[float],
    config_file: Optional[str],
    as_json: bool,
):
    """
    Run a pipeline and record a trace.

    PIPELINE: Path to the YAML pipeline definition

    Examples:
        icu run examples/pipelines/outline.yaml
        icu run examples/pipelines/fullstack.yaml --input ctx.json --out traces/fullstack.jsonl
    """
    from ..trace import TraceService, run_pipeline

    initial_context = _load_input(input_file)
    capabilities = _capabilities(config_file)
    trace_settings = get_trace_settings(config_file)
    if timeout is None:
        timeout = get_executor_settings(config_file).get("default_timeout")

    tracer = TraceService(
        output_dir=trace_settings.get("output_dir", "traces"),
        enabled=bool(trace_settings.get("enabled", True)),
        pipeline=Path(pipeline).stem,
    )

    summary = asyncio.run(run_pipeline(
        graph_path=Path(pipeline),
        input_context=initial_context,
        capabilities=capabilities,
        tracer=tracer,
        output_path=Path(out) if out else None,
        default_timeout=timeout,
    ))

    result = summary["result"]
    if as_json:
        payload = result.to_dict() if result else {"status": summary["status"]}
        payload["error"] = summary["error"]
        payload["trace_path"] = summary["trace_path"]
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        if result:
            for record in result:
                mark = _STATE_MARKS.get(record.state.value, record.state.value)
                line = f"  {record.name:<24} {mark}"
                if record.duration_ms is not None:
                    line += f" ({record.duration_ms:.1f}ms)"
                if record.error:
                    line += f" - {record.error}"
                click.echo(line)
        click.echo(f"\nRun ID: {summary['run_id']}")
        click.echo(f"Status: {summary['status']}")
        click.echo(f"Duration: {summary['duration_ms']:.1f}ms")
        if summary["trace_path"]:
            click.echo(f"Trace saved to: {summary['trace_path']}")

    if summary["error"]:
        click.echo(f"Error: {summary['error']}", err=True)
    if summary["status"] != "success":
        sys.exit(1)


@cli.command("validate")
@click.argument("pipeline", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", "config_file", default=None, help="Path to config.yaml")
def validate_cmd(pipeline: str, config_file: Optional[str]):
    """
    Check a pipeline for unknown references, duplicates and cycles.

    Prints the steps in an order that respects every dependency.
    """
    try:
        data = read_pipeline_file(Path(pipeline))
        steps = load_steps_from_yaml(data, capabilities=_capabilities(config_file))
        graph = StepGraph(steps)
    except (ValueError, TypeError, StepGraphError) as e:
        click.echo(f"Invalid pipeline: {e}", err=True)
        sys.exit(1)

    click.echo(f"Pipeline '{data.get('name', Path(pipeline).stem)}' is valid ({len(graph)} steps)")
    for index, name in enumerate(graph.topological_order(), start=1):
        deps = graph.dependencies(name)
        suffix = f"  <- {', '.join(deps)}" if deps else ""
        click.echo(f"  {index}. {name}{suffix}")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
