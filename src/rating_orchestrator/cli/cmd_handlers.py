"""Handler commands: list handlers and validate a flow's step configs."""

import asyncio
from pathlib import Path

import typer

from rating_orchestrator.cli._app import app
from rating_orchestrator.cli._common import build_providers, ensure_initialized, setup_logging
from rating_orchestrator.cli._console import output_table, print_err, print_ok
from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.handlers import build_default_registry
from rating_orchestrator.schemas.steps import order_active_steps


@app.command("handlers", help="List registered step handlers.")
def handlers_cmd(
    ctx: typer.Context,
    health: bool = typer.Option(False, "--health", help="Run every handler's health probe"),
    workspace: Path = typer.Option(None, "--workspace", "-w", file_okay=False, help="YAML workspace directory"),
):
    settings = ensure_initialized()
    setup_logging(verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    registry = build_default_registry(build_providers(settings, workspace), settings)

    rows = registry.list()
    if health:
        statuses = asyncio.run(registry.health_check_all())
        for row in rows:
            status = statuses[row["type"]]
            row["healthy"] = status.healthy
            row["details"] = status.details or {}
    output_table(rows, ctx=ctx, title="Step handlers")


@app.command("validate-flow", help="Validate every step config of a product line's flow.")
def validate_flow_cmd(
    ctx: typer.Context,
    product_line: str = typer.Argument(..., help="Product line code"),
    workspace: Path = typer.Option(None, "--workspace", "-w", file_okay=False, help="YAML workspace directory"),
):
    settings = ensure_initialized()
    setup_logging(verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    providers = build_providers(settings, workspace)
    registry = build_default_registry(providers, settings)

    try:
        steps = asyncio.run(providers.flows.get_steps(product_line))
    except ProviderUnavailableError as e:
        print_err(e.message)
        raise SystemExit(1)
    if not steps:
        print_err(f"No orchestrator found for product line '{product_line}'")
        raise SystemExit(1)

    rows = []
    for step in order_active_steps(steps):
        result = registry.validate_step(step)
        rows.append(
            {
                "order": step.step_order,
                "step": step.display_name,
                "type": step.step_type,
                "valid": result.valid,
                "errors": "; ".join(result.errors or []),
            }
        )
    output_table(rows, ctx=ctx, title=f"{product_line} flow")

    invalid = [r for r in rows if not r["valid"]]
    if invalid:
        print_err(f"{len(invalid)} of {len(rows)} steps have invalid configuration")
        raise SystemExit(1)
    if not ctx.obj["json"]:
        print_ok(f"All {len(rows)} steps valid")
