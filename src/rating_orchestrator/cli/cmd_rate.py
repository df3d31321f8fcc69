"""Rate command: run a product line's flow against a payload file."""

import asyncio
from pathlib import Path

import typer

from rating_orchestrator.cli._app import app
from rating_orchestrator.cli._common import build_providers, ensure_initialized, load_document, setup_logging
from rating_orchestrator.cli._console import console, output_result, output_table, print_err, print_ok
from rating_orchestrator.errors import FlowNotFoundError, ProviderUnavailableError
from rating_orchestrator.rating import RatingService, normalize_body


@app.command("rate", help="Run a product line's flow against a payload.")
def rate_cmd(
    ctx: typer.Context,
    product_line: str = typer.Argument(..., help="Product line code"),
    payload_file: Path = typer.Option(..., "--payload", "-p", exists=True, dir_okay=False, help="JSON or YAML request body"),
    state: str = typer.Option(None, "--state", help="Scope: state"),
    coverage: str = typer.Option(None, "--coverage", help="Scope: coverage"),
    transaction_type: str = typer.Option(None, "--transaction-type", help="Scope: transaction type"),
    workspace: Path = typer.Option(None, "--workspace", "-w", file_okay=False, help="YAML workspace directory"),
):
    """Rate one request and print the step trail."""
    settings = ensure_initialized()
    setup_logging(verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])

    try:
        body = normalize_body(load_document(payload_file))
    except ValueError as e:
        print_err(str(e))
        raise SystemExit(1)

    scope = dict(body["scope"] or {})
    overrides = {"state": state, "coverage": coverage, "transactionType": transaction_type}
    scope.update({k: v for k, v in overrides.items() if v})

    try:
        service = RatingService(build_providers(settings, workspace), settings=settings)
        result = asyncio.run(service.rate(product_line, body["payload"], scope or None))
    except (FlowNotFoundError, ProviderUnavailableError) as e:
        print_err(e.message)
        raise SystemExit(1)
    except ValueError as e:
        print_err(str(e))
        raise SystemExit(1)

    data = result.model_dump(mode="json", by_alias=True, exclude_none=True)
    if ctx.obj["json"]:
        output_result(data, ctx=ctx)
    else:
        rows = [
            {
                "step": r["stepName"],
                "type": r["stepType"],
                "status": r["status"],
                "ms": r["durationMs"],
                "error": r.get("error", ""),
            }
            for r in data["stepResults"]
        ]
        output_table(rows, ctx=ctx, title=f"{product_line} [{result.correlation_id}]")
        output_result(data["response"], ctx=ctx, title="Response")
        if data["status"] == "completed":
            print_ok(f"Rating completed in {result.total_duration_ms}ms")
        else:
            console.print(f"[red]Rating failed[/red] after {result.total_duration_ms}ms")

    if data["status"] != "completed":
        raise SystemExit(2)
