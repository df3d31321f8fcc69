"""Rules commands: preview rule outcomes without rating."""

import asyncio
from pathlib import Path

import typer

from rating_orchestrator.cli._app import app
from rating_orchestrator.cli._common import build_providers, ensure_initialized, load_document, setup_logging
from rating_orchestrator.cli._console import console, output_result, output_table, print_err
from rating_orchestrator.errors import ProviderUnavailableError
from rating_orchestrator.rules.engine import RuleEngine

rules_app = typer.Typer(no_args_is_help=True, help="Inspect and preview rules.")
app.add_typer(rules_app, name="rules")


@rules_app.command("dry-run", help="Trace every rule of a product line against a context file.")
def dry_run_cmd(
    ctx: typer.Context,
    product_line: str = typer.Argument(..., help="Product line code"),
    context_file: Path = typer.Option(..., "--context", "-c", exists=True, dir_okay=False, help="JSON or YAML context"),
    phase: str = typer.Option("pre_rating", "--phase", help="pre_rating or post_rating"),
    state: str = typer.Option(None, "--state", help="Scope: state"),
    coverage: str = typer.Option(None, "--coverage", help="Scope: coverage"),
    transaction_type: str = typer.Option(None, "--transaction-type", help="Scope: transaction type"),
    workspace: Path = typer.Option(None, "--workspace", "-w", file_okay=False, help="YAML workspace directory"),
):
    settings = ensure_initialized()
    setup_logging(verbose=ctx.obj["verbose"], quiet=ctx.obj["quiet"])
    obj = ctx.find_root().obj

    try:
        context = load_document(context_file)
    except ValueError as e:
        print_err(str(e))
        raise SystemExit(1)

    scope = {"state": state, "coverage": coverage, "transactionType": transaction_type}
    engine = RuleEngine(build_providers(settings, workspace).rules)
    try:
        result = asyncio.run(engine.dry_run(product_line, scope, phase, context))
    except ProviderUnavailableError as e:
        print_err(e.message)
        raise SystemExit(1)

    data = result.model_dump(mode="json", by_alias=True)
    if obj["json"]:
        output_result(data, ctx=ctx.find_root())
        return

    rows = [{"rule": r["ruleName"], "outcome": "applied", "reason": ""} for r in data["appliedRules"]]
    rows += [{"rule": r["ruleName"], "outcome": "skipped", "reason": r["reason"]} for r in data["skippedRules"]]
    output_table(rows, ctx=ctx.find_root(), title=f"{product_line} rules ({phase})")
    output_result(data["modifiedFields"], ctx=ctx.find_root(), title="Modified fields")
    console.print(f"{data['rulesApplied']} of {data['rulesEvaluated']} rules applied")
