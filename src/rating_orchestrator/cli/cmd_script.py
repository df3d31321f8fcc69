"""Script commands: run a script once in the sandbox."""

from pathlib import Path

import typer

from rating_orchestrator.cli._app import app
from rating_orchestrator.cli._common import ensure_initialized, load_document, setup_logging
from rating_orchestrator.cli._console import output_result, print_err, print_ok
from rating_orchestrator.sandbox.runner import run_script, validate_script

script_app = typer.Typer(no_args_is_help=True, help="Check and try sandbox scripts.")
app.add_typer(script_app, name="script")


@script_app.command("test", help="Run a script against a request file.")
def script_test_cmd(
    ctx: typer.Context,
    script_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Script body"),
    request_file: Path = typer.Option(None, "--request", "-r", exists=True, dir_okay=False, help="JSON or YAML request"),
    timeout_ms: int = typer.Option(None, "--timeout-ms", help="Wall-clock limit (100-30000)"),
):
    settings = ensure_initialized()
    obj = ctx.find_root().obj
    setup_logging(verbose=obj["verbose"], quiet=obj["quiet"])

    source = script_file.read_text(encoding="utf-8")
    problems = validate_script(source)
    if problems:
        for problem in problems:
            print_err(problem)
        raise SystemExit(1)

    request = load_document(request_file) if request_file else {}
    result = run_script(source, request, timeout_ms=timeout_ms or settings.script_timeout_ms)
    data = {
        "success": result.success,
        "durationMs": result.duration_ms,
        "working": result.working,
        "response": result.response,
        "error": result.error,
    }
    output_result(data, ctx=ctx.find_root())
    if not result.success:
        raise SystemExit(1)
    if not obj["json"]:
        print_ok(f"Script completed in {result.duration_ms}ms")
