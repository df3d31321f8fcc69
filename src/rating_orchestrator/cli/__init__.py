"""CLI package: Typer-based command-line interface.

Usage:
    python -m rating_orchestrator --help
    python -m rating_orchestrator rate HO3 --payload request.json
"""

from rating_orchestrator.cli._app import app

# Register command modules (side-effect imports)
import rating_orchestrator.cli.cmd_rate  # noqa: F401
import rating_orchestrator.cli.cmd_handlers  # noqa: F401
import rating_orchestrator.cli.cmd_rules  # noqa: F401
import rating_orchestrator.cli.cmd_script  # noqa: F401

__all__ = ["app"]
