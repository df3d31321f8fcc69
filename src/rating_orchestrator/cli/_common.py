"""Shared CLI plumbing: logging, settings, collaborators and input files."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from rich.logging import RichHandler

from rating_orchestrator.cli._console import console
from rating_orchestrator.config import Settings
from rating_orchestrator.providers.http import build_http_providers
from rating_orchestrator.providers.protocol import Providers
from rating_orchestrator.providers.workspace import WorkspaceStore
from rating_orchestrator.startup import ensure_initialized as _ensure_initialized

logger = logging.getLogger(__name__)


def ensure_initialized() -> Settings:
    """Load ``.env`` and return the process settings."""
    return _ensure_initialized()


def setup_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging with Rich handler."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_providers(settings: Settings, workspace: Optional[Path] = None) -> Providers:
    """YAML workspace collaborators when a workspace is given, else the HTTP services."""
    root = workspace or settings.workspace
    if root is not None:
        logger.info(f"Using workspace {root}")
        return WorkspaceStore.from_workspace(root).providers()
    return build_http_providers(settings)


def load_document(path: Path) -> Dict[str, Any]:
    """Read a JSON or YAML object from ``path``.

    Raises:
        ValueError: If the file does not hold an object.
    """
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain an object")
    return data
