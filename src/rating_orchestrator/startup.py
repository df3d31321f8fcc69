"""Centralized initialization for rating_orchestrator entry points.

Loads ``.env`` from the project root once and builds :class:`Settings`
from the environment. The CLI and tests call ``ensure_initialized()``
rather than reading the environment themselves.
"""

import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from rating_orchestrator.config import Settings

logger = logging.getLogger(__name__)

_settings: Optional[Settings] = None


def _find_project_root(start_path: Optional[Path] = None) -> Path:
    """Walk up from ``start_path`` to the directory holding pyproject.toml."""
    if start_path is None:
        start_path = Path.cwd()
    for parent in [start_path] + list(start_path.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return start_path


def _load_env(project_root: Path) -> bool:
    env_path = project_root / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded .env from {env_path}")
        return True
    logger.debug(f".env not found at {env_path}")
    return False


def ensure_initialized(start_path: Optional[Path] = None) -> Settings:
    """Load ``.env`` and settings on first call; later calls return the cache."""
    global _settings
    if _settings is not None:
        return _settings
    _load_env(_find_project_root(start_path))
    _settings = Settings.from_env()
    return _settings


def reset() -> None:
    """Forget cached settings (tests)."""
    global _settings
    _settings = None
