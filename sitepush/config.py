"""Single source of truth for process-level defaults.

Values come from an optional ``.env`` file (``SITEPUSH_ENV_FILE``, default
``.env`` in the project root), overridden by ``SITEPUSH_*`` environment
variables. Per-target settings live in the JSON settings document instead.
"""

import os
from pathlib import Path

from dotenv import dotenv_values

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def load_env(dotenv_path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file if present, then apply ``SITEPUSH_*`` env vars.

    Args:
        dotenv_path: Path to an unencrypted .env file. A missing file is fine.

    Returns:
        Dictionary of key-value pairs.
    """
    path = Path(dotenv_path)
    values: dict[str, str | None] = dict(dotenv_values(path)) if path.is_file() else {}
    values.update({k: v for k, v in os.environ.items() if k.startswith("SITEPUSH_")})
    return values


_env = load_env(os.environ.get("SITEPUSH_ENV_FILE", PROJECT_ROOT / ".env"))

SITEPUSH_SETTINGS: str = _env.get("SITEPUSH_SETTINGS") or ""
SITEPUSH_LOG_LEVEL: str = (_env.get("SITEPUSH_LOG_LEVEL") or "INFO").upper()
SITEPUSH_EXAMPLE_SETTINGS: str = _env.get("SITEPUSH_EXAMPLE_SETTINGS") or "example_settings.json"
