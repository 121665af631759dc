"""Persistent user settings.

Settings live in ``settings.json`` inside the per-user application folder
(``click.get_app_dir("trawl")``) and provide the defaults every front-end
starts a batch with.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import click
from pydantic import BaseModel, Field, ValidationError

from trawl.common.exceptions import InputError

logger = logging.getLogger(__name__)

APP_NAME = "trawl"
SETTINGS_FILE = "settings.json"


def default_settings_path() -> Path:
    return Path(click.get_app_dir(APP_NAME)) / SETTINGS_FILE


class Settings(BaseModel):
    """User-level defaults.

    Attributes:
        base_output_folder: Root of every mode's output folder.
        headless: Run browsers without a visible window.
        use_proxy: Route browser traffic through ``custom_proxy``.
        custom_proxy: Proxy server, e.g. ``http://host:3128``.
    """

    base_output_folder: Path = Field(
        default_factory=lambda: Path.cwd() / "output"
    )
    headless: bool = True
    use_proxy: bool = False
    custom_proxy: str = ""

    @classmethod
    def load(cls, path: Path | None = None) -> Settings:
        """Read settings, falling back to defaults when the file is missing.

        Raises:
            InputError: If the file exists but cannot be used.
        """
        path = path or default_settings_path()
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return cls.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise InputError(
                f"Unreadable settings file: {e}",
                context={"path": str(path)},
            ) from e

    def save(self, path: Path | None = None) -> Path:
        path = path or default_settings_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Settings saved to {path}")
        return path

    def update(self, key: str, value: Any) -> Settings:
        """Return a copy with one setting changed and validated.

        Raises:
            InputError: If the key is unknown or the value invalid.
        """
        if key not in type(self).model_fields:
            raise InputError(
                f"Unknown setting '{key}'",
                context={"known": ", ".join(type(self).model_fields)},
            )
        data = self.model_dump()
        data[key] = value
        try:
            return type(self).model_validate(data)
        except ValidationError as e:
            raise InputError(f"Invalid value for '{key}': {e}") from e

    def batch_defaults(self) -> dict[str, Any]:
        """Options every batch inherits unless overridden."""
        return {
            "headless": self.headless,
            "use_proxy": self.use_proxy,
            "custom_proxy": self.custom_proxy,
        }
