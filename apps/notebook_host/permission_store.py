"""
Host configuration and the external file access permission.

Configuration is a flat JSON object. It is loaded once and every update
rewrites the file through a temporary sibling followed by an atomic rename,
so a crash mid-write never leaves a truncated file behind. Without a path
the store is memory-only (tests, ephemeral sessions).
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any

from libs.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ALLOW_EXTERNAL_FILE_ACCESS = "allowExternalFileAccess"


class ConfigurationStore:
    """
    Persisted key/value configuration.

    Attributes:
        path: JSON file backing the store, or None for memory-only
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else None
        self._values: dict[str, Any] = {}
        self._lock = Lock()
        if self.path is not None:
            self._load()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def update(self, key: str, value: Any) -> None:
        """Set ``key`` and persist the whole configuration.

        Raises:
            ConfigurationError: If the value is not JSON-serializable or the
                file cannot be written
        """
        if not key:
            raise ConfigurationError("Configuration key cannot be empty")
        with self._lock:
            values = {**self._values, key: value}
            self._persist(values)
            self._values = values
        logger.info("configuration_updated", extra={"key": key})

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def _load(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                "configuration_load_failed", extra={"path": str(self.path), "error": str(exc)}
            )
            return
        if not isinstance(data, dict):
            logger.warning("configuration_invalid_format", extra={"path": str(self.path)})
            return
        self._values = data

    def _persist(self, values: dict[str, Any]) -> None:
        if self.path is None:
            return
        try:
            payload = json.dumps(values, indent=2, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Configuration is not JSON-serializable: {exc}") from exc

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self.path)
        except OSError as exc:
            raise ConfigurationError(f"Failed to write configuration to {self.path}: {exc}") from exc


class PermissionStore:
    """Process-wide permission to read files outside the sandbox without asking."""

    def __init__(self, configuration: ConfigurationStore) -> None:
        self._configuration = configuration

    @property
    def allow_external_file_access(self) -> bool:
        return bool(self._configuration.get(ALLOW_EXTERNAL_FILE_ACCESS, False))

    def remember_allow(self) -> None:
        self._configuration.update(ALLOW_EXTERNAL_FILE_ACCESS, True)

    def set(self, allowed: bool) -> None:
        self._configuration.update(ALLOW_EXTERNAL_FILE_ACCESS, bool(allowed))
