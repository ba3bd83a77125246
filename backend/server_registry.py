"""
Backend registry backed by servers.json.

Only the read side lives here; adding, editing and toggling servers is handled
elsewhere and simply rewrites the file.
"""
import json
import logging
from pathlib import Path
from typing import Optional

from config import SERVERS_FILE
from monitor_schema import BackendDescriptor

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Ordered list of configured backends, re-read on every call."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else SERVERS_FILE

    def _read_entries(self) -> list[dict]:
        if self.path.is_dir():
            logger.error(f"Servers file path is a directory, cannot use as config: {self.path}")
            return []

        if not self.path.exists():
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text("[]", encoding="utf-8")
                logger.info(f"Created empty servers file at {self.path}")
            except OSError as e:
                logger.error(f"Failed to create servers file {self.path}: {e}")
            return []

        try:
            raw = self.path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw.strip() else []
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read servers file {self.path}: {e}")
            return []

        if not isinstance(data, list):
            logger.error(f"Servers file {self.path} must contain a JSON list, got {type(data).__name__}")
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def list_all(self) -> list[BackendDescriptor]:
        descriptors = []
        for entry in self._read_entries():
            descriptor = BackendDescriptor.from_dict(entry)
            if not descriptor.base_url:
                logger.warning(f"Skipping server entry without baseUrl: {descriptor.name}")
                continue
            descriptors.append(descriptor)
        return descriptors

    def list_enabled(self) -> list[BackendDescriptor]:
        """Enabled backends in configured order."""
        return [d for d in self.list_all() if d.enabled]
