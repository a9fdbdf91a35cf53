"""Persist finished archives."""

import logging
from pathlib import Path
from typing import Protocol

log = logging.getLogger(__name__)


class OutputSink(Protocol):
    """Accepts a finished archive and its suggested relative path."""

    def save(self, data: bytes, relative_path: str) -> bool: ...


class DirectorySink:
    """Write archives below an output directory."""

    def __init__(self, output_dir: Path):
        """Initialize the sink.

        Args:
            output_dir: Directory that receives ``<folder>/<file>.epub``
        """
        self.output_dir = output_dir
        self.last_path: Path | None = None

    def save(self, data: bytes, relative_path: str) -> bool:
        """Write ``data`` to ``output_dir / relative_path``."""
        filepath = self.output_dir / relative_path
        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            filepath.write_bytes(data)
        except OSError as e:
            log.error("Unable to write %s: %s", filepath, e)
            return False
        self.last_path = filepath
        return True
