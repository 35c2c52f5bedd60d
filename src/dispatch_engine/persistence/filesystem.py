"""Run directories under the data root holding a JSON summary and CSV tables."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from ..clock import Clock, SystemClock
from ..config import settings

logger = logging.getLogger(__name__)


class FileStorage:
    """Writes each persisted route or batch into its own ``outputs/<prefix>_<timestamp>`` folder."""

    def __init__(self, root: Path | None = None, *, clock: Clock | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.output_root = self.root / "outputs"
        self.clock = clock or SystemClock()

    def write_run(
        self,
        prefix: str,
        summary: Mapping[str, Any],
        tables: Mapping[str, str],
        *,
        run_id: str | None = None,
    ) -> Path:
        """Create a fresh run directory with ``summary.json`` plus one CSV file per table."""

        run_dir = self._run_directory(prefix, run_id)
        with (run_dir / "summary.json").open("w", encoding="utf-8") as handle:
            json.dump(summary, handle, ensure_ascii=False, indent=2, default=str)
        for name, content in tables.items():
            with (run_dir / f"{name}.csv").open("w", encoding="utf-8", newline="") as handle:
                handle.write(content)
        logger.debug(f"Wrote {prefix} run with {len(tables)} table(s) to {run_dir}")
        return run_dir

    def _run_directory(self, prefix: str, run_id: str | None) -> Path:
        timestamp = self.clock.now().strftime("%Y%m%dT%H%M%S%fZ")
        name = f"{prefix}_{timestamp}" if run_id is None else f"{prefix}_{timestamp}_{run_id[:8]}"
        path = self.output_root / name
        # a clash means two runs in the same microsecond without a run id
        path.mkdir(parents=True, exist_ok=False)
        return path
