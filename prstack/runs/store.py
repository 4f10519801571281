"""Persist run records as JSON files."""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from .models import RunRecord

logger = logging.getLogger(__name__)


class RunStore:
    """One `<run_id>.json` file per run under a state directory."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def _path(self, run_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in run_id)
        return self.state_dir / f"{safe}.json"

    def save(self, record: RunRecord) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        data = record.model_dump_json(by_alias=True, indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.state_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(data)
            os.replace(tmp, self._path(record.run_id))
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def load(self, run_id: str) -> Optional[RunRecord]:
        path = self._path(run_id)
        if not path.exists():
            return None
        return RunRecord.model_validate_json(path.read_text())

    def load_all(self) -> List[RunRecord]:
        """Load every readable record, skipping corrupt files."""
        if not self.state_dir.is_dir():
            return []
        records = []
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                records.append(RunRecord.model_validate_json(path.read_text()))
            except (OSError, ValidationError) as e:
                logger.warning(f"Skipping unreadable run record {path}: {e}")
        return records
