"""
Stage checkpoints for the enrichment pipeline.

Each stage writes its output into the work directory and then records itself
as completed in pipeline_state.json. Files are written to a temporary name and
renamed into place so a crash never leaves a half-written checkpoint.
"""

import json
import logging
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

import pandas as pd
from pydantic import BaseModel, Field, ValidationError

from watershed_metrics.config.defaults import STATE_FILE_NAME, VARIABLES_FILE_NAME

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline states."""

    VALIDATING = "validating"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    COMPOSING = "composing"
    DONE = "done"
    FAILED = "failed"


# Working stages in execution order
STAGE_ORDER = [Stage.VALIDATING, Stage.RESOLVING, Stage.FETCHING, Stage.COMPOSING]


class PipelineState(BaseModel):
    """Contents of pipeline_state.json."""

    fingerprint: str
    state: Stage = Stage.VALIDATING
    completed: list[Stage] = Field(default_factory=list)
    invalid_variables: list[str] = Field(default_factory=list)
    error: str | None = None
    unresolved: int = 0  # sites left unresolved by the last resolve
    failed_chunks: int = 0  # StreamCat requests that exhausted their retries
    updated_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def next_stage(self) -> Stage:
        """First working stage not yet completed (DONE when all are)."""
        for stage in STAGE_ORDER:
            if stage not in self.completed:
                return stage
        return Stage.DONE

    def reopen(self, stage: Stage) -> None:
        """Mark stage and every later stage as not completed."""
        later = STAGE_ORDER[STAGE_ORDER.index(stage) :]
        self.completed = [done for done in self.completed if done not in later]


class CheckpointStore:
    """Reads and writes stage outputs in a work directory."""

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = Path(work_dir)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.state_path = self.work_dir / STATE_FILE_NAME

    def path(self, name: str) -> Path:
        return self.work_dir / name

    def _write_text(self, path: Path, text: str) -> None:
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(text, encoding="utf-8")
        tmp_path.replace(path)

    def load_state(self) -> PipelineState | None:
        """Load the manifest, or None if absent or unreadable."""
        if not self.state_path.exists():
            return None
        try:
            return PipelineState.model_validate_json(self.state_path.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable checkpoint manifest {self.state_path}: {e}")
            return None

    def save_state(self, state: PipelineState) -> None:
        state.updated_at = datetime.now(UTC).isoformat()
        self._write_text(self.state_path, state.model_dump_json(indent=2))
        logger.debug(f"Checkpoint: state={state.state.value} completed={[s.value for s in state.completed]}")

    def write_variables(self, valid: list[str], invalid: list[str]) -> Path:
        path = self.path(VARIABLES_FILE_NAME)
        self._write_text(path, json.dumps({"valid": valid, "invalid": invalid}, indent=2))
        return path

    def read_variables(self) -> tuple[list[str], list[str]]:
        data = json.loads(self.path(VARIABLES_FILE_NAME).read_text(encoding="utf-8"))
        return data["valid"], data["invalid"]

    def write_frame(self, name: str, frame: pd.DataFrame) -> Path:
        """Write a DataFrame checkpoint as CSV."""
        path = self.path(name)
        self._write_text(path, frame.to_csv(index=False))
        logger.info(f"Wrote {len(frame)} row(s) to {path}")
        return path

    def read_frame(self, name: str) -> pd.DataFrame:
        """Read a CSV checkpoint, keeping ids and COMIDs as strings."""
        return pd.read_csv(self.path(name), dtype={"site_id": "string", "comid": "string", "status": "string"})

    def has(self, name: str) -> bool:
        return self.path(name).exists()
