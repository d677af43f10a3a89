from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_BLOCK_SIZE = 32
DEFAULT_READ_BUFFER_SIZE = 16 * 1024 * 1024
DEFAULT_WORKERS = 1
DEFAULT_PROGRESS_FILE = Path("progress_log.txt")
DEFAULT_SAVE_INTERVAL_SECONDS = 1800.0
DEFAULT_PIPE_NAME = "hexpipe"


class PipelineSettings(BaseModel):
    """Validated configuration for one pipeline run."""

    root: Path | None = None
    block_size: int = Field(default=DEFAULT_BLOCK_SIZE, gt=0)
    read_buffer_size: int = Field(default=DEFAULT_READ_BUFFER_SIZE, gt=0)
    workers: int = Field(default=DEFAULT_WORKERS, ge=1)
    progress_file: Path = DEFAULT_PROGRESS_FILE
    save_interval_seconds: float = Field(default=DEFAULT_SAVE_INTERVAL_SECONDS, gt=0)
    pipe_name: str = DEFAULT_PIPE_NAME

    @field_validator("pipe_name")
    @classmethod
    def _pipe_name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("pipe_name must not be empty")
        return value


@dataclass
class EncodeResult:
    """Counters for a single file pushed through the encoder."""

    bytes_read: int = 0
    records: int = 0
    batches: int = 0
    truncated: bool = False


@dataclass
class RunSummary:
    """Aggregate counters reported at the end of a run."""

    queued: int = 0
    skipped: int = 0
    processed: int = 0
    open_failures: int = 0
    read_failures: int = 0
    bytes_read: int = 0
    records: int = 0
    elapsed_seconds: float = 0.0
    unsaved: int = 0
    interrupted: bool = False

    def absorb(self, result: EncodeResult) -> None:
        self.bytes_read += result.bytes_read
        self.records += result.records
