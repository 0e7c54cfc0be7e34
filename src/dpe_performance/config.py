"""Runtime settings loaded from the environment."""
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class Settings(BaseModel):
    """Engine settings; values come from DPE_* environment variables."""
    data_dir: Path = Path("data")
    max_concurrent: int = Field(default=16, ge=1, le=64)
    fetch_timeout: float = Field(default=8.0, gt=0)
    fetch_retries: int = Field(default=2, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "data_dir": os.getenv("DPE_DATA_DIR"),
            "max_concurrent": os.getenv("DPE_MAX_CONCURRENT"),
            "fetch_timeout": os.getenv("DPE_FETCH_TIMEOUT"),
            "fetch_retries": os.getenv("DPE_FETCH_RETRIES"),
            "log_level": os.getenv("DPE_LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v})

    @property
    def hierarchy_file(self) -> Path:
        return self.data_dir / "hierarchy.json"

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / "snapshots"

    @property
    def reports_dir(self) -> Path:
        return self.data_dir / "reports"
