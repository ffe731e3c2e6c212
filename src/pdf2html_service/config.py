import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_STEP_DELAYS = (0.2, 0.8, 0.0, 0.6, 0.0)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def _parse_delays(raw: str) -> tuple[float, ...]:
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    delays = tuple(float(p) for p in parts)
    if len(delays) != len(DEFAULT_STEP_DELAYS):
        raise ValueError(f"STEP_DELAYS needs {len(DEFAULT_STEP_DELAYS)} values, got {len(delays)}")
    if any(d < 0 for d in delays):
        raise ValueError("STEP_DELAYS values must be non-negative")
    return delays


@dataclass
class Settings:
    """Runtime configuration for the API process.

    Built once at startup (usually via `from_env`) and handed to
    `create_app`; nothing reads the environment after that.
    """

    data_dir: Path = Path("./data")
    public_base_url: str = "http://localhost:8080"
    max_upload_mb: int = 50
    job_timeout_sec: float = 60.0
    step_delays: tuple[float, ...] = field(default=DEFAULT_STEP_DELAYS)
    host: str = "0.0.0.0"
    port: int = 8080
    reload: bool = True
    log_level: str = "INFO"

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def storage_dir(self) -> Path:
        return self.data_dir / "storage"

    @property
    def tokens_path(self) -> Path:
        return self.data_dir / "auth" / "tokens.json"

    @classmethod
    def from_env(cls) -> "Settings":
        delays_raw = os.getenv("STEP_DELAYS")
        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "./data")).resolve(),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8080").rstrip("/"),
            max_upload_mb=int(os.getenv("MAX_UPLOAD_MB", "50")),
            job_timeout_sec=float(os.getenv("JOB_TIMEOUT_SEC", "60")),
            step_delays=_parse_delays(delays_raw) if delays_raw else DEFAULT_STEP_DELAYS,
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8080")),
            # Enable reload in dev unless explicitly disabled
            reload=_env_flag("RELOAD", "true"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
