import os
from dataclasses import dataclass
from pathlib import Path


def _load_local_dotenv() -> None:
    """
    在应用启动时加载项目根目录 `.env` 到进程环境变量。

    规则：
    1) 仅在当前环境变量不存在时写入，避免覆盖容器/系统显式注入值。
    2) 支持常见 `KEY=VALUE` 与 `export KEY=VALUE` 写法。
    3) 忽略空行与注释行（以 `#` 开头）。
    """
    env_file = Path(__file__).resolve().parents[2] / ".env"
    if not env_file.exists():
        return

    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if not key:
            continue
        os.environ.setdefault(key, value)


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    repository_root_dir: Path
    sqlite_db_path: Path
    merge_status_min_latency_ms: int
    merge_dialog_idle_ttl_seconds: int


def _resolve_data_dir() -> Path:
    raw_path = os.getenv("DATA_DIR", "./data")
    data_dir = Path(raw_path).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def _resolve_repository_root(data_dir: Path) -> Path:
    raw_path = os.getenv("REPOSITORY_ROOT_DIR")
    if raw_path:
        root_path = Path(raw_path).expanduser().resolve()
    else:
        root_path = (data_dir / "repositories").resolve()
    root_path.mkdir(parents=True, exist_ok=True)
    return root_path


def _resolve_sqlite_db_path(data_dir: Path) -> Path:
    db_dir = (data_dir / "db").resolve()
    db_dir.mkdir(parents=True, exist_ok=True)
    return (db_dir / "app.db").resolve()


def _resolve_min_latency_ms() -> int:
    raw_value = os.getenv("MERGE_STATUS_MIN_LATENCY_MS", "500").strip()
    try:
        value = int(raw_value)
    except ValueError:
        return 500
    return max(value, 0)


def _resolve_dialog_idle_ttl_seconds() -> int:
    raw_value = os.getenv("MERGE_DIALOG_IDLE_TTL_SECONDS", "3600").strip()
    try:
        value = int(raw_value)
    except ValueError:
        return 3600
    return max(value, 0)


_load_local_dotenv()
_data_dir = _resolve_data_dir()
settings = Settings(
    data_dir=_data_dir,
    repository_root_dir=_resolve_repository_root(_data_dir),
    sqlite_db_path=_resolve_sqlite_db_path(_data_dir),
    merge_status_min_latency_ms=_resolve_min_latency_ms(),
    merge_dialog_idle_ttl_seconds=_resolve_dialog_idle_ttl_seconds(),
)
