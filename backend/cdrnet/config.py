from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    project_root: Path = BASE_PROJECT_ROOT
    storage_dir: Path = project_root / "storage"
    sqlite_path: Path = storage_dir / "events.db"
    log_level: str = "INFO"

    # Graph builder
    network_default_min_edge_weight: int = 10
    network_default_limit_nodes: int = 500
    network_max_nodes_before_trim: int = 20000
    network_forced_trim_limit: int = 1000
    network_edge_duration_weight: float = 0.0
    network_louvain_resolution: float = 1.0
    network_louvain_seed: int = 42
    network_community_top_nodes: int = 10

    # Session
    network_top_contacts: int = 10
    graph_api_base_url: str = "http://localhost:8000"

    # Layout
    layout_canvas_width: int = 1000
    layout_canvas_height: int = 700
    layout_fps: int = 60
    layout_exact_repulsion_limit: int = 800
    layout_frame_budget_ms: float = 16.0

    model_config = SettingsConfigDict(
        env_file=str(BASE_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.storage_dir.mkdir(parents=True, exist_ok=True)
    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return settings
