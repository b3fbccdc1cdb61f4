from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from typing import Dict, List

DEFAULT_TYPE_PALETTE = {
    "PERSON": "#60a5fa",
    "LOCATION": "#34d399",
    "ORGANIZATION": "#f59e0b",
}

DEFAULT_HIGHLIGHT_PALETTE = {
    "PERSON": "#1e40af",
    "LOCATION": "#059669",
    "ORGANIZATION": "#d97706",
}


class LayoutSettings(BaseModel):
    width: float = 800.0
    height: float = 600.0
    # Placement strategy switches on visible node count.
    circular_max_nodes: int = 50
    grid_max_nodes: int = 200
    grid_spacing: float = 60.0
    random_min_distance: float = 30.0
    random_max_attempts: int = 30
    seed: int = 7
    # Force parameters.
    link_distance: float = 100.0
    link_strength: float = 0.5
    charge_strength: float = -300.0
    center_strength: float = 0.05
    collision_margin: float = 5.0
    alpha: float = 1.0
    alpha_min: float = 0.01
    alpha_decay: float = 0.1
    velocity_decay: float = 0.4
    max_steps: int = 60
    energy_threshold: float = 0.05
    # Re-layout when fewer than this share of visible nodes have a cached position.
    relayout_cached_ratio: float = 0.5
    neighbor_offset: float = 40.0


class NodeStyleSettings(BaseModel):
    base_size: float = 10.0
    max_size: float = 50.0
    palette: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_TYPE_PALETTE))
    highlight_palette: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_HIGHLIGHT_PALETTE)
    )
    default_color: str = "#9ca3af"
    dimmed_opacity: float = 0.2
    link_color: str = "#999"
    link_highlight_color: str = "#ff6b6b"


class ViewportSettings(BaseModel):
    min_zoom: float = 0.1
    max_zoom: float = 4.0
    zoom_step: float = 1.5
    label_zoom_threshold: float = 1.5


class Settings(BaseSettings):
    # App
    app_name: str = "Entity Network API"
    environment: str = Field(default="development")
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Postgres
    postgres_host: str = Field(default="postgres")
    postgres_port: int = Field(default=5432)
    postgres_db: str = Field(default="news")
    postgres_user: str = Field(default="news")
    postgres_password: str = Field(default="news")
    postgres_pool_min_size: int = Field(default=1)
    postgres_pool_max_size: int = Field(default=10)

    # Entity source
    mention_table: str = Field(default="feature_entities")
    mention_batch_size: int = Field(default=1000)

    # Co-occurrence
    cooccurrence_group_warn_size: int = Field(default=200)
    # Above this many mentions the calculator runs in a worker thread.
    cooccurrence_offload_threshold: int = Field(default=20000)

    # Graph session
    snapshot_interval_seconds: float = Field(default=2.5)
    max_sessions: int = Field(default=32)

    layout: LayoutSettings = Field(default_factory=LayoutSettings)
    node_style: NodeStyleSettings = Field(default_factory=NodeStyleSettings)
    viewport: ViewportSettings = Field(default_factory=ViewportSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"


settings = Settings()
