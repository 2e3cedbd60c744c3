"""Configuration management for Relay Memory."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.relay-memory/config.yaml").expanduser()
DEFAULT_DB_FILENAME = ".memory.sqlite"
LOCAL_CONFIG_FILENAME = "config.yaml"


class WorkspaceConfig(BaseModel):
    """Indexed workspace root."""

    path: str = "."


class StorageConfig(BaseModel):
    """SQLite storage location. Empty path means `<workspace>/.memory.sqlite`."""

    path: str = ""


class EmbeddingConfig(BaseModel):
    """Embedding provider configuration."""

    provider: Literal["http", "ollama", "local_hash", "none"] = "http"
    model: str = "doubao-embedding-vision-250615"
    endpoint: str = "https://ark.cn-beijing.volces.com/api/v3/embeddings"
    api_key: str = ""
    ollama_base_url: str = "http://127.0.0.1:11434"
    request_timeout_seconds: int = 30
    max_retries: int = 2
    retry_backoff_seconds: float = 1.0
    max_input_chars: int = 1024


class IndexingConfig(BaseModel):
    """Workspace scan and chunking configuration."""

    include_extensions: list[str] = [
        ".md",
        ".txt",
        ".html",
        ".mdc",
        ".json",
        ".csv",
        ".tsv",
        ".xml",
        ".yaml",
        ".yml",
        ".toml",
    ]
    exclude_dirs: list[str] = [
        ".git",
        ".cursor",
        "node_modules",
        "sessions",
        "inbox",
        "relay-bot",
        "vector-index",
        "dist",
        "build",
        "__pycache__",
    ]
    exclude_files: list[str] = [
        "package-lock.json",
        "pnpm-lock.yaml",
        ".DS_Store",
        ".sessions.json",
        ".memory.sqlite",
        ".memory.sqlite-shm",
        ".memory.sqlite-wal",
    ]
    max_file_bytes: int = 100 * 1024
    chunk_max_chars: int = 600
    chunk_overlap_lines: int = 3
    min_chunk_chars: int = 20


class SearchConfig(BaseModel):
    """Hybrid search configuration."""

    top_k: int = 5
    min_score: float = 0.3
    context_min_score: float = 0.25
    context_snippets: int = 3
    snippet_chars: int = 400
    vector_weight: float = 0.7
    text_weight: float = 0.3
    freshness_seconds: int = 600
    lexical_engine: Literal["auto", "fts5", "substring"] = "auto"
    lexical_candidate_factor: int = 4


class JournalConfig(BaseModel):
    """Daily journal and session log configuration."""

    memory_dir: str = "memory"
    sessions_dir: str = "sessions"
    daily_chars: int = 1200
    long_term_chars: int = 2000
    session_content_chars: int = 8000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Relay Memory."""

    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embeddings: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    journal: JournalConfig = Field(default_factory=JournalConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="RELAY_MEMORY_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration; pydantic-settings applies env overrides."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve workspace path, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.workspace.path).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()

    def resolved_db_path(self, workspace_path: Path | None = None) -> Path:
        """Resolve the SQLite path, defaulting to a dotfile inside the workspace."""
        if self.storage.path.strip():
            return Path(self.storage.path).expanduser().resolve()
        workspace = workspace_path or self.resolved_workspace_path()
        return workspace / DEFAULT_DB_FILENAME


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
