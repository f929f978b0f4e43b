"""Configuration management using Pydantic Settings."""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Graph API client (dashboard side of the load/save/publish contract)
    graph_api_base_url: str = "http://localhost:3000/api/memory"
    graph_api_timeout: float = 30.0
    graph_api_retries: int = Field(
        default=2,
        description="Retries for idempotent GET requests against the graph endpoint"
    )

    # Workspace layout (service side)
    workspace_dir: Path = Field(
        default=Path.home() / ".openclaw" / "workspace",
        description="Agent workspace holding MEMORY.md and the memory/ directory"
    )
    memory_dir_name: str = "memory"
    graph_json_name: str = "knowledge-graph.json"
    graph_markdown_name: str = "knowledge-graph.md"
    memory_md_name: str = "MEMORY.md"

    # Telemetry collection
    source_document_limit: int = 24
    source_document_max_chunks: int = 140
    chat_log_dir: Path | None = Field(
        default=None,
        description="Directory of per-session JSONL chat transcripts (disabled when unset)"
    )
    chat_session_limit: int = 8
    chat_messages_per_session: int = 50

    # Bootstrap
    bootstrap_max_files: int = 30
    bootstrap_max_chars: int = 11000
    bootstrap_facts_per_file: int = 24

    # LLM entity extraction for bootstrap (OpenAI-compatible endpoint)
    llm_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("llm_api_key", "openai_api_key"),
        description="Without a key, bootstrap uses deterministic markdown extraction"
    )
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_timeout: float = 25.0
    llm_max_tokens: int = 4000
    llm_max_input_chars: int = 8000

    # Best-effort reindex after save/publish
    reindex_command: list[str] = Field(
        default_factory=lambda: ["openclaw", "memory", "index"],
        description="Command run after save/publish to refresh the memory index"
    )
    reindex_timeout: float = 45.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False
    api_prefix: str = "/api/memory"

    @property
    def memory_dir(self) -> Path:
        return self.workspace_dir / self.memory_dir_name

    @property
    def graph_json_path(self) -> Path:
        return self.memory_dir / self.graph_json_name

    @property
    def graph_markdown_path(self) -> Path:
        return self.memory_dir / self.graph_markdown_name

    @property
    def memory_md_path(self) -> Path:
        return self.workspace_dir / self.memory_md_name


def get_dev_settings() -> Settings:
    """Get development environment settings."""
    return Settings(
        graph_api_base_url="http://localhost:8000/api/memory",
        api_debug=True,
    )


def get_test_settings(workspace_dir: Path | None = None) -> Settings:
    """Get test environment settings.

    Reindexing and LLM extraction are disabled so tests never shell out
    or call a model.
    """
    return Settings(
        workspace_dir=workspace_dir or Path("/tmp/mission-control-test"),
        chat_log_dir=None,
        reindex_command=[],
        llm_api_key=None,
        graph_api_retries=0,
    )


# Global settings instance
settings = Settings()
