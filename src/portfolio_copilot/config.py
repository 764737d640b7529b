"""Centralized configuration for the portfolio copilot."""

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}


class VectorStoreConfig(BaseSettings):
    """ChromaDB vector index settings."""

    model_config = SettingsConfigDict(env_prefix="VS_", frozen=True)

    db_path: str = "./chroma_db"
    collection_name: str = "portfolio"
    embedding_model: str = "all-MiniLM-L6-v2"
    top_k: int = Field(default=5, gt=0)


class LLMConfig(BaseSettings):
    """Ollama model settings."""

    model_config = SettingsConfigDict(env_prefix="LLM_", frozen=True)

    host: str = "http://localhost:11434"
    api_key: str | None = None
    model: str = "llama3.2:3b"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, gt=0)
    timeout: float = Field(default=120.0, gt=0)
    max_tool_rounds: int = Field(default=3, ge=1)

    @property
    def is_local(self) -> bool:
        """True when the model host runs on this machine."""
        parsed = urlparse(self.host if "://" in self.host else f"http://{self.host}")
        return (parsed.hostname or "") in _LOCAL_HOSTS

    @property
    def requires_api_key(self) -> bool:
        return not self.is_local


class ServerConfig(BaseSettings):
    """Uvicorn bind settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_", frozen=True)

    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, le=65535)


class AppConfig(BaseSettings):
    """Top-level application configuration."""

    model_config = SettingsConfigDict(frozen=True)

    site_owner: str = "Amine"
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


class AgentConfig(BaseModel):
    """Per-call overrides for the agent defaults.

    Unset fields fall back to ``LLMConfig`` / ``VectorStoreConfig``.
    """

    model_config = ConfigDict(frozen=True)

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_k: int | None = Field(default=None, gt=0)
