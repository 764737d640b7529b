"""Tests for configuration module."""

import pytest
from pydantic import ValidationError

from portfolio_copilot.config import (
    AgentConfig,
    AppConfig,
    LLMConfig,
    ServerConfig,
    VectorStoreConfig,
)


class TestVectorStoreConfig:
    def test_defaults(self) -> None:
        c = VectorStoreConfig()
        assert c.db_path == "./chroma_db"
        assert c.collection_name == "portfolio"
        assert c.top_k == 5

    def test_rejects_zero_top_k(self) -> None:
        with pytest.raises(ValidationError):
            VectorStoreConfig(top_k=0)

    def test_reads_env(self, monkeypatch) -> None:
        monkeypatch.setenv("VS_COLLECTION_NAME", "resume")
        monkeypatch.setenv("VS_TOP_K", "8")
        c = VectorStoreConfig()
        assert c.collection_name == "resume"
        assert c.top_k == 8

    def test_is_frozen(self) -> None:
        c = VectorStoreConfig()
        with pytest.raises(ValidationError):
            c.top_k = 10


class TestLLMConfig:
    def test_defaults(self) -> None:
        c = LLMConfig()
        assert c.host == "http://localhost:11434"
        assert c.api_key is None
        assert c.temperature == 0.7
        assert c.max_tool_rounds == 3

    @pytest.mark.parametrize("temperature", [-0.1, 2.1])
    def test_rejects_out_of_range_temperature(self, temperature) -> None:
        with pytest.raises(ValidationError):
            LLMConfig(temperature=temperature)

    @pytest.mark.parametrize("temperature", [0.0, 2.0])
    def test_accepts_temperature_bounds(self, temperature) -> None:
        assert LLMConfig(temperature=temperature).temperature == temperature

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValidationError):
            LLMConfig(timeout=0)

    @pytest.mark.parametrize(
        "host", ["http://localhost:11434", "http://127.0.0.1:11434", "localhost:11434"]
    )
    def test_local_host_needs_no_key(self, host) -> None:
        c = LLMConfig(host=host)
        assert c.is_local
        assert not c.requires_api_key

    def test_remote_host_needs_key(self) -> None:
        c = LLMConfig(host="https://ollama.com")
        assert not c.is_local
        assert c.requires_api_key

    def test_reads_env(self, monkeypatch) -> None:
        monkeypatch.setenv("LLM_MODEL", "qwen3:4b")
        monkeypatch.setenv("LLM_API_KEY", "secret")
        c = LLMConfig()
        assert c.model == "qwen3:4b"
        assert c.api_key == "secret"


class TestServerConfig:
    def test_defaults(self) -> None:
        c = ServerConfig()
        assert c.host == "127.0.0.1"
        assert c.port == 8000

    def test_rejects_invalid_port(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=70000)


class TestAppConfig:
    def test_nested_defaults(self) -> None:
        c = AppConfig()
        assert c.site_owner == "Amine"
        assert isinstance(c.vector_store, VectorStoreConfig)
        assert isinstance(c.llm, LLMConfig)

    def test_custom_nested(self) -> None:
        c = AppConfig(llm=LLMConfig(model="mistral"))
        assert c.llm.model == "mistral"


class TestAgentConfig:
    def test_all_optional(self) -> None:
        c = AgentConfig()
        assert c.model is None
        assert c.temperature is None
        assert c.top_k is None

    def test_validates_ranges(self) -> None:
        with pytest.raises(ValidationError):
            AgentConfig(temperature=3)
        with pytest.raises(ValidationError):
            AgentConfig(top_k=0)

    def test_equality(self) -> None:
        assert AgentConfig(model="a", top_k=2) == AgentConfig(model="a", top_k=2)
