"""Configuration loading and validation."""

import pytest

from talon.config import AppConfig, ProviderConfig, load_config
from talon.errors import ConfigError

CONFIG = """
log_level: DEBUG
data_dir: {data_dir}
agent:
  max_iterations: 4
  tools: [clock]
providers:
  - id: main
    kind: anthropic
    api_key: ${{TALON_TEST_KEY}}
    models:
      - name: claude-test
        cost_rank: 2
storage:
  db_path: ${{data_dir}}/talon.db
"""


@pytest.fixture
def write_config(tmp_path):
    def _write(body: str):
        path = tmp_path / "config.yaml"
        path.write_text(body, encoding="utf-8")
        return path

    return _write


class TestLoadConfig:
    def test_env_interpolation(self, write_config, tmp_path, monkeypatch):
        monkeypatch.setenv("TALON_TEST_KEY", "sk-secret")
        path = write_config(CONFIG.format(data_dir=tmp_path / "data"))

        config = load_config(path, tmp_path / "missing.env")

        assert config.log_level == "DEBUG"
        assert config.agent.max_iterations == 4
        assert config.agent.tools == ["clock"]
        assert config.providers[0].api_key == "sk-secret"
        assert config.providers[0].has_credentials
        assert config.storage.db_path == f"{tmp_path / 'data'}/talon.db"

    def test_dotenv_file(self, write_config, tmp_path, monkeypatch):
        monkeypatch.delenv("TALON_TEST_KEY", raising=False)
        env = tmp_path / ".env"
        env.write_text("TALON_TEST_KEY=from-dotenv\n", encoding="utf-8")
        path = write_config(CONFIG.format(data_dir="./data"))

        config = load_config(path, env)

        assert config.providers[0].api_key == "from-dotenv"

    def test_unresolved_key_has_no_credentials(self, write_config, tmp_path, monkeypatch):
        monkeypatch.delenv("TALON_TEST_KEY", raising=False)
        path = write_config(CONFIG.format(data_dir="./data"))

        config = load_config(path, tmp_path / "missing.env")

        assert not config.providers[0].has_credentials

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / "missing.env")

    def test_invalid_values(self, write_config, tmp_path):
        path = write_config("agent:\n  max_iterations: 0\n")

        with pytest.raises(ConfigError):
            load_config(path, tmp_path / "missing.env")

    def test_empty_file_gives_defaults(self, write_config, tmp_path):
        config = load_config(write_config(""), tmp_path / "missing.env")

        assert config.providers == []
        assert config.storage.backend == "sqlite"


class TestModels:
    def test_duplicate_provider_ids(self):
        with pytest.raises(ValueError):
            AppConfig(providers=[{"id": "x"}, {"id": "x"}])

    def test_empty_key(self):
        assert not ProviderConfig(id="x").has_credentials
        assert not ProviderConfig(id="x", api_key="").has_credentials
        assert ProviderConfig(id="x", api_key="sk").has_credentials
