import pytest

from lumina_stories.config import (
    DEFAULT_LOCAL_URL,
    Config,
    GenerationConfig,
    ProviderConfig,
)


def test_default_config():
    config = Config()
    assert config.provider.provider == "gemini"
    assert config.generation.min_words == 600
    assert config.generation.max_words == 1000
    assert config.generation.continuation_excerpt_chars == 1500
    assert config.log_level == "INFO"


def test_task_routing():
    provider = ProviderConfig.for_provider("openai")
    assert provider.model_for("outline") == "gpt-4o-mini"
    assert provider.model_for("chapter") == "gpt-4o"
    assert provider.temperature_for("chapter") == 0.8
    assert provider.temperature_for("summary") == 0.5


def test_local_provider_defaults():
    provider = ProviderConfig.for_provider("local")
    assert provider.base_url == DEFAULT_LOCAL_URL
    assert provider.api_key == "not-needed"


def test_config_from_yaml_fills_provider_defaults(tmp_path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(f"""
provider:
  provider: openai
  api_key: sk-test
generation:
  min_words: 800
  max_words: 1200
  genre_prompts:
    Horror: You write quiet, creeping dread.
storage:
  library_dir: {tmp_path / "library"}
""")

    config = Config.from_yaml(config_file)
    assert config.provider.provider == "openai"
    assert config.provider.api_key == "sk-test"
    assert config.provider.chapter_model == "gpt-4o"
    assert config.generation.min_words == 800
    assert config.generation.genre_prompts["Horror"].startswith("You write")
    assert config.storage.library_dir == tmp_path / "library"


def test_config_yaml_roundtrip(tmp_path):
    config = Config(generation=GenerationConfig(num_outcomes=4), log_level="DEBUG")
    path = tmp_path / "out.yaml"
    config.to_yaml(path)

    loaded = Config.from_yaml(path)
    assert loaded.generation.num_outcomes == 4
    assert loaded.log_level == "DEBUG"


def test_from_env_without_provider_keeps_base():
    base = Config(log_level="WARNING")
    config = Config.from_env({}, base=base)
    assert config.log_level == "WARNING"
    assert config.provider == base.provider
    assert config is not base


def test_from_env_gemini_key_fallback():
    config = Config.from_env({"AI_PROVIDER": "gemini", "API_KEY": "legacy"})
    assert config.provider.api_key == "legacy"

    config = Config.from_env(
        {"AI_PROVIDER": "gemini", "GEMINI_API_KEY": "new", "API_KEY": "legacy"}
    )
    assert config.provider.api_key == "new"


def test_from_env_local_models():
    config = Config.from_env({
        "AI_PROVIDER": "local",
        "LOCAL_API_URL": "http://gpu-box:8080/v1",
        "LOCAL_MODEL": "qwen-14b, llama-8b",
        "LOCAL_MODEL_CHAPTER": "qwen-72b",
    })
    provider = config.provider
    assert provider.base_url == "http://gpu-box:8080/v1"
    assert provider.outline_model == "qwen-14b"
    assert provider.summary_model == "qwen-14b"
    assert provider.chapter_model == "qwen-72b"


def test_from_env_unknown_provider():
    with pytest.raises(ValueError, match="Unknown AI_PROVIDER"):
        Config.from_env({"AI_PROVIDER": "carrier-pigeon"})
