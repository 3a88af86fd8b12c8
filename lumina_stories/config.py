"""Configuration models for the story generator.

The configuration is built once at process start (from YAML and/or the
environment) and passed by reference into the gateway and the session.
Nothing below the CLI reads the environment directly.
"""

from pathlib import Path
from typing import Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

Provider = Literal["gemini", "openai", "local"]

DEFAULT_MODELS: dict[str, dict[str, str]] = {
    "gemini": {
        "outline": "gemini-3-flash-preview",
        "chapter": "gemini-3-pro-preview",
        "summary": "gemini-3-flash-preview",
    },
    "openai": {
        "outline": "gpt-4o-mini",
        "chapter": "gpt-4o",
        "summary": "gpt-4o-mini",
    },
    "local": {
        "outline": "local-model",
        "chapter": "local-model",
        "summary": "local-model",
    },
}

DEFAULT_LOCAL_URL = "http://localhost:1234/v1"


class ProviderConfig(BaseModel):
    provider: Provider = Field(default="gemini")
    api_key: str = Field(default="")
    base_url: Optional[str] = Field(default=None)
    outline_model: str = Field(default=DEFAULT_MODELS["gemini"]["outline"])
    chapter_model: str = Field(default=DEFAULT_MODELS["gemini"]["chapter"])
    summary_model: str = Field(default=DEFAULT_MODELS["gemini"]["summary"])
    outline_temperature: float = Field(default=0.7, ge=0, le=2)
    chapter_temperature: float = Field(default=0.8, ge=0, le=2)
    summary_temperature: float = Field(default=0.5, ge=0, le=2)
    top_p: float = Field(default=0.95, gt=0, le=1)
    max_output_tokens: int = Field(default=8192, gt=0)

    @classmethod
    def for_provider(cls, provider: Provider, **overrides) -> "ProviderConfig":
        """Defaults for a provider, with per-task model names filled in."""
        models = DEFAULT_MODELS[provider]
        values = {
            "provider": provider,
            "outline_model": models["outline"],
            "chapter_model": models["chapter"],
            "summary_model": models["summary"],
        }
        if provider == "local":
            values["base_url"] = DEFAULT_LOCAL_URL
            values["api_key"] = "not-needed"
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def model_for(self, task: str) -> str:
        return {
            "outline": self.outline_model,
            "chapter": self.chapter_model,
            "summary": self.summary_model,
        }[task]

    def temperature_for(self, task: str) -> float:
        return {
            "outline": self.outline_temperature,
            "chapter": self.chapter_temperature,
            "summary": self.summary_temperature,
        }[task]


class GenerationConfig(BaseModel):
    continuation_excerpt_chars: int = Field(default=1500, ge=0)
    min_words: int = Field(default=600, gt=0)
    max_words: int = Field(default=1000, gt=0)
    num_outcomes: int = Field(default=3, gt=0)
    autosave_delay_seconds: float = Field(default=2.0, ge=0)
    genre_prompts: dict[str, str] = Field(default_factory=dict)


class StorageConfig(BaseModel):
    library_dir: Path = Field(default=Path("libraries"))


class Config(BaseModel):
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = Field(default="INFO")

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        provider = data.get("provider")
        if isinstance(provider, dict) and "provider" in provider:
            # Fill model defaults for the chosen provider before overrides.
            name = provider["provider"]
            base = ProviderConfig.for_provider(name).model_dump()
            base.update(provider)
            data["provider"] = base
        return cls(**data)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str], base: Optional["Config"] = None
    ) -> "Config":
        """Overlay provider settings from an environment mapping.

        Recognizes AI_PROVIDER, GEMINI_API_KEY / API_KEY, OPENAI_API_KEY,
        LOCAL_API_URL, LOCAL_API_KEY and LOCAL_MODEL[_OUTLINE|_CHAPTER|_SUMMARY].
        LOCAL_MODEL may be a comma-separated list; the first entry wins.
        """
        config = base.model_copy(deep=True) if base else cls()
        name = environ.get("AI_PROVIDER")
        if not name:
            return config
        if name not in DEFAULT_MODELS:
            raise ValueError(f"Unknown AI_PROVIDER: {name}")

        if name == "gemini":
            provider = ProviderConfig.for_provider(
                "gemini",
                api_key=environ.get("GEMINI_API_KEY") or environ.get("API_KEY"),
            )
        elif name == "openai":
            provider = ProviderConfig.for_provider(
                "openai", api_key=environ.get("OPENAI_API_KEY")
            )
        else:
            models = [
                m.strip()
                for m in environ.get("LOCAL_MODEL", "").split(",")
                if m.strip()
            ]
            default_model = models[0] if models else None
            provider = ProviderConfig.for_provider(
                "local",
                base_url=environ.get("LOCAL_API_URL"),
                api_key=environ.get("LOCAL_API_KEY"),
                outline_model=environ.get("LOCAL_MODEL_OUTLINE") or default_model,
                chapter_model=environ.get("LOCAL_MODEL_CHAPTER") or default_model,
                summary_model=environ.get("LOCAL_MODEL_SUMMARY") or default_model,
            )
        config.provider = provider
        return config

    def to_yaml(self, path: Path):
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)
