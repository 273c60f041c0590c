# config.py
"""Configuration settings for the Narrata generation engine.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import os

import structlog
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()

_POLISH_MODES = ("off", "conditional", "always")


class NarrativeSettings(BaseSettings):
    """Full configuration for the Narrata engine."""

    # API and Model Configuration
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = "nope"

    # Base Model Definitions
    LARGE_MODEL: str = "Qwen3-14B"
    SMALL_MODEL: str = "Qwen3-4B"
    PLANNING_MODEL: str | None = None
    POLISH_MODEL: str | None = None
    LARGE_MODEL_MAX_TOKENS: int = 32000
    SMALL_MODEL_MAX_TOKENS: int = 8192

    # Temperature Settings
    TEMPERATURE_DEFAULT: float = 0.7
    TEMPERATURE_PATCH: float = 0.2
    TEMPERATURE_REVISION: float = 0.2
    TEMPERATURE_LONG_POLISH: float = 0.3
    TEMPERATURE_ASSEMBLY: float = 0.6
    TEMPERATURE_CONTINUATION: float = 0.8
    TEMPERATURE_LENGTH_CORRECTION: float = 0.3
    TEMPERATURE_HOOK: float = 0.5

    # LLM Call Settings
    LLM_RETRY_ATTEMPTS: int = 8
    LLM_RETRY_DELAY_SECONDS: float = 1.0
    LLM_RETRY_JITTER_SECONDS: float = 0.5
    HTTPX_TIMEOUT: float = 1800.0

    # Mode selection
    LONG_MODE_THRESHOLD: int = 9000
    ACT_SEGMENTATION_THRESHOLD: int = 2200
    WORDS_PER_ACT: int = 3000
    DEFAULT_WORDS_PER_MINUTE: int = 145

    # Corrective passes
    POLISH_MODE: str = "conditional"
    HOOK_ENFORCE: bool = False
    STYLE_POLICY: bool = False
    MAX_AVG_SENTENCE: int = Field(16, alias="SENT_LEN_MAX")
    MAX_RHETORICAL_PER_CHAPTER: int = Field(1, alias="RQUESTIONS_PER_SCENE_MAX")
    ALLOW_LONG_DIALOGUE_TURNS: int | None = None
    LENGTH_TOLERANCE_PERCENT: float = 10.0
    LENGTH_CORRECTION_MIN_WORDS: int = 500
    LENGTH_CORRECTOR_FLOOR: int = 100
    EXTREME_REPETITION_FACTOR: float = 10.0
    POV_TENSE: str = "auto"

    # Diagnostic artifacts
    ENABLE_LLM_ARTIFACTS: bool = False
    LLM_ARTIFACTS_DIR: str = "llm_artifacts"
    ARTIFACT_MAX_CHARS: int = 200000
    ARTIFACT_RETENTION_DAYS: int = 7

    # Output
    BASE_OUTPUT_DIR: str = "narrative_output"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="AGENT_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "narrata_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def set_dynamic_model_defaults(self) -> NarrativeSettings:
        if self.PLANNING_MODEL is None:
            self.PLANNING_MODEL = self.LARGE_MODEL
        if self.POLISH_MODEL is None:
            self.POLISH_MODEL = self.SMALL_MODEL
        if self.POLISH_MODE not in _POLISH_MODES:
            logger.warning(
                "Unknown POLISH_MODE; falling back to 'conditional'.",
                polish_mode=self.POLISH_MODE,
            )
            self.POLISH_MODE = "conditional"
        return self

    @property
    def length_tolerance(self) -> float:
        return self.LENGTH_TOLERANCE_PERCENT / 100

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", populate_by_name=True, extra="ignore"
    )


settings = NarrativeSettings()


class _TemperaturesConfig:
    DEFAULT: float
    PATCH: float
    REVISION: float
    LONG_POLISH: float
    ASSEMBLY: float
    CONTINUATION: float
    LENGTH_CORRECTION: float
    HOOK: float


Temperatures = _TemperaturesConfig()
Temperatures.DEFAULT = settings.TEMPERATURE_DEFAULT
Temperatures.PATCH = settings.TEMPERATURE_PATCH
Temperatures.REVISION = settings.TEMPERATURE_REVISION
Temperatures.LONG_POLISH = settings.TEMPERATURE_LONG_POLISH
Temperatures.ASSEMBLY = settings.TEMPERATURE_ASSEMBLY
Temperatures.CONTINUATION = settings.TEMPERATURE_CONTINUATION
Temperatures.LENGTH_CORRECTION = settings.TEMPERATURE_LENGTH_CORRECTION
Temperatures.HOOK = settings.TEMPERATURE_HOOK

LLM_ARTIFACTS_DIR = os.path.join(settings.BASE_OUTPUT_DIR, settings.LLM_ARTIFACTS_DIR)

os.makedirs(settings.BASE_OUTPUT_DIR, exist_ok=True)
