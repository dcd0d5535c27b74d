# SpendCatalog/config/settings.py

import os
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
ENV_FILE_PATH = os.path.join(PROJECT_ROOT, '.env')


class Settings(BaseSettings):
    # Embedded analytic store. ``:memory:`` keeps everything for the process lifetime only.
    duckdb_path: str = Field(default=":memory:", env="DUCKDB_PATH")

    # OpenAI-compatible chat completions endpoint (Ollama by default)
    llm_base_url: str = Field(
        default="http://127.0.0.1:11434", env="LLM_BASE_URL"
    )
    llm_model: str = Field(default="gpt-oss:20b", env="LLM_MODEL")
    llm_api_key: Optional[str] = Field(default=None, env="LLM_API_KEY")
    llm_timeout: int = Field(default=120, env="LLM_TIMEOUT")
    llm_max_retries: int = Field(default=2, env="LLM_MAX_RETRIES")
    llm_retry_backoff_seconds: float = Field(
        default=2.0, env="LLM_RETRY_BACKOFF_SECONDS"
    )
    llm_temperature: float = Field(default=0.2, env="LLM_TEMPERATURE")

    # Catalogue construction
    catalog_batch_size: int = Field(default=120, env="CATALOG_BATCH_SIZE")
    catalog_prompt_char_limit: int = Field(
        default=12000,
        env="CATALOG_PROMPT_CHAR_LIMIT",
        description="Upper bound on the serialized batch items embedded in a classification prompt.",
    )
    catalog_fallback_category: str = Field(
        default="Other", env="CATALOG_FALLBACK_CATEGORY"
    )
    catalog_fallback_subcategory: str = Field(
        default="Other", env="CATALOG_FALLBACK_SUBCATEGORY"
    )
    catalog_min_suffix_match_length: int = Field(
        default=1,
        env="CATALOG_MIN_SUFFIX_MATCH_LENGTH",
        description="Shortest numeric order key allowed to match another key by suffix containment.",
    )

    api_port: int = Field(default=8787, env="PORT")
    log_dir: str = Field(default=os.path.join(PROJECT_ROOT, "logs"), env="LOG_DIR")

    class Config:
        env_file = ENV_FILE_PATH
        env_file_encoding = 'utf-8'
        extra = "ignore"

    @field_validator("catalog_batch_size", "catalog_min_suffix_match_length")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be a positive integer")
        return value

    @field_validator("llm_max_retries")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        return max(0, int(value))


try:
    settings = Settings()
except Exception as e:
    print(f"!!! FATAL ERROR: Could not load application settings from .env file: {e}")
    raise
