"""Application settings using Pydantic BaseSettings for environment variable management."""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Global application settings loaded from environment variables.

    Attributes:
        gemini_api_key: Google Gemini API key (inference is disabled when unset)
        gemini_model: Default Gemini model to use
        max_rpm: Maximum inference requests per minute
        max_tpm: Maximum inference tokens per minute
        serper_api_key: Serper.dev API key for web search
        search_endpoint: Search API endpoint
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log output format (json for production, console for dev)
        max_concurrency: Default task executor concurrency
        task_timeout: Default per-task timeout in seconds
        task_retries: Default retries per task
        memory_path: JSON file backing the agent memory store
        critic_max_sources: Sources checked per claim by the critic
        max_iterations: Upper bound on decision-engine driven re-runs of a phase
        fuzzy_threshold: Similarity threshold for fuzzy text agreement
    """

    gemini_api_key: str | None = Field(
        default=None,
        description="Google Gemini API key"
    )
    gemini_model: str = Field(
        default="gemini-1.5-flash",
        description="Default Gemini model identifier"
    )
    max_rpm: int = Field(
        default=15,
        description="Maximum requests per minute (free tier limit)"
    )
    max_tpm: int = Field(
        default=1_000_000,
        description="Maximum tokens per minute"
    )
    serper_api_key: str | None = Field(
        default=None,
        description="Serper.dev API key for web search"
    )
    search_endpoint: str = Field(
        default="https://google.serper.dev/search",
        description="Search API endpoint"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: json or console"
    )
    max_concurrency: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Default task executor concurrency"
    )
    task_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-task timeout in seconds"
    )
    task_retries: int = Field(
        default=2,
        ge=0,
        description="Retries per task before its error surfaces"
    )
    memory_path: str = Field(
        default="data/agent_memory.json",
        description="Path of the JSON file backing the memory store"
    )
    critic_max_sources: int = Field(
        default=5,
        ge=1,
        description="Top-ranked sources checked per claim"
    )
    max_iterations: int = Field(
        default=3,
        ge=1,
        description="Maximum re-entries of a phase requested by the decision engine"
    )
    fuzzy_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Similarity threshold for fuzzy text agreement"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Read-only configuration instance; components receive values from it at construction
settings = Settings()
