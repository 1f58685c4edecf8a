from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    app_name: str = "CardForge"
    # Default to a local postgres database if not set in env
    database_url: str = "postgresql+asyncpg://localhost/cardforge"
    # "database" persists through SQLAlchemy, "memory" keeps sessions in-process
    session_store: str = "database"

    # Chat-completion provider: "gemini" (API key) or "ollama" (local endpoint)
    llm_type: str = "gemini"
    model_name: str = "gemini-2.5-flash"
    google_api_key: str = ""
    google_api_keys: str = ""  # comma separated, rotated on 429
    llm_base_url: str = ""
    ollama_base_url: str = "http://localhost:11434"
    temperature: float = 0.7
    max_output_tokens: int = 8192

    # Optional web search credential
    tavily_api_key: str = ""
    search_max_results: int = 8

    # Iteration loop bounds
    max_iterations: int = 50
    timeout_ms: int = 300_000
    enforce_task_ordering: bool = True

    # Worldbook rules
    structural_min_length: int = 300
    min_supplement_entries: int = 5
    knowledge_base_limit: int = 50

    # Resilient client retry settings
    resilient_max_retries: int = 5
    resilient_base_delay: int = 2  # seconds, used with exponential backoff

    # API key cooldown after exhaustion
    key_cooldown_seconds: int = 60

    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    log_file: str = "server.log"

    @property
    def api_keys(self) -> list[str]:
        """All configured Gemini keys, rotation order preserved."""
        keys = [k.strip() for k in self.google_api_keys.split(",") if k.strip()]
        if not keys and self.google_api_key:
            keys = [self.google_api_key]
        return keys

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

@lru_cache
def get_settings():
    return Settings()
