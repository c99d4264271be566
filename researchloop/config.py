from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM (Anthropic directly, or OpenRouter when its key and model are set)
    anthropic_api_key: str = ""
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api"
    openrouter_model: str = ""
    default_model: str = "claude-sonnet-4-5-20250929"
    llm_max_tokens: int = 8192
    llm_temperature: float = 0.7
    llm_timeout_seconds: float = 120.0

    # Search providers
    web_search_provider: str = "brave"  # brave | tavily
    brave_api_key: str = ""
    tavily_api_key: str = ""
    wikipedia_enabled: bool = True
    search_timeout_seconds: float = 10.0
    web_result_share: float = 0.7

    # Content enhancement
    content_fetch_timeout_seconds: float = 10.0
    content_max_chars: int = 3000
    content_batch_size: int = 5
    content_batch_pause_seconds: float = 1.0

    # Screenshots
    screenshot_top_n: int = 3
    screenshot_batch_size: int = 3
    screenshot_batch_pause_seconds: float = 2.0
    screenshot_max_attempts: int = 3
    screenshot_retry_delay_seconds: float = 1.0
    screenshot_timeout_seconds: float = 30.0

    # Artifact storage
    artifacts_dir: str = "public/screenshots"
    artifacts_public_prefix: str = "/screenshots"
    artifact_max_bytes: int = 10 * 1024 * 1024
    artifact_max_pixels: int = 50_000_000
    artifact_retention_days: int = 30
    thumbnail_width: int = 300
    thumbnail_height: int = 200

    # Reports
    markdown_output_dir: str = "reports/markdown"
    default_template: str = "modern"

    # Jobs
    default_max_rounds: int = 3
    default_max_results_per_round: int = 8
    default_language: str = "en"
    empty_round_policy: str = "continue"  # continue | stop

    # PostgreSQL job store; in-memory store when empty
    database_url: str = ""

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
