from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Language model (required)
    openai_api_key: str
    openai_base_url: str = ""
    openai_model: str = "gpt-4o-mini"
    summary_max_tokens: int = 2000
    summary_temperature: float = 0.7
    classifier_timeout_seconds: float = 60.0

    # Firecrawl (required)
    firecrawl_api_key: str
    firecrawl_base_url: str = "https://api.firecrawl.dev"
    search_result_limit: int = 10
    scraper_timeout_seconds: float = 30.0
    extract_poll_interval_seconds: float = 2.0
    extract_max_polls: int = 30

    # Retry policies (scraper and classifier are tuned separately)
    scraper_retry_max_attempts: int = 3
    scraper_retry_initial_delay: float = 1.0
    scraper_retry_max_delay: float = 10.0
    classifier_retry_max_attempts: int = 3
    classifier_retry_initial_delay: float = 0.5
    classifier_retry_max_delay: float = 8.0

    # Response cache
    cache_backend: str = "memory"  # memory | file
    cache_dir: str = ".cache/responses"
    cache_ttl_seconds: int = 3600

    # Inbound rate limiting
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: float = 60.0

    # Pagination
    default_page_limit: int = 5
    max_page_limit: int = 10

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
