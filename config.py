from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="SCANNER_", extra="ignore"
    )

    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # Browser (render-capable) fetch
    use_browser: bool = True
    browser_executable_path: Optional[str] = None
    navigation_timeout_ms: int = 30000
    selector_timeout_ms: int = 5000
    settle_delay: float = 1.0

    # Plain HTTP fetch
    http_timeout: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT

    total_timeout: float = 120.0

    max_html_chars: int = 50_000
    max_classify_chars: int = 2_000_000
    snippet_chars: int = 500


settings = Settings()
