from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Stash Assistant API"
    gemini_api_key: str = ""
    # must support generateContent with function calling
    gemini_model: str = "gemini-2.5-flash"  # override via GEMINI_MODEL in .env if needed
    gemini_timeout_seconds: int = 25
    database_url: str = ""
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    # Prior turns forwarded to the model per request.
    chat_history_limit: int = 20
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
