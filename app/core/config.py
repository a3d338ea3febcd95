from typing import Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import PostgresDsn


class PostgresSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    host: str = Field(alias="POSTGRES_HOST")
    port: int = Field(alias="POSTGRES_DB_PORT")
    db_name: str = Field(alias="POSTGRES_DB_NAME")
    user: str = Field(alias="POSTGRES_DB_USER")
    password: str = Field(alias="POSTGRES_DB_PASSWORD")

    @computed_field
    def connection_string(self) -> PostgresDsn:
        return PostgresDsn(
            f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"
        )


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="flashcards", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")
    jwt_secret: str = Field(alias="JWT_SECRET")
    token_lifetime_seconds: int = Field(
        default=3600, alias="JWT_TOKEN_LIFETIME_SECONDS"
    )

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"

    @computed_field
    def is_testing(self) -> bool:
        return self.mode == "test"


class OpenRouterSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    # Validated when the client is built at startup, not at import time.
    api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")
    base_url: str = Field(
        default="https://openrouter.ai/api/v1/chat/completions",
        alias="OPENROUTER_BASE_URL",
    )
    default_model: str = Field(
        default="openai/gpt-4o-mini", alias="OPENROUTER_DEFAULT_MODEL"
    )
    temperature: float = Field(default=0.3, alias="OPENROUTER_TEMPERATURE")
    max_tokens: int = Field(default=2048, alias="OPENROUTER_MAX_TOKENS")
    timeout_seconds: Optional[float] = Field(
        default=None, alias="OPENROUTER_TIMEOUT_SECONDS"
    )
    referer: str = Field(
        default="https://flashcards.local", alias="OPENROUTER_REFERER"
    )
    title: str = Field(default="flashcards", alias="OPENROUTER_TITLE")


class GenerationSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    default_temperature: float = Field(
        default=0.3, alias="GENERATION_DEFAULT_TEMPERATURE"
    )
    batch_concurrency: int = Field(default=4, alias="GENERATION_BATCH_CONCURRENCY")
    queue_concurrency: int = Field(default=2, alias="GENERATION_QUEUE_CONCURRENCY")
    min_text_length: int = Field(default=1000, alias="GENERATION_MIN_TEXT_LENGTH")
    max_text_length: int = Field(default=10000, alias="GENERATION_MAX_TEXT_LENGTH")
    rate_limit_max_delay: float = Field(
        default=10.0, alias="GENERATION_RATE_LIMIT_MAX_DELAY"
    )
    hourly_quota: int = Field(default=5, alias="GENERATION_HOURLY_QUOTA")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    postgres: PostgresSettings = Field(default_factory=lambda: PostgresSettings())
    openrouter: OpenRouterSettings = Field(
        default_factory=lambda: OpenRouterSettings()
    )
    generation: GenerationSettings = Field(
        default_factory=lambda: GenerationSettings()
    )


settings = Settings()
