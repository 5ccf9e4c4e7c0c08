"""Application settings and configuration.

This module defines the configuration options for the moderation engine and
its database layer. Settings are loaded from environment variables with
sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files, or by
    constructing an instance directly and handing it to the engine.
    """

    # Database configuration
    database_url: str = Field(
        default="sqlite:///./forum_moderation.db",
        alias="DATABASE_URL",
    )
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Visibility policy: when true, pending and blocked content is shown to
    # everyone, so approving a post never makes anything newly visible.
    content_visible_while_pending_moderation: bool = Field(
        default=True,
        alias="CONTENT_VISIBLE_WHILE_PENDING_MODERATION",
    )

    # Attempts for a moderation unit that hits a write conflict.
    moderation_max_attempts: int = Field(
        default=3,
        ge=1,
        alias="MODERATION_MAX_ATTEMPTS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
