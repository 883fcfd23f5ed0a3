"""Configuration settings for the orchestration core."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database (rule store + knowledge snippets)
    db_host: str = "localhost"
    db_port: int = 15432
    db_name: str = "aris"
    db_user: str = "aris"
    db_password: str = "aris"
    database_url: str | None = None
    knowledge_backend: str = "sql"  # sql | memory

    # Redis
    redis_url: str = "redis://localhost:16379/0"
    redis_events_enabled: bool = False

    # Worker service
    worker_base_url: str | None = None
    worker_timeout: float = 300.0  # 5 minutes

    # Workflow engine
    max_in_flight: int = 4
    max_retries: int = 2
    retry_delay: float = 0.0

    # Consensus
    consensus_approval_ratio: float = 0.7
    consensus_timeout: float = 300.0
    consensus_participants: list[str] = ["implementer", "reviewer", "planner"]

    # Learning
    rule_initial_confidence: float = 0.7
    rule_reinforcement_step: float = 0.05
    rule_confidence_cap: float = 0.99
    pattern_max_length: int = 200
    pattern_timeout: float = 0.25
    learning_history_limit: int = 200  # diffs kept for relearn()

    # Retrieval
    knowledge_snippet_limit: int = 5

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "ARIS_"
        env_file = ".env"


# Global settings instance
settings = Settings()
