"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Generation
    PROVIDER: str = "ollama"  # Options: ollama, or any provider served by the remote channel
    OLLAMA_URL: str = "http://localhost:11434"
    OLLAMA_API_KEY: str | None = None
    MODEL: str = ""
    CONTEXT_SIZE: int = 8192
    SYSTEM_PROMPT: str = ""
    MAX_ITERATIONS: int = 10
    REQUEST_TIMEOUT: float = 120.0
    CHAT_MODE: str = "agent"  # Options: ask, agent, plan

    # Orchestration
    MAX_CONCURRENT_TASKS: int = 0  # 0 = no limit inside a parallel group

    # Tool execution service (MCP streamable HTTP)
    MCP_URL: str | None = None
    MCP_API_KEY: str | None = None

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
