"""
Entityverse Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class Config:
    """Application configuration loaded from environment variables."""

    # Language generation backend (optional collaborator)
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "openai")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-5-nano")

    # API Keys
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")

    # Local backend (Ollama) base URL
    OLLAMA_BASE_URL: str | None = os.getenv("OLLAMA_BASE_URL")

    # Simulation Configuration
    DEFAULT_TICK_COUNT: int = int(os.getenv("DEFAULT_TICK_COUNT", "100"))
    TICK_DURATION_SECONDS: float = float(os.getenv("TICK_DURATION_SECONDS", "1.0"))
    DEFAULT_SEED: int = int(os.getenv("DEFAULT_SEED", "42"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    VERBOSE: bool = os.getenv("ENTITYVERSE_VERBOSE", "").lower() in ("1", "true", "yes")

    # Project Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent
    POPULATIONS_DIR: Path = PROJECT_ROOT / "examples" / "populations"
    SNAPSHOT_DIR: Path = Path(os.getenv("SNAPSHOT_DIR", "world_snapshots"))

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if required values are inconsistent."""
        if cls.TICK_DURATION_SECONDS <= 0:
            raise ValueError("TICK_DURATION_SECONDS must be positive")

        if cls.LLM_PROVIDER == "anthropic" and not cls.ANTHROPIC_API_KEY:
            raise ValueError(
                "ANTHROPIC_API_KEY is required when using the 'anthropic' provider"
            )

        if cls.LLM_PROVIDER == "openai" and not cls.OPENAI_API_KEY:
            raise ValueError(
                "OPENAI_API_KEY is required when using the 'openai' provider. "
                "For a local backend, set LLM_PROVIDER=ollama instead."
            )

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        lines = [
            "Entityverse Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER}",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Default Ticks: {cls.DEFAULT_TICK_COUNT}",
            f"  Tick Duration: {cls.TICK_DURATION_SECONDS}s",
            f"  Seed: {cls.DEFAULT_SEED}",
            f"  Snapshots: {cls.SNAPSHOT_DIR}",
        ]
        return "\n".join(lines)
