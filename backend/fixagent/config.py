"""
Configuration management for the fix agent.
Loads settings from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
import os


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # GitHub
    github_token: str = ""
    base_branch: str = "main"

    # LLM provider (any OpenAI-compatible chat completions endpoint)
    llm_api_key: str = ""
    llm_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    llm_model: str = "gemini-2.0-flash"
    llm_timeout: float = 60.0
    llm_max_retries: int = 2
    llm_prompt_cost_per_1k: float = 0.0001
    llm_completion_cost_per_1k: float = 0.0004

    # Agent behaviour
    max_attempts: int = 5
    clone_base_dir: str = os.path.join(os.path.expanduser("~"), ".fixagent", "repos")

    # Sandbox
    sandbox_base_dir: str = ""  # empty -> system temp dir
    sandbox_timeout: int = 900  # seconds, per command

    # Commit identity used when submitting fixes
    git_author_name: str = "OSS_dev Agent"
    git_author_email: str = "agent@oss-dev.local"

    # Logging
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": os.path.join(os.path.dirname(__file__), "..", "..", ".env"),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


settings = Settings()
