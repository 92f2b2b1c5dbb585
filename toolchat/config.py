"""toolchat/config.py

Runtime configuration for the toolchat client and the search tools server.

Settings are read once at startup from environment variables and an optional
``.env`` file, then injected into every component that needs them.
"""

from __future__ import annotations

# Standard Library
from typing import Literal

# Third-Party Libraries
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Local Modules
from toolchat.errors import ConfigurationError

# Credential fields and the environment variable users are told to set.
_CREDENTIAL_ENV: dict[str, str] = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "brave_search_api_key": "BRAVE_SEARCH_API_KEY",
    "openweather_api_key": "OPENWEATHER_API_KEY",
}


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables / .env file.

    Attributes:
        anthropic_api_key: Key for the Anthropic Messages API.
        brave_search_api_key: Subscription token for Brave web search.
        openweather_api_key: Key for the OpenWeatherMap API.
        completion_provider: Which completion backend answers queries.
        anthropic_model: Model identifier sent to the Anthropic API.
        ollama_model: Model tag used when the Ollama backend is selected.
        ollama_host: Base URL of the Ollama server.
        max_tokens: Fixed maximum output size of each completion.
        search_provider: Web search backend used by the ``search`` tool.
        search_count: Number of search results requested per query.
        max_rounds: Maximum completion rounds per user query.
        max_history_messages: Messages kept in the session history.
        completion_timeout: Seconds before a completion call is abandoned.
        tool_timeout: Seconds before a tool call is abandoned.
        http_timeout: Seconds before a provider HTTP request is abandoned.
        log_level: Root log level for the entry points.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    anthropic_api_key: str = Field("", description="Anthropic API key.")
    brave_search_api_key: str = Field("", description="Brave Search API token.")
    openweather_api_key: str = Field("", description="OpenWeatherMap API key.")

    completion_provider: Literal["anthropic", "ollama"] = Field(
        "anthropic",
        description="Completion backend: the Anthropic API or a local Ollama server.",
    )
    anthropic_model: str = Field(
        "claude-3-7-sonnet-20250219",
        description="Model identifier for the Anthropic backend.",
    )
    ollama_model: str = Field(
        "llama3.1:8b-instruct-q4_K_M",
        description="Model tag for the Ollama backend.",
    )
    ollama_host: str = Field(
        "http://localhost:11434",
        description="Ollama API endpoint.",
    )
    max_tokens: int = Field(1000, ge=1, description="Maximum output tokens.")

    search_provider: Literal["brave", "duckduckgo"] = Field(
        "brave",
        description="Search backend: Brave (needs a key) or DuckDuckGo.",
    )
    search_count: int = Field(5, ge=1, le=20)

    max_rounds: int = Field(
        2,
        ge=1,
        description=(
            "Maximum completion rounds per query.  The default allows one "
            "tool call followed by one follow-up completion."
        ),
    )
    max_history_messages: int = Field(40, ge=2)

    completion_timeout: float = Field(60.0, gt=0)
    tool_timeout: float = Field(30.0, gt=0)
    http_timeout: float = Field(10.0, gt=0)

    log_level: str = Field("WARNING", description="Log level for entry points.")

    def require(self, *fields: str) -> None:
        """Ensure the named credential fields are non-empty.

        Args:
            *fields: Attribute names such as ``"anthropic_api_key"``.

        Raises:
            ConfigurationError: Listing every missing variable at once.
        """
        missing = [
            _CREDENTIAL_ENV.get(name, name.upper())
            for name in fields
            if not str(getattr(self, name, "") or "").strip()
        ]
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )

    def require_client_credentials(self) -> None:
        """Validate what the interactive client needs before connecting."""
        if self.completion_provider == "anthropic":
            self.require("anthropic_api_key")

    def require_server_credentials(self) -> None:
        """Validate what the search tools server needs before serving."""
        fields = ["openweather_api_key"]
        if self.search_provider == "brave":
            fields.append("brave_search_api_key")
        self.require(*fields)
