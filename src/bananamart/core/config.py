"""Configuration management for the Banana Mart image studio.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the BANANAMART_ prefix,
allowing deployments to change credentials and paths without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (BANANAMART_* prefix)
2. .env file in the project root
3. Default values defined in BananaMartConfig

Example .env file:
    BANANAMART_API_KEY=sk-...
    BANANAMART_API_BASE_URL=https://api.ephone.ai
    BANANAMART_DATA_DIR=/app/data
    BANANAMART_ADMIN_TOKEN=change-me

Global Configuration Instance
------------------------------
A global `config` instance is created at module import time for the CLI entry
point and the default application.  Everything else receives its configuration
explicitly through constructor arguments, so tests build their own instances
pointing at temporary directories.

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- data_dir: Holds ``users.json``
- images_dir: Holds generated images named by the stored-filename convention

Security Notes
--------------
``admin_username``, ``admin_password`` and ``admin_token`` are static shared
secrets compared by plain string equality.  Account passwords are stored in
plaintext in ``users.json``.  Both are known weaknesses pending a product
decision.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class BananaMartConfig(BaseSettings):
    """Main configuration for the Banana Mart image studio.

    Attributes
    ----------
    Paths:
        data_dir : Path
            Directory holding ``users.json``
        images_dir : Path | None
            Directory for generated images (defaults to ``<data_dir>/images``)
        transformations_file : Path
            JSON file with the transformation catalog

    Generation Service:
        api_key : str
            Bearer token for the remote chat-completions endpoint
        api_base_url : str
            Base URL of the OpenAI-compatible endpoint
        model : str
            Model identifier sent with every request
        request_timeout : float
            Connection-level timeout in seconds for one gateway call

    Accounts:
        initial_uses : int
            Remaining uses granted on registration
        watermark_text : str
            Text stamped on every final image

    Admin:
        admin_username, admin_password : str
            Static admin console credentials
        admin_token : str
            Shared secret expected in the ``admin-token`` header

    Server:
        server_host : str
        server_port : int
        log_level : str
        cors_origins : list[str]
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BANANAMART_",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding users.json",
    )
    images_dir: Path | None = Field(
        default=None,
        description="Directory for generated images (defaults to <data_dir>/images)",
    )
    transformations_file: Path = Field(
        default=_PACKAGE_DATA_DIR / "transformations.json",
        description="JSON file with the transformation catalog",
    )

    # Remote generation service
    api_key: str = Field(
        default="",
        description="Bearer token for the remote chat-completions endpoint",
    )
    api_base_url: str = Field(
        default="https://api.ephone.ai",
        description="Base URL of the OpenAI-compatible endpoint",
    )
    model: str = Field(
        default="gemini-2.5-flash-image-preview",
        description="Model identifier sent with every generation request",
    )
    request_timeout: float = Field(
        default=300.0,
        description="Connection-level timeout for one gateway call, in seconds",
        gt=0,
    )

    # Accounts and metering
    initial_uses: int = Field(
        default=10,
        description="Remaining uses granted to a newly registered account",
        ge=0,
    )
    watermark_text: str = Field(
        default="Nano Banana Supermarket",
        description="Text stamped on every final image",
    )

    # Admin console
    admin_username: str = Field(default="admin")
    admin_password: str = Field(default="admin123")
    admin_token: str = Field(
        default="admin-secret-token",
        description="Shared secret expected in the admin-token header",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3001,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        if self.images_dir is None:
            self.images_dir = self.data_dir / "images"

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.images_dir.mkdir(parents=True, exist_ok=True)

    @property
    def users_file(self) -> Path:
        """Path of the JSON account document."""
        return self.data_dir / "users.json"


# Global configuration instance used by the CLI and the default ``app``.
config = BananaMartConfig()
