"""Environment-based configuration for the spinwheel service."""

import logging
import os
from collections.abc import Mapping

logger = logging.getLogger(__name__)

REQUIRED_VARIABLES = (
    "TWITCH_BOT_USERNAME",
    "TWITCH_CHANNEL",
    "TWITCH_CLIENT_ID",
    "TWITCH_CLIENT_SECRET",
    "TWITCH_ACCESS_TOKEN",
    "REDEMPTION_ID",
    "OBS_PASSWORD",
)


class CommonConfig:
    """Base configuration reading from an explicit environment mapping."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = os.environ if environ is None else environ

        # Logging configuration
        self.log_level: str = self.get_env("LOG_LEVEL", "INFO")
        self.json_logs: bool = self.get_env_bool("JSON_LOGS", True)

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Get an environment variable, treating empty values as unset."""
        value = self._environ.get(key)
        if value is None or not value.strip():
            return default
        return value.strip()

    def get_env_int(self, key: str, default: int = 0) -> int:
        """Get an environment variable as integer with validation."""
        value = self.get_env(key, str(default))
        try:
            parsed = int(value)
            if parsed < 0:
                logger.warning(f"Negative value for {key}: {parsed}, using default: {default}")
                return default
            return parsed
        except ValueError:
            logger.error(
                f"Invalid integer value for environment variable '{key}': '{value}'. "
                f"Expected a valid integer, using default: {default}"
            )
            return default

    def get_env_bool(self, key: str, default: bool = False) -> bool:
        """Get an environment variable as boolean with clear parsing."""
        value = (self.get_env(key) or "").lower()
        if not value:
            return default
        if value in ("true", "1", "yes", "on", "enabled"):
            return True
        elif value in ("false", "0", "no", "off", "disabled"):
            return False
        logger.warning(
            f"Ambiguous boolean value for environment variable '{key}': '{value}'. "
            f"Expected true/false, yes/no, 1/0, on/off, or enabled/disabled. "
            f"Using default: {default}"
        )
        return default


class WheelConfig(CommonConfig):
    """Configuration for the wheel spin service.

    Read once at construction; nothing downstream touches the environment.
    """

    def __init__(self, environ: Mapping[str, str] | None = None):
        super().__init__(environ)
        self.service_name = "spinwheel"

        # Chat platform
        self.bot_username: str | None = self.get_env("TWITCH_BOT_USERNAME")
        self.channel: str | None = self.get_env("TWITCH_CHANNEL")
        self.client_id: str | None = self.get_env("TWITCH_CLIENT_ID")
        self.client_secret: str | None = self.get_env("TWITCH_CLIENT_SECRET")
        self.access_token: str | None = self.get_env("TWITCH_ACCESS_TOKEN")
        # Without one, twitchio cannot renew the access token when it expires
        self.refresh_token: str = self.get_env("TWITCH_REFRESH_TOKEN", "")
        self.reward_id: str | None = self.get_env("REDEMPTION_ID")
        self.helix_url: str = self.get_env("HELIX_URL", "https://api.twitch.tv/helix")

        # Broadcasting tool
        self.obs_password: str | None = self.get_env("OBS_PASSWORD")
        self.obs_host: str = self.get_env("OBS_HOST", "localhost")
        self.obs_port: int = self.get_env_int("OBS_PORT", 4455)

        # Overlay server
        self.host: str = self.get_env("HOST", "0.0.0.0")
        self.port: int = self.get_env_int("PORT", 3000)

        # Matches the overlay's 12s spin animation
        self.ack_delay: float = 12.0
        self.timeout_seconds: int = 300

    @property
    def channel_name(self) -> str:
        """Channel login without a leading '#'."""
        return (self.channel or "").replace("#", "").lower()

    @property
    def bearer_token(self) -> str:
        """Access token without the legacy chat 'oauth:' prefix."""
        return (self.access_token or "").replace("oauth:", "")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            list[str]: List of validation error messages, empty if valid
        """
        errors = []

        for key in REQUIRED_VARIABLES:
            if not self.get_env(key):
                errors.append(f"Missing required environment variable: {key}")

        if not (1 <= self.port <= 65535):
            errors.append(f"Overlay port {self.port} is out of valid range (1-65535)")

        if self.ack_delay <= 0:
            errors.append(f"Acknowledgment delay must be positive, got {self.ack_delay}")

        return errors
