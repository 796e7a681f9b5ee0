"""Configuration schema using Pydantic."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AccessConfig(BaseModel):
    """Owner and initial grants."""
    owner: str = ""  # Owner JID or phone number
    grants: dict[str, list[str]] = Field(default_factory=dict)  # JID -> command names ("*" = all)


class CommandsConfig(BaseModel):
    """Command parsing and replies."""
    prefix: str = "."
    reply_unknown: bool = True  # Tell the owner when a command does not exist
    unknown_message: str = "❓ Unknown command: {prefix}{name}. Try {prefix}help"
    builtins: bool = True  # Register allow/disallow/permissions/... commands
    failure_message: str = "❌ Something went wrong while running this command."
    blocked_message: str = "⛔ This command is not available right now."
    cooldown_message: str = "⏰ Please wait {remaining}s before using this command again."


class CooldownConfig(BaseModel):
    """Expiring store used for cooldowns."""
    sweep_interval: float = 60.0  # Seconds between background sweeps


class RateLimitConfig(BaseModel):
    """Per-user command rate limit."""
    enabled: bool = True
    max_commands: int = 10  # Max commands per window
    window_seconds: float = 60.0
    owner_exempt: bool = True


class FeaturesConfig(BaseModel):
    """Optional pipeline behaviour."""
    games: bool = True
    media_download: bool = False
    loading_reaction: bool = True


class RecoveryConfig(BaseModel):
    """Stage failure handling."""
    notify_owner: bool = False  # Send stage errors to the owner's chat
    fail_closed_stages: list[str] = Field(default_factory=lambda: ["access_filter"])
    max_tracked_chats: int = 500  # Per-chat error records kept for inspection


class PluginsConfig(BaseModel):
    """Command plugins loaded from a directory."""
    directory: str = ""  # Empty disables plugin loading
    autoload: bool = True  # Load every plugin when the host starts


class WebhookConfig(BaseModel):
    """A webhook receiving host events."""
    url: str
    event: str = "*"  # Event type or "*"
    headers: dict[str, str] = Field(default_factory=dict)


class HooksConfig(BaseModel):
    """Hook delivery configuration."""
    webhooks: list[WebhookConfig] = Field(default_factory=list)
    timeout: float = 10.0
    max_retries: int = 3


class Config(BaseSettings):
    """Root configuration for chathost."""
    access: AccessConfig = Field(default_factory=AccessConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    cooldowns: CooldownConfig = Field(default_factory=CooldownConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    hooks: HooksConfig = Field(default_factory=HooksConfig)

    model_config = SettingsConfigDict(
        env_prefix="CHATHOST_",
        env_nested_delimiter="__",
    )
