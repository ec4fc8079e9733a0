"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relaybot.utils.helpers import get_data_path


def _default_data_dir() -> str:
    """Default record store under active data directory."""
    return str(get_data_path() / "store")


class ProviderConfig(BaseModel):
    """LLM provider configuration (keys live in the key pool, not here)."""
    model: str = "gemini/gemini-1.5-flash"
    api_base: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    request_timeout: float = 60.0  # seconds per provider call; 0 disables
    extra_headers: dict[str, str] | None = None


class MemoryConfig(BaseModel):
    """Conversation memory windows."""
    persisted_turns: int = 50  # turns kept on disk per conversation
    context_turns: int = 20  # turns sent to the provider per request


class PersonaConfig(BaseModel):
    """Fallback persona used when no persona is active."""
    default_system_prompt: str = "You are a helpful assistant."


class BehaviorConfig(BaseModel):
    """Human-like reading/typing simulation."""
    enabled: bool = True
    reading_delay_per_char_ms: int = 20
    delay_cap_ms: int = 3000
    random_pause_probability: float = 0.15
    random_pause_min_ms: int = 500
    random_pause_max_ms: int = 1500


class MediaConfig(BaseModel):
    """Inbound media handling."""
    transcode_voice_notes: bool = True  # ogg/webm -> mp3 before sending to the provider
    ffmpeg_path: str = ""  # empty: look up `ffmpeg` on PATH
    download_inbound_media: bool = True


class GatewayConfig(BaseModel):
    """Webhook/playground HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000
    owner_id: str = "admin"  # owner used by the playground and CLI
    admin_token: str = ""  # bearer token for /api/bot/* and /api/logs; empty disables the check
    verify_token: str = ""  # fallback hub.verify_token when an integration has none


class StorageConfig(BaseModel):
    """Durable record store location."""
    data_dir: str = Field(default_factory=_default_data_dir)


class Config(BaseSettings):
    """Root configuration for relaybot."""
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @property
    def data_path(self) -> Path:
        """Get expanded record store path."""
        return Path(self.storage.data_dir).expanduser()

    model_config = SettingsConfigDict(
        env_prefix="RELAYBOT_",
        env_nested_delimiter="__",
    )
