"""relaybot - self-hosted LLM chat relay for Telegram, WhatsApp and Messenger."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("relaybot")
except PackageNotFoundError:
    __version__ = "0.1.0"

__logo__ = "📡"
__brand__ = "relaybot"
