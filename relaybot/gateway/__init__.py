"""HTTP gateway for webhooks and the playground."""

from relaybot.gateway.runtime import Runtime
from relaybot.gateway.server import GatewayHttpServer

__all__ = ["GatewayHttpServer", "Runtime"]
