"""Chat-gateway adapters (Evolution-style WhatsApp API)."""

from chatqueue.infra.gateway.evolution import EvolutionGatewayClient
from chatqueue.infra.gateway.protocol import ChatGateway, GatewayError, UpstreamBotSession

__all__ = ["ChatGateway", "EvolutionGatewayClient", "GatewayError", "UpstreamBotSession"]
