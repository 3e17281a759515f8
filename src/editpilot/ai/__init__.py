"""LLM clients, intent inference, prompts and the agent loop."""

from .client import AIClient, AIClientError, ClientSettings, GatewayClient
from .intent import IntentResult, infer_intent

__all__ = ["AIClient", "AIClientError", "ClientSettings", "GatewayClient", "IntentResult", "infer_intent"]
