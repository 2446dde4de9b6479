"""Configuration package for catering payments."""
from .settings import GatewayConfig, Settings, get_settings

__all__ = ["GatewayConfig", "Settings", "get_settings"]
