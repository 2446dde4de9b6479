"""FastAPI application and routes."""
from .main import create_app
from .schemas import CreatePaymentRequest, CreatePaymentResponse, MidtransNotification, WebhookResponse

__all__ = [
    "create_app",
    "CreatePaymentRequest",
    "CreatePaymentResponse",
    "MidtransNotification",
    "WebhookResponse",
]
