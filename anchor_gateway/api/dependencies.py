"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from anchor_gateway.config import Settings
from anchor_gateway.infrastructure.clients.up_bank import UpBankClient
from anchor_gateway.infrastructure.clients.alerts import AlertClient
from anchor_gateway.ml.classifier import RiskClassifier


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_settings(request: Request) -> Settings:
    """Settings the app was created with"""
    return request.app.state.settings


def get_classifier(request: Request) -> RiskClassifier:
    """Process-wide classifier loaded at startup"""
    return request.app.state.classifier


def get_up_client(request: Request) -> UpBankClient:
    """Provide Up Bank API client instance"""
    config = request.app.state.settings
    return UpBankClient(
        base_url=config.up_api_base,
        token=config.up_api_token,
        timeout=config.http_timeout_seconds,
    )


def get_alert_client(request: Request) -> AlertClient:
    """Provide alert webhook client instance"""
    config = request.app.state.settings
    return AlertClient(
        webhook_url=config.alert_webhook_url,
        max_retries=config.alert_max_retries,
        backoff_base=config.alert_backoff_base,
    )
