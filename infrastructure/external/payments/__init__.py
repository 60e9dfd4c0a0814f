"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway


PROVIDER_ALIASES = {
    "midtrans": "midtrans",
    "snap": "midtrans",
    "duitku": "duitku",
    "dtk": "duitku",
}


def normalize_provider(provider: Optional[str], settings: Optional[PaymentSettings] = None) -> str:
    cfg = settings or payment_settings
    name = (provider or cfg.default_provider).lower()
    if name not in PROVIDER_ALIASES:
        raise ValueError(f"Unsupported payment provider: {name}")
    return PROVIDER_ALIASES[name]


def get_payment_gateway(provider: Optional[str] = None, settings: Optional[PaymentSettings] = None) -> PaymentGateway:
    cfg = settings or payment_settings
    name = normalize_provider(provider, cfg)
    if name == "midtrans":
        from .midtrans_client import MidtransClient
        return MidtransClient(cfg)
    from .duitku_client import DuitkuClient
    return DuitkuClient(cfg)
