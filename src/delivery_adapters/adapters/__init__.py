# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Provider adapters and their registry."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .base import AdapterConfig, DeliveryAdapter
from .generic_rest import GenericRestAdapter
from .mandrill import MandrillAdapter
from .onesignal import OneSignalAdapter
from .resend import ResendAdapter
from .ses import SesAdapter
from .smtp import SmtpAdapter
from .telegram import TelegramAdapter

__all__ = [
    "ADAPTERS",
    "AdapterConfig",
    "DeliveryAdapter",
    "GenericRestAdapter",
    "MandrillAdapter",
    "OneSignalAdapter",
    "ResendAdapter",
    "SesAdapter",
    "SmtpAdapter",
    "TelegramAdapter",
    "adapter_class",
    "get_adapter",
]

# Adapter registry
ADAPTERS: dict[str, type[DeliveryAdapter]] = {
    cls.key: cls
    for cls in (
        ResendAdapter,
        MandrillAdapter,
        OneSignalAdapter,
        SesAdapter,
        SmtpAdapter,
        TelegramAdapter,
        GenericRestAdapter,
    )
}


def adapter_class(provider: str) -> type[DeliveryAdapter]:
    """Look up the adapter class registered under ``provider``.

    Raises:
        ValueError: If no adapter is registered under that key.
    """
    key = (provider or "").strip().lower().replace("-", "_")
    try:
        return ADAPTERS[key]
    except KeyError:
        raise ValueError(
            f"Unknown provider: '{provider}'. Supported: {', '.join(sorted(ADAPTERS))}"
        ) from None


def get_adapter(provider: str, config: Mapping[str, Any] | None = None, **kwargs: Any) -> DeliveryAdapter:
    """Create a configured adapter instance.

    Args:
        provider: Registry key (``"resend"``, ``"smtp"``, ...).
        config: Provider configuration mapping.
        **kwargs: Forwarded to the adapter constructor (``engine``, ``logger``,
            ``metrics``, ...).

    Raises:
        ValueError: If the provider is unknown.
        ConfigurationError: If the configuration is invalid.
    """
    return adapter_class(provider)(config, **kwargs)
