# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""INI-based configuration for adapter instances.

Each ``[adapter:<id>]`` section declares one adapter instance. ``provider``
selects the registry key, every other key is passed to the adapter's config
model. Values of the form ``env:NAME`` are read from the environment and
values starting with ``{`` or ``[`` are parsed as JSON. The optional
``[delivery]`` section holds layer-wide defaults.

Example:
    Configuration file format (adapters.ini)::

        [delivery]
        max_retries = 3
        timeout = 30

        [adapter:transactional]
        provider = resend
        api_key = env:RESEND_API_KEY
        from_email = noreply@example.com

        [adapter:relay]
        provider = smtp
        host = smtp.example.com
        port = 465
        secure = true
        auth_user = mailer
        auth_pass = env:SMTP_PASSWORD
        from_email = noreply@example.com

    Building the adapters::

        adapters = build_adapters("/etc/delivery/adapters.ini")
        result = await adapters["transactional"].send_mail(message)
"""

from __future__ import annotations

import configparser
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .adapters import DeliveryAdapter, adapter_class
from .attachments import DEFAULT_MAX_BYTES
from .logger import get_logger
from .retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT

CONFIG_ENV_VAR = "DLA_CONFIG"
DEFAULT_CONFIG_PATH = "adapters.ini"
SECTION_PREFIX = "adapter:"
ENV_PREFIX = "env:"

logger = get_logger("AdapterConfigLoader")


@dataclass
class LayerConfig:
    """Defaults applied to every adapter that does not override them."""

    max_retries: int = DEFAULT_MAX_RETRIES
    """Retries after the first attempt for provider requests."""

    timeout: float = DEFAULT_TIMEOUT
    """Per-attempt timeout in seconds."""

    max_attachment_bytes: int = DEFAULT_MAX_BYTES
    """Size ceiling for remote attachment downloads."""

    def as_defaults(self) -> dict[str, Any]:
        return {
            "max_retries": self.max_retries,
            "timeout": self.timeout,
            "max_attachment_bytes": self.max_attachment_bytes,
        }


@dataclass
class AdapterEntry:
    """One configured adapter instance."""

    adapter_id: str
    provider: str
    config: dict[str, Any] = field(default_factory=dict)


def default_config_path() -> str:
    return os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH


def resolve_value(value: str) -> Any:
    """Expand ``env:NAME`` references and decode JSON literals.

    Raises:
        ValueError: If a referenced environment variable is not set, or a
            JSON literal is malformed.
    """
    text = value.strip()
    if text.startswith(ENV_PREFIX):
        name = text[len(ENV_PREFIX):].strip()
        if name not in os.environ:
            raise ValueError(f"Environment variable '{name}' is not set")
        return os.environ[name]
    if text[:1] in ("{", "["):
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON value: {e}") from e
    return text


class AdapterConfigLoader:
    """Parser for INI adapter configuration files.

    Attributes:
        config_path: Filesystem path to the configuration file.
        config: ConfigParser instance holding the parsed configuration.
    """

    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or default_config_path()
        # keys keep their case so camelCase aliases survive
        self.config = configparser.ConfigParser(interpolation=None)
        self.config.optionxform = str

    def load_config(self) -> None:
        """Read and parse the configuration file.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
        """
        if not Path(self.config_path).exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")
        self.config.read(self.config_path)

    def parse_layer(self) -> LayerConfig:
        if not self.config.has_section("delivery"):
            return LayerConfig()
        section = self.config["delivery"]
        defaults = LayerConfig()
        try:
            return LayerConfig(
                max_retries=section.getint("max_retries", defaults.max_retries),
                timeout=section.getfloat("timeout", defaults.timeout),
                max_attachment_bytes=section.getint("max_attachment_bytes", defaults.max_attachment_bytes),
            )
        except ValueError as e:
            raise ValueError(f"Invalid [delivery] section: {e}") from e

    def parse_adapters(self) -> list[AdapterEntry]:
        """Parse every ``[adapter:<id>]`` section.

        Raises:
            ValueError: On a section without ``provider`` or an unresolvable value.
        """
        layer = self.parse_layer().as_defaults()
        entries: list[AdapterEntry] = []
        for section_name in self.config.sections():
            if not section_name.startswith(SECTION_PREFIX):
                if section_name != "delivery":
                    logger.warning(f"Ignoring unknown section [{section_name}]")
                continue
            adapter_id = section_name[len(SECTION_PREFIX):].strip()
            if not adapter_id:
                raise ValueError(f"Section [{section_name}] has an empty adapter id")

            values = dict(self.config.items(section_name))
            provider = values.pop("provider", "").strip()
            if not provider:
                logger.error(f"Adapter '{adapter_id}' missing required field 'provider'")
                raise ValueError(f"Adapter '{adapter_id}' missing required field 'provider'")

            config = dict(layer)
            for key, raw in values.items():
                try:
                    config[key] = resolve_value(raw)
                except ValueError as e:
                    raise ValueError(f"Adapter '{adapter_id}', key '{key}': {e}") from e
            entries.append(AdapterEntry(adapter_id=adapter_id, provider=provider, config=config))

        logger.info(f"Parsed {len(entries)} adapters from config")
        return entries


def load_adapter_configs(config_path: str | None = None) -> dict[str, AdapterEntry]:
    """Load adapter entries keyed by adapter id."""
    loader = AdapterConfigLoader(config_path)
    loader.load_config()
    return {entry.adapter_id: entry for entry in loader.parse_adapters()}


def build_adapters(config_path: str | None = None, **kwargs: Any) -> dict[str, DeliveryAdapter]:
    """Instantiate every configured adapter through the registry.

    Args:
        config_path: INI file path; ``DLA_CONFIG`` or ``adapters.ini`` when omitted.
        **kwargs: Forwarded to each adapter constructor (``logger``, ``metrics``...).

    Raises:
        ValueError: Unknown provider or malformed file.
        ConfigurationError: An adapter config failed validation.
    """
    adapters: dict[str, DeliveryAdapter] = {}
    for adapter_id, entry in load_adapter_configs(config_path).items():
        adapters[adapter_id] = adapter_class(entry.provider)(entry.config, **kwargs)
        logger.debug(f"Built adapter '{adapter_id}' ({entry.provider})")
    return adapters
