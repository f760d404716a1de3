# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Base class and configuration helpers for provider adapters.

Every adapter exposes the same surface to the orchestrator:

- ``get_config_schema()`` / ``get_metadata()``: static description.
- ``validate_config()``: lightweight credentials check.
- ``health_check()``: reachability probe, never raises.
- ``send_mail(message)``: always returns a :class:`DeliveryResult`.
- ``webhook(payload, headers)``: canonical event(s) or ``None``.

Subclasses implement the protected hooks (``_send``, ``_probe_health``,
``_check_config`` and optionally ``_webhook``). Transport, classification and
attachment handling are provided by composed helpers.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Annotated, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..attachments import DEFAULT_MAX_BYTES, AttachmentResolver
from ..classifier import ErrorClassifier
from ..errors import ConfigurationError, DeliveryError, UnknownError
from ..http import HttpRequest, HttpResponse, RequestEngine
from ..idempotency import IdempotencyFormat, derive_idempotency_key
from ..logger import get_logger
from ..models import (
    AdapterMetadata,
    ConfigField,
    DeliveryResult,
    HealthStatus,
    Message,
    ValidationResult,
    WebhookEvent,
)
from ..retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT, RetryPolicy
from ..webhooks.verify import WebhookVerifier

WebhookOutcome = WebhookEvent | list[WebhookEvent] | None


def config_field(
    label: str,
    default: Any = ...,
    *,
    type: str = "text",
    group: str = "settings",
    placeholder: str | None = None,
    hint: str | None = None,
    options: list[str] | None = None,
    **constraints: Any,
) -> Any:
    """Declare a config model field together with its schema presentation."""
    extra: dict[str, Any] = {"label": label, "type": type, "group": group}
    if placeholder is not None:
        extra["placeholder"] = placeholder
    if hint is not None:
        extra["hint"] = hint
    if options is not None:
        extra["options"] = options
    return Field(default, json_schema_extra=extra, **constraints)


class AdapterConfig(BaseModel):
    """Settings shared by every adapter. camelCase keys are accepted too."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    max_retries: Annotated[
        int,
        config_field("Max retries", DEFAULT_MAX_RETRIES, type="number", group="advanced", ge=0, le=10),
    ]
    timeout: Annotated[
        float,
        config_field("Request timeout (seconds)", DEFAULT_TIMEOUT, type="number", group="advanced", gt=0),
    ]
    max_attachment_bytes: Annotated[
        int,
        config_field("Max attachment size (bytes)", DEFAULT_MAX_BYTES, type="number", group="advanced", gt=0),
    ]

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, timeout=self.timeout)


def schema_from_model(model: type[BaseModel]) -> list[ConfigField]:
    """Derive the declarative schema from a config model's fields."""
    fields: list[ConfigField] = []
    for name, info in model.model_fields.items():
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
        required = info.is_required()
        fields.append(
            ConfigField(
                name=name,
                label=str(extra.get("label", name.replace("_", " ").capitalize())),
                type=str(extra.get("type", "text")),
                required=required,
                placeholder=extra.get("placeholder"),
                hint=extra.get("hint") or info.description,
                group=str(extra.get("group", "settings")),
                default=None if required else info.get_default(call_default_factory=True),
                options=extra.get("options"),
            )
        )
    return fields


def describe_validation_error(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_custom_headers(value: Any) -> dict[str, str]:
    """Accept headers as a ``[{key, value}]`` list, a mapping or a JSON object string.

    Invalid JSON and incomplete entries are ignored.
    """
    headers: dict[str, str] = {}
    if not value:
        return headers
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return headers
    if isinstance(value, Mapping):
        headers.update({str(k): str(v) for k, v in value.items()})
    elif isinstance(value, list):
        for item in value:
            if isinstance(item, Mapping) and item.get("key") and item.get("value"):
                headers[str(item["key"])] = str(item["value"])
    return headers


def parse_json_payload(payload: Any) -> Any:
    """Decode a webhook payload given as bytes, text or an already-parsed object."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        return json.loads(payload)
    return payload


class DeliveryAdapter(ABC):
    """Abstract base class for provider adapters.

    Construction validates the configuration eagerly and performs no I/O.

    Args:
        config: Mapping (or already-built config model) matching ``config_model``.
        engine: Optional :class:`RequestEngine`; built from the config when omitted.
        resolver: Optional :class:`AttachmentResolver`.
        logger: Optional logger, defaults to ``delivery_adapters.<ClassName>``.
        metrics: Optional :class:`~delivery_adapters.prometheus.AdapterMetrics`.

    Raises:
        ConfigurationError: Required fields are missing or invalid.
    """

    key: ClassVar[str] = ""
    config_model: ClassVar[type[AdapterConfig]] = AdapterConfig
    metadata: ClassVar[AdapterMetadata]
    idempotency_format: ClassVar[IdempotencyFormat | None] = None
    guess_inline_base64: ClassVar[bool] = False

    def __init__(
        self,
        config: Mapping[str, Any] | AdapterConfig | None = None,
        *,
        engine: RequestEngine | None = None,
        resolver: AttachmentResolver | None = None,
        logger=None,
        metrics=None,
    ):
        self.config = self.parse_config(config)
        self.logger = logger or get_logger(type(self).__name__)
        self.metrics = metrics
        self.classifier = self.build_classifier()
        self.engine = engine or RequestEngine(
            self.config.retry_policy(),
            adapter_name=self.key,
            logger=self.logger,
            metrics=metrics,
            classifier=self.classifier,
        )
        self.resolver = resolver or AttachmentResolver(
            max_bytes=self.config.max_attachment_bytes,
            timeout=self.config.timeout,
            logger=self.logger,
            guess_base64=self.guess_inline_base64,
        )

    # ------------------------------------------------------------------ static

    @classmethod
    def parse_config(cls, config: Mapping[str, Any] | AdapterConfig | None) -> Any:
        if isinstance(config, cls.config_model):
            return config
        try:
            return cls.config_model.model_validate(dict(config or {}))
        except PydanticValidationError as exc:
            raise ConfigurationError(
                f"Invalid {cls.key or cls.__name__} configuration: {describe_validation_error(exc)}"
            ) from exc

    @classmethod
    def get_config_schema(cls) -> list[ConfigField]:
        return schema_from_model(cls.config_model)

    @classmethod
    def get_metadata(cls) -> AdapterMetadata:
        return cls.metadata

    def build_classifier(self) -> ErrorClassifier:
        return ErrorClassifier()

    # ------------------------------------------------------------------ hooks

    @abstractmethod
    async def _send(self, message: Message) -> DeliveryResult:
        """Deliver one message. May raise :class:`DeliveryError`."""
        ...

    @abstractmethod
    async def _probe_health(self) -> HealthStatus:
        """Probe the provider. May raise, the caller maps errors to UNHEALTHY."""
        ...

    @abstractmethod
    async def _check_config(self) -> ValidationResult:
        """Perform a lightweight authenticated call."""
        ...

    async def _webhook(self, payload: Any, headers: Mapping[str, str]) -> WebhookOutcome:
        return None

    # ------------------------------------------------------------------ public

    async def validate_config(self) -> ValidationResult:
        try:
            return await self._check_config()
        except DeliveryError as exc:
            return ValidationResult(success=False, message=str(exc))
        except Exception as exc:
            self.logger.exception("Unexpected error validating %s configuration", self.key)
            return ValidationResult(success=False, message=f"Unexpected error: {exc}")

    async def health_check(self) -> HealthStatus:
        try:
            return await self._probe_health()
        except DeliveryError as exc:
            self.logger.warning("%s health check failed: %s", self.key, exc)
            return HealthStatus.UNHEALTHY
        except Exception:
            self.logger.exception("Unexpected error during %s health check", self.key)
            return HealthStatus.UNHEALTHY

    async def send_mail(self, message: Message | Mapping[str, Any]) -> DeliveryResult:
        """Send ``message`` and classify the outcome. Never raises for delivery failures."""
        try:
            msg = message if isinstance(message, Message) else Message.model_validate(message)
        except PydanticValidationError as exc:
            return self._record(
                DeliveryResult.failed(
                    f"Invalid message: {describe_validation_error(exc)}",
                    is_temporary=False,
                    is_local_error=True,
                    error_code="VALIDATION_ERROR",
                )
            )
        try:
            result = await self._send(msg)
        except DeliveryError as exc:
            payload = exc.payload if exc.payload is not None else msg.model_dump(mode="json")
            result = self.classifier.to_result(exc, payload)
            if not result.success:
                self.logger.warning("%s send to %s failed: %s", self.key, msg.to, exc)
        except Exception as exc:
            self.logger.exception("Unexpected error while sending via %s", self.key)
            result = DeliveryResult.failed(
                f"Unexpected error: {exc}",
                is_temporary=True,
                error_code="UNKNOWN_ERROR",
            )
        return self._record(result)

    async def webhook(self, payload: Any, headers: Mapping[str, str] | None = None) -> WebhookOutcome:
        """Verify and normalize a provider callback. Returns None when dropped."""
        try:
            outcome = await self._webhook(payload, headers or {})
        except Exception:
            self.logger.exception("Failed to process %s webhook", self.key)
            return None
        if self.metrics is not None and outcome is not None:
            for event in outcome if isinstance(outcome, list) else [outcome]:
                self.metrics.inc_webhook_event(self.key, event.status.value)
        return outcome

    # ------------------------------------------------------------------ helpers

    async def request(self, request: HttpRequest) -> HttpResponse:
        """Execute ``request`` through the engine, tagging errors with the payload."""
        try:
            return await self.engine.execute(request)
        except DeliveryError as exc:
            exc.payload = request.json if request.json is not None else request.data
            raise

    def accepted(self, message_id: Any, response: Any = None) -> DeliveryResult:
        """Success result, refusing provider answers that carry no message id."""
        if message_id in (None, ""):
            raise UnknownError(f"{self.key} accepted the request but returned no message id", details=response)
        return DeliveryResult.ok(str(message_id), response=response)

    def verified(self, verifier: WebhookVerifier | None, body: Any, headers: Mapping[str, str]) -> bool:
        if verifier is None:
            return True
        if verifier.verify(body, headers):
            return True
        if self.metrics is not None:
            self.metrics.inc_webhook_rejected(self.key)
        return False

    def idempotency_token(self, message: Message, fmt: IdempotencyFormat | None = None) -> str | None:
        fmt = fmt or self.idempotency_format
        if not message.idempotency_key or fmt is None:
            return None
        return derive_idempotency_key(message.idempotency_key, fmt)

    @staticmethod
    def option(message: Message, name: str, default: Any = None) -> Any:
        """Per-message override from ``message.data`` (snake or camelCase key)."""
        if name in message.data:
            return message.data[name]
        camel = to_camel(name)
        if camel in message.data:
            return message.data[camel]
        return default

    def _record(self, result: DeliveryResult) -> DeliveryResult:
        if self.metrics is not None:
            if result.success:
                self.metrics.inc_sent(self.key)
            else:
                kind = "local" if result.is_local_error else ("temporary" if result.is_temporary else "permanent")
                self.metrics.inc_error(self.key, kind)
        return result
