# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Adapter for arbitrary REST endpoints driven by a JSON payload template.

Template placeholders look like ``{{name}}``. Values come from the message
(``to``, ``subject``, ``body``), the sender defaults (``from_email``,
``from_name``) and every key of ``message.data``. Values are JSON-escaped so
that a placeholder inside a JSON string literal stays valid; a rendered
template that is not valid JSON is sent verbatim.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import field_validator

from ..http import HttpRequest
from ..idempotency import IdempotencyFormat
from ..models import AdapterMetadata, DeliveryResult, HealthStatus, Message, ValidationResult
from .base import AdapterConfig, DeliveryAdapter, config_field, parse_custom_headers

DEFAULT_SUCCESS_STATUS = (200, 201, 202)
IDEMPOTENCY_HEADERS = ("Idempotency-Key", "X-Idempotency-Key", "X-Request-Id")
BODYLESS_METHODS = frozenset({"GET", "HEAD"})

_PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")


class GenericRestConfig(AdapterConfig):
    base_url: Annotated[
        str,
        config_field(
            "Base URL",
            group="connection",
            placeholder="https://api.myservice.com/v1/send",
            hint="The full URL endpoint where the request will be sent.",
            min_length=1,
        ),
    ]
    method: Annotated[
        Literal["POST", "PUT", "PATCH", "GET"],
        config_field("HTTP Method", "POST", type="select", group="connection", options=["POST", "PUT", "PATCH", "GET"]),
    ]
    custom_headers: Annotated[Any, config_field("Custom Headers", None, type="customHeaders", group="authentication")]
    payload_template: Annotated[
        str | None,
        config_field(
            "Payload Template",
            None,
            type="json-template",
            group="payload",
            placeholder='{"recipient": "{{to}}", "content": "{{body}}"}',
        ),
    ]
    success_status: Annotated[
        list[int],
        config_field(
            "Success Status Code(s)",
            list(DEFAULT_SUCCESS_STATUS),
            group="validation",
            placeholder="200,201,202",
            hint="Comma-separated list of HTTP status codes to treat as success.",
        ),
    ]
    from_email: Annotated[str | None, config_field("From Email", None, group="defaults")]
    from_name: Annotated[str | None, config_field("From Name", None, group="defaults")]
    custom_name: Annotated[str | None, config_field("Name", None, placeholder="My Generic API")]

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("success_status", mode="before")
    @classmethod
    def split_statuses(cls, v: Any) -> Any:
        if v is None or v == "":
            return list(DEFAULT_SUCCESS_STATUS)
        if isinstance(v, int):
            return [v]
        if isinstance(v, str):
            return [int(part) for part in v.split(",") if part.strip()]
        return v


def _json_escape(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value)[1:-1]
    if isinstance(value, (dict, list, bool)) or value is None:
        return json.dumps(value)
    return str(value)


def render_template(template: str, values: Mapping[str, Any]) -> Any:
    """Fill ``{{name}}`` placeholders; unknown names are left untouched.

    Returns:
        The parsed JSON document, or the rendered string when it is not JSON.
    """

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        if name not in values:
            return match.group(0)
        return _json_escape(values[name])

    rendered = _PLACEHOLDER_RE.sub(_replace, template)
    try:
        return json.loads(rendered)
    except ValueError:
        return rendered


def _has_header(headers: Mapping[str, str], name: str) -> bool:
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


def response_id(data: Any) -> str | None:
    if not isinstance(data, Mapping):
        return None
    result = data.get("result") if isinstance(data.get("result"), Mapping) else {}
    for candidate in (data.get("id"), data.get("messageId"), result.get("id")):
        if candidate not in (None, ""):
            return str(candidate)
    return None


class GenericRestAdapter(DeliveryAdapter):
    key = "generic_rest"
    config_model = GenericRestConfig
    metadata = AdapterMetadata(
        name="Generic REST API",
        description="Send messages via any generic REST API with custom payloads and headers.",
        group="generic",
    )
    idempotency_format = IdempotencyFormat.HEADER

    def __init__(self, config: Mapping[str, Any] | GenericRestConfig | None = None, **kwargs: Any):
        super().__init__(config, **kwargs)
        self.custom_headers = parse_custom_headers(self.config.custom_headers)
        self.success_statuses = frozenset(self.config.success_status)

    def _request(self, method: str, headers: dict[str, str], body: Any = None) -> HttpRequest:
        request = HttpRequest(method, self.config.base_url, headers=headers, success_statuses=self.success_statuses)
        if body is None or method in BODYLESS_METHODS:
            return request
        if not _has_header(headers, "Content-Type"):
            headers["Content-Type"] = "application/json"
        if isinstance(body, str):
            request.data = body
        else:
            request.json = body
        return request

    async def _check_config(self) -> ValidationResult:
        response = await self.request(self._request(self.config.method, dict(self.custom_headers)))
        return ValidationResult(success=True, message=f"Successfully reached the endpoint (Status {response.status}).")

    async def _probe_health(self) -> HealthStatus:
        await self.request(self._request(self.config.method, dict(self.custom_headers)))
        return HealthStatus.HEALTHY

    def build_headers(self, message: Message) -> dict[str, str]:
        headers = dict(self.custom_headers)
        if isinstance(message.data.get("headers"), Mapping):
            headers.update({str(k): str(v) for k, v in message.data["headers"].items()})
        token = self.idempotency_token(message)
        if token:
            for name in IDEMPOTENCY_HEADERS:
                if not _has_header(headers, name):
                    headers[name] = token
        return headers

    def build_payload(self, message: Message) -> Any:
        data = message.data
        if not self.config.payload_template:
            return {"to": message.to, "subject": message.subject, "content": message.body, "data": data}
        values = {
            **data,
            "to": message.to,
            "subject": message.subject or "",
            "body": message.body or "",
            "from_email": self.config.from_email or data.get("from_email"),
            "from_name": self.config.from_name or data.get("from_name"),
        }
        return render_template(
            self.config.payload_template, {k: v for k, v in values.items() if v is not None}
        )

    async def _send(self, message: Message) -> DeliveryResult:
        headers = self.build_headers(message)
        response = await self.request(self._request(self.config.method, headers, self.build_payload(message)))
        return self.accepted(response_id(response.data) or f"rest-{int(time.time() * 1000)}", response.data)
