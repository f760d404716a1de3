# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Unit tests for the INI adapter configuration loader."""

from __future__ import annotations

import pytest

from delivery_adapters.adapters import GenericRestAdapter, ResendAdapter
from delivery_adapters.config_loader import (
    AdapterConfigLoader,
    build_adapters,
    default_config_path,
    load_adapter_configs,
    resolve_value,
)
from delivery_adapters.errors import ConfigurationError

CONFIG = """\
[delivery]
max_retries = 1
timeout = 12

[adapter:transactional]
provider = resend
api_key = env:TEST_RESEND_KEY
fromEmail = noreply@example.com

[adapter:hooks]
provider = Generic-Rest
base_url = https://hooks.example.com/send
max_retries = 0
custom_headers = [{"key": "Authorization", "value": "Bearer t"}]
success_status = 200,204

[metrics]
enabled = true
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_RESEND_KEY", "re_from_env")
    path = tmp_path / "adapters.ini"
    path.write_text(CONFIG)
    return path


class TestResolveValue:
    def test_env_reference(self, monkeypatch):
        monkeypatch.setenv("SOME_SECRET", "s3cr3t")
        assert resolve_value("env:SOME_SECRET") == "s3cr3t"

    def test_missing_env(self, monkeypatch):
        monkeypatch.delenv("NOT_THERE", raising=False)
        with pytest.raises(ValueError, match="NOT_THERE"):
            resolve_value("env:NOT_THERE")

    def test_json_literal(self):
        assert resolve_value('{"a": 1}') == {"a": 1}
        assert resolve_value("[1, 2]") == [1, 2]

    def test_invalid_json(self):
        with pytest.raises(ValueError, match="Invalid JSON"):
            resolve_value("{broken")

    def test_plain_value(self):
        assert resolve_value("  smtp.example.com ") == "smtp.example.com"


class TestLoader:
    def test_entries(self, config_file):
        entries = load_adapter_configs(str(config_file))

        assert set(entries) == {"transactional", "hooks"}
        resend = entries["transactional"]
        assert resend.provider == "resend"
        assert resend.config["api_key"] == "re_from_env"
        assert resend.config["fromEmail"] == "noreply@example.com"
        assert resend.config["max_retries"] == 1
        assert resend.config["timeout"] == 12.0
        assert entries["hooks"].config["max_retries"] == "0"
        assert entries["hooks"].config["custom_headers"] == [{"key": "Authorization", "value": "Bearer t"}]

    def test_missing_file(self, tmp_path):
        loader = AdapterConfigLoader(str(tmp_path / "missing.ini"))
        with pytest.raises(FileNotFoundError):
            loader.load_config()

    def test_missing_provider(self, tmp_path):
        path = tmp_path / "bad.ini"
        path.write_text("[adapter:x]\napi_key = k\n")
        with pytest.raises(ValueError, match="missing required field 'provider'"):
            load_adapter_configs(str(path))

    def test_unset_env_names_adapter_and_key(self, tmp_path, monkeypatch):
        monkeypatch.delenv("UNSET_KEY", raising=False)
        path = tmp_path / "bad.ini"
        path.write_text("[adapter:x]\nprovider = resend\napi_key = env:UNSET_KEY\n")
        with pytest.raises(ValueError, match="Adapter 'x', key 'api_key'"):
            load_adapter_configs(str(path))

    def test_invalid_layer(self, tmp_path):
        path = tmp_path / "bad.ini"
        path.write_text("[delivery]\nmax_retries = many\n")
        with pytest.raises(ValueError, match=r"Invalid \[delivery\] section"):
            load_adapter_configs(str(path))

    def test_default_path_from_env(self, monkeypatch):
        monkeypatch.setenv("DLA_CONFIG", "/etc/delivery/adapters.ini")
        assert default_config_path() == "/etc/delivery/adapters.ini"
        monkeypatch.delenv("DLA_CONFIG")
        assert default_config_path() == "adapters.ini"


class TestBuildAdapters:
    def test_instances(self, config_file):
        adapters = build_adapters(str(config_file))

        resend = adapters["transactional"]
        assert isinstance(resend, ResendAdapter)
        assert resend.config.api_key == "re_from_env"
        assert resend.config.from_email == "noreply@example.com"
        assert resend.config.timeout == 12.0

        hooks = adapters["hooks"]
        assert isinstance(hooks, GenericRestAdapter)
        assert hooks.config.max_retries == 0
        assert hooks.custom_headers == {"Authorization": "Bearer t"}
        assert hooks.success_statuses == frozenset({200, 204})

    def test_unknown_provider(self, tmp_path):
        path = tmp_path / "bad.ini"
        path.write_text("[adapter:x]\nprovider = sendgrid\n")
        with pytest.raises(ValueError, match="Unknown provider"):
            build_adapters(str(path))

    def test_invalid_adapter_config(self, tmp_path):
        path = tmp_path / "bad.ini"
        path.write_text("[adapter:x]\nprovider = telegram\n")
        with pytest.raises(ConfigurationError, match="Invalid telegram configuration"):
            build_adapters(str(path))
