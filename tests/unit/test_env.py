"""Unit tests for environment variable substitution."""

from __future__ import annotations

import pytest

from cloud_provisioner.config.env import resolve_env_vars, resolve_plan_env


class TestResolveEnvVars:
    def test_plain_string_unchanged(self):
        assert resolve_env_vars("hello") == "hello"

    def test_substitutes_env_var(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MY_REGION", "westus")
        assert resolve_env_vars("${MY_REGION}") == "westus"

    def test_default_when_var_missing(self):
        assert resolve_env_vars("${MISSING_VAR:-fallback}") == "fallback"

    def test_env_var_overrides_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MY_SKU", "Premium")
        assert resolve_env_vars("${MY_SKU:-Standard}") == "Premium"

    def test_empty_default(self):
        assert resolve_env_vars("${MISSING_VAR:-}") == ""

    def test_missing_var_no_default_raises(self):
        with pytest.raises(ValueError, match="UNDEFINED_VAR"):
            resolve_env_vars("${UNDEFINED_VAR}")

    def test_embedded_in_string(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("SUB", "1234")
        result = resolve_env_vars("/subscriptions/${SUB}/resourceGroups/rg")
        assert result == "/subscriptions/1234/resourceGroups/rg"

    def test_recursive_structures(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TENANT", "t-1")
        data = {
            "properties": {"tenantId": "${TENANT}", "keyOps": ["${MISSING:-wrapKey}"]},
            "count": 3,
            "enabled": True,
            "nothing": None,
        }
        assert resolve_env_vars(data) == {
            "properties": {"tenantId": "t-1", "keyOps": ["wrapKey"]},
            "count": 3,
            "enabled": True,
            "nothing": None,
        }

    def test_default_with_colons(self):
        result = resolve_env_vars("${MISSING:-https://management.azure.com}")
        assert result == "https://management.azure.com"


class TestResolvePlanEnv:
    def test_resolves_every_section(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("AZURE_SUBSCRIPTION_ID", "sub-1")
        monkeypatch.setenv("REGION", "eastus")
        data = {
            "plan_id": "demo",
            "location": "${REGION}",
            "client": {"subscription_id": "${AZURE_SUBSCRIPTION_ID:-}"},
            "steps": [{"step_id": "rg", "payload": {"tags": {"env": "${STAGE:-dev}"}}}],
        }
        assert resolve_plan_env(data) == {
            "plan_id": "demo",
            "location": "eastus",
            "client": {"subscription_id": "sub-1"},
            "steps": [{"step_id": "rg", "payload": {"tags": {"env": "dev"}}}],
        }

    def test_step_failure_names_the_step(self):
        data = {
            "steps": [
                {"step_id": "rg"},
                {"step_id": "server", "payload": {"password": "${PG_PASSWORD_UNSET}"}},
            ]
        }
        with pytest.raises(ValueError, match="step 'server': .*PG_PASSWORD_UNSET"):
            resolve_plan_env(data)

    def test_step_without_id_uses_position(self):
        with pytest.raises(ValueError, match=r"steps\[0\]"):
            resolve_plan_env({"steps": [{"name": "${NAME_UNSET}"}]})

    def test_section_failure_names_the_section(self):
        with pytest.raises(ValueError, match="client: .*TOKEN_UNSET"):
            resolve_plan_env({"client": {"access_token": "${TOKEN_UNSET}"}})
