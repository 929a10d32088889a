# tests/unit/core/test_config.py
"""Tests for settings loading and the endpoint catalog file."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from clearbridge.contracts import Operation, ProtocolShape
from clearbridge.core.config import (
    ClearbridgeSettings,
    ProviderSettings,
    load_endpoint_catalog,
    load_settings,
)

SETTINGS_YAML = """\
database:
  url: sqlite:///./state/test.db
retry_sweep:
  batch_size: 50
scheduler:
  open_clearances_interval_seconds: 30
providers:
  earthmed:
    requires_authentication: true
    token_url: https://login.example.test/token
    client_id: clearbridge
    client_secret: ${EARTHMED_SECRET}
    scope: ${EARTHMED_SCOPE:-api://earthmed/.default}
  acme:
    protocol: three_cycle
    request_id_paths:
      - data.ticket
"""


class TestLoadSettings:
    def test_loads_yaml_with_env_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Values, defaults and ${VAR} expansion flow into frozen settings."""
        monkeypatch.setenv("EARTHMED_SECRET", "s3cret")
        monkeypatch.delenv("EARTHMED_SCOPE", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text(SETTINGS_YAML)

        settings = load_settings(path)

        assert settings.database.url == "sqlite:///./state/test.db"
        assert settings.retry_sweep.batch_size == 50
        assert settings.scheduler.open_clearances_interval_seconds == 30
        assert settings.scheduler.pending_interval_seconds == 300.0
        earthmed = settings.providers["EARTHMED"]
        assert earthmed.client_secret == "s3cret"
        assert earthmed.scope == "api://earthmed/.default"
        acme = settings.providers["ACME"]
        assert acme.protocol == ProtocolShape.THREE_CYCLE
        assert acme.request_id_paths == ["data.ticket"]

    def test_env_var_fills_nested_value(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """CLEARBRIDGE_SECTION__KEY variables reach nested settings."""
        monkeypatch.setenv("EARTHMED_SECRET", "x")
        monkeypatch.setenv("CLEARBRIDGE_HTTP__DEFAULT_TIMEOUT_SECONDS", "12")
        path = tmp_path / "settings.yaml"
        path.write_text(SETTINGS_YAML)

        assert load_settings(path).http.default_timeout_seconds == 12

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """A missing settings file is an error, not empty defaults."""
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml")

    def test_settings_are_frozen(self) -> None:
        """Settings cannot be mutated after construction."""
        settings = ClearbridgeSettings()
        with pytest.raises(ValidationError):
            settings.retry_sweep.batch_size = 1  # type: ignore[misc]


class TestProviderSettings:
    def test_authentication_requires_token_endpoint(self) -> None:
        """requires_authentication without token_url/client_id is rejected."""
        with pytest.raises(ValidationError, match="token_url and client_id"):
            ProviderSettings(requires_authentication=True)

    def test_codes_normalized_and_unique(self) -> None:
        """Provider codes are upper-cased; duplicates after normalization fail."""
        settings = ClearbridgeSettings(providers={" acme ": ProviderSettings()})
        assert list(settings.providers) == ["ACME"]
        with pytest.raises(ValidationError, match="more than once"):
            ClearbridgeSettings(providers={"acme": ProviderSettings(), "ACME": ProviderSettings()})


class TestEndpointCatalogFile:
    def test_loads_endpoint_list(self, tmp_path: Path) -> None:
        """Records are validated and normalized."""
        path = tmp_path / "endpoints.yaml"
        path.write_text(
            """\
endpoints:
  - provider_code: cmts
    operation: CREATE_CLEARANCE_REQUEST
    base_url: https://cmts.example.test/api
    path_template: /clearances
    http_method: post
    data_models: Subject,Program
    payload_template: '{"subjectId": {{ SubjectId }}}'
    retrigger: true
    retrigger_count: 3
"""
        )

        [seed] = load_endpoint_catalog(path)

        assert seed.provider_code == "CMTS"
        assert seed.operation == Operation.CREATE_CLEARANCE_REQUEST
        assert seed.http_method == "POST"
        assert seed.retrigger_count == 3
        assert seed.retrigger_interval_minutes == 1

    def test_rejects_other_shapes(self, tmp_path: Path) -> None:
        """A scalar document is neither a list nor an endpoints mapping."""
        path = tmp_path / "endpoints.yaml"
        path.write_text("just text\n")
        with pytest.raises(ValueError, match="expected a list"):
            load_endpoint_catalog(path)
