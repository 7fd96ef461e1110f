"""
Shared test fixtures for exporter tests.

Provides environment isolation for ExporterSettings tests and a realistic
HomeWizard ``/api/v1/data`` payload used across client, registry, poller and
scrape tests. All exporter env vars are cleaned before each test.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

import copy
from typing import Any

import pytest
from p1_exporter.src.models import Snapshot

# All ExporterSettings environment variable names, used for cleanup.
_ALL_EXPORTER_ENV_VARS = (
    "HOMEWIZARD_HOST",
    "METRICS_PORT",
    "POLL_INTERVAL",
    "LOG_LEVEL",
    "HOMEWIZARD_API_TOKEN",
    "HTTP_TIMEOUT",
)

_PAYLOAD: dict[str, Any] = {
    "wifi_ssid": "HomeNetwork",
    "wifi_strength": 75.5,
    "smr_version": 50,
    "meter_model": "ISKRA 2M550T-1012",
    "unique_id": "3c39e7aabbccddee",
    "active_tariff": 1,
    "total_power_import_kwh": 1234.567,
    "total_power_import_t1_kwh": 800.123,
    "total_power_import_t2_kwh": 434.444,
    "total_power_export_kwh": 89.012,
    "total_power_export_t1_kwh": 60.789,
    "total_power_export_t2_kwh": 28.223,
    "active_power_w": 1500.0,
    "active_power_l1_w": 1500.0,
    "active_current_a": 6.8,
    "active_current_l1_a": 6.8,
    "voltage_sag_l1_count": 2.0,
    "voltage_swell_l1_count": 1.0,
    "any_power_fail_count": 5.0,
    "long_power_fail_count": 0.0,
    "total_gas_m3": 567.89,
    "gas_timestamp": 1234567890,
    "gas_unique_id": "aabbccddee112233",
    "external": [
        {
            "unique_id": "sensor123",
            "type": "temperature",
            "timestamp": 1234567890,
            "value": 23.5,
            "unit": "°C",
        }
    ],
}
"""A full P1 meter reading with one external temperature sensor."""


@pytest.fixture(autouse=True)
def _clean_exporter_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all exporter env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_EXPORTER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def payload() -> dict[str, Any]:
    """Return a fresh, mutable copy of the sample upstream JSON payload."""
    return copy.deepcopy(_PAYLOAD)


@pytest.fixture()
def snapshot(payload: dict[str, Any]) -> Snapshot:
    """Return the sample payload decoded into a Snapshot."""
    return Snapshot.model_validate(payload)


def make_snapshot(**overrides: Any) -> Snapshot:
    """Build a Snapshot from the sample payload with fields replaced."""
    data = copy.deepcopy(_PAYLOAD)
    data.update(overrides)
    return Snapshot.model_validate(data)


@pytest.fixture()
def snapshot_factory() -> Any:
    """Return :func:`make_snapshot` for tests that need several variants."""
    return make_snapshot
