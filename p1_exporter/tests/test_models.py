"""
Unit tests for the Snapshot and ExternalSensor models.

Tests verify:
- A full payload decodes with every field populated.
- The wire key ``type`` maps to ``sensor_type``.
- Meter-dependent fields may be omitted or null.
- Required fields and type mismatches are rejected.
- No cross-checks between tariff splits and totals.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from __future__ import annotations

from typing import Any

import pytest
from p1_exporter.src.models import ExternalSensor, Snapshot
from pydantic import ValidationError


class TestFullPayload:
    def test_decodes_all_fields(self, payload: dict[str, Any]) -> None:
        snapshot = Snapshot.model_validate(payload)

        assert snapshot.wifi_ssid == "HomeNetwork"
        assert snapshot.smr_version == 50
        assert snapshot.total_power_import_kwh == 1234.567
        assert snapshot.gas_timestamp == 1234567890
        assert snapshot.gas_unique_id == "aabbccddee112233"
        assert len(snapshot.external) == 1

    def test_external_type_key_maps_to_sensor_type(self, payload: dict[str, Any]) -> None:
        sensor = Snapshot.model_validate(payload).external[0]

        assert isinstance(sensor, ExternalSensor)
        assert sensor.sensor_type == "temperature"
        assert sensor.unit == "°C"
        assert sensor.value == 23.5

    def test_unknown_keys_ignored(self, payload: dict[str, Any]) -> None:
        payload["active_voltage_l1_v"] = 230.1
        snapshot = Snapshot.model_validate(payload)
        assert not hasattr(snapshot, "active_voltage_l1_v")


class TestOptionalFields:
    """Meter-dependent fields may be absent (tolerant decoding)."""

    @pytest.mark.parametrize(
        "key",
        [
            "total_power_import_t1_kwh",
            "active_power_l1_w",
            "voltage_sag_l1_count",
            "total_gas_m3",
            "gas_timestamp",
            "gas_unique_id",
        ],
    )
    def test_omitted_optional_field_is_none(self, payload: dict[str, Any], key: str) -> None:
        del payload[key]
        assert getattr(Snapshot.model_validate(payload), key) is None

    def test_null_optional_field_is_none(self, payload: dict[str, Any]) -> None:
        payload["total_gas_m3"] = None
        assert Snapshot.model_validate(payload).total_gas_m3 is None

    @pytest.mark.parametrize("value", [None, []])
    def test_null_or_empty_external(self, payload: dict[str, Any], value: object) -> None:
        payload["external"] = value
        assert Snapshot.model_validate(payload).external == []

    def test_omitted_external(self, payload: dict[str, Any]) -> None:
        del payload["external"]
        assert Snapshot.model_validate(payload).external == []


class TestRejectedPayloads:
    @pytest.mark.parametrize(
        "key", ["unique_id", "wifi_ssid", "total_power_import_kwh", "active_power_w"]
    )
    def test_missing_required_field(self, payload: dict[str, Any], key: str) -> None:
        del payload[key]
        with pytest.raises(ValidationError):
            Snapshot.model_validate(payload)

    def test_type_mismatch(self, payload: dict[str, Any]) -> None:
        payload["active_power_w"] = "a lot"
        with pytest.raises(ValidationError):
            Snapshot.model_validate(payload)

    def test_external_sensor_missing_unit(self, payload: dict[str, Any]) -> None:
        del payload["external"][0]["unit"]
        with pytest.raises(ValidationError):
            Snapshot.model_validate(payload)

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("active_power_w", "1500"),
            ("wifi_strength", True),
            ("active_tariff", "2"),
            ("total_gas_m3", "567.89"),
        ],
    )
    def test_wrong_wire_type_not_coerced(
        self, payload: dict[str, Any], key: str, value: object
    ) -> None:
        payload[key] = value
        with pytest.raises(ValidationError):
            Snapshot.model_validate(payload)

    def test_external_value_as_string_rejected(self, payload: dict[str, Any]) -> None:
        payload["external"][0]["value"] = "23.5"
        with pytest.raises(ValidationError):
            Snapshot.model_validate(payload)


class TestNoCrossChecks:
    def test_tariff_sum_mismatch_accepted(self, payload: dict[str, Any]) -> None:
        payload["total_power_import_t1_kwh"] = 1.0
        payload["total_power_import_t2_kwh"] = 1.0
        snapshot = Snapshot.model_validate(payload)
        assert snapshot.total_power_import_kwh == 1234.567
