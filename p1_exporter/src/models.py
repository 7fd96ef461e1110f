"""
Pydantic models for one HomeWizard P1 meter reading.

Defines the Snapshot model decoded from ``GET /api/v1/data`` and the
ExternalSensor entries it carries (water meters, heat meters and other
M-Bus devices attached to the smart meter).

Only the fields every P1 meter reports are required. Fields that depend on
the meter (tariff splits, phase L1 values, power quality counters, gas) may
be omitted or sent as ``null``; they decode to ``None`` and the registry
then leaves the corresponding series untouched for that cycle.

Decoding is strict: a numeric field sent as a string or boolean is rejected
rather than converted. JSON integers are accepted for float fields.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-19: Strict decoding of wire types

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExternalSensor(BaseModel):
    """A device attached to the P1 meter, reported in ``external``.

    Attributes:
        unique_id: Identity of the attached device.
        sensor_type: Device type, e.g. ``"gas_meter"`` or ``"water_meter"``.
            Sent as ``type`` on the wire.
        timestamp: Device-local reading stamp (opaque, e.g. ``230101120000``).
        value: Latest reading.
        unit: Unit of ``value``, e.g. ``"m3"`` or ``"°C"``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    unique_id: str
    sensor_type: str = Field(alias="type")
    timestamp: int
    value: float
    unit: str


class Snapshot(BaseModel):
    """A single decoded reading from the P1 meter.

    Cumulative fields are republished as-is: the model never checks that
    tariff splits add up to the totals or that totals are non-decreasing.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    # Identity and network
    wifi_ssid: str
    wifi_strength: float
    smr_version: int
    meter_model: str
    unique_id: str
    active_tariff: int

    # Cumulative energy
    total_power_import_kwh: float
    total_power_import_t1_kwh: float | None = None
    total_power_import_t2_kwh: float | None = None
    total_power_export_kwh: float
    total_power_export_t1_kwh: float | None = None
    total_power_export_t2_kwh: float | None = None

    # Instantaneous
    active_power_w: float
    active_power_l1_w: float | None = None
    active_current_a: float | None = None
    active_current_l1_a: float | None = None

    # Power quality
    voltage_sag_l1_count: float | None = None
    voltage_swell_l1_count: float | None = None
    any_power_fail_count: float | None = None
    long_power_fail_count: float | None = None

    # Gas
    total_gas_m3: float | None = None
    gas_timestamp: int | None = None
    gas_unique_id: str | None = None

    external: list[ExternalSensor] = Field(default_factory=list)

    @field_validator("external", mode="before")
    @classmethod
    def null_external_is_empty(cls, v: object) -> object:
        """Treat ``"external": null`` the same as an omitted list."""
        if v is None:
            return []
        return v
