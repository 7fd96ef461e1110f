"""
Prometheus metric registry for HomeWizard P1 snapshots -- single source of truth.

Declares the fixed metric schema (names, help texts, types, label sets and
the Snapshot field behind each scalar series), holds the latest published
values, and renders them in the Prometheus text exposition format 0.0.4.

State handling:

- ``apply(snapshot)`` builds a complete new :class:`RegistryState` off-line
  and publishes it with one reference swap under a lock.
- ``render()`` takes the same lock only to collect from the published state,
  so a scrape always sees exactly one committed apply (or the initial zeros).
- Counters carry the upstream cumulative reading: each apply overwrites them
  with the device value, so the printed number equals what the meter reports.
- Label-bearing series (meter info, gas meter info, external sensors) are
  rebuilt from scratch on every apply, so tuples for vanished sensors or
  changed labels never linger.

Metric families are built with ``prometheus_client`` types and served from a
``CollectorRegistry``. The text encoder is local because the exposition keeps
the exact series names of the schema (no ``_total``/``_created`` munging),
prints integral values without a decimal point, and omits families that have
no samples.

CHANGELOG:
- 2026-10-18: Initial creation
- 2026-10-19: Counters are assigned the cumulative reading directly

TODO:
- None
"""

from __future__ import annotations

import itertools
import logging
import math
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from prometheus_client import CollectorRegistry
from prometheus_client.metrics_core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector
from prometheus_client.utils import floatToGoString

from p1_exporter.src.models import Snapshot

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
"""Content type of :meth:`MetricRegistry.render` output."""


class RenderError(Exception):
    """Raised when the registry cannot be encoded into exposition text."""


# ---------------------------------------------------------------------------
# Schema definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SeriesDef:
    """A single unlabeled-by-data series fed from one Snapshot field.

    Attributes:
        name: Metric family name as exposed to Prometheus.
        documentation: HELP text.
        metric_type: ``"counter"`` or ``"gauge"``.
        field: Snapshot attribute providing the value.
        labels: Constant labels distinguishing series within one family,
            e.g. ``(("tariff", "1"),)``.
    """

    name: str
    documentation: str
    metric_type: str
    field: str
    labels: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True, slots=True)
class LabeledFamilyDef:
    """A gauge family whose label values come from the snapshot."""

    name: str
    documentation: str
    label_names: tuple[str, ...]


SCALAR_SERIES: tuple[SeriesDef, ...] = (
    # Power import
    SeriesDef(
        "homewizard_p1_power_import_total_kwh",
        "Total power imported in kWh",
        "counter",
        "total_power_import_kwh",
    ),
    SeriesDef(
        "homewizard_p1_power_import_tariff_kwh",
        "Power imported per tariff in kWh",
        "counter",
        "total_power_import_t1_kwh",
        (("tariff", "1"),),
    ),
    SeriesDef(
        "homewizard_p1_power_import_tariff_kwh",
        "Power imported per tariff in kWh",
        "counter",
        "total_power_import_t2_kwh",
        (("tariff", "2"),),
    ),
    # Power export
    SeriesDef(
        "homewizard_p1_power_export_total_kwh",
        "Total power exported in kWh",
        "counter",
        "total_power_export_kwh",
    ),
    SeriesDef(
        "homewizard_p1_power_export_tariff_kwh",
        "Power exported per tariff in kWh",
        "counter",
        "total_power_export_t1_kwh",
        (("tariff", "1"),),
    ),
    SeriesDef(
        "homewizard_p1_power_export_tariff_kwh",
        "Power exported per tariff in kWh",
        "counter",
        "total_power_export_t2_kwh",
        (("tariff", "2"),),
    ),
    # Instantaneous power
    SeriesDef(
        "homewizard_p1_active_power_watts",
        "Current active power in watts",
        "gauge",
        "active_power_w",
    ),
    SeriesDef(
        "homewizard_p1_active_power_l1_watts",
        "Current active power L1 in watts",
        "gauge",
        "active_power_l1_w",
    ),
    SeriesDef(
        "homewizard_p1_active_current_amperes",
        "Current active current in amperes",
        "gauge",
        "active_current_a",
    ),
    SeriesDef(
        "homewizard_p1_active_current_l1_amperes",
        "Current active current L1 in amperes",
        "gauge",
        "active_current_l1_a",
    ),
    SeriesDef(
        "homewizard_p1_active_tariff",
        "Currently active tariff (1 or 2)",
        "gauge",
        "active_tariff",
    ),
    # Gas
    SeriesDef(
        "homewizard_p1_gas_total_m3",
        "Total gas consumption in m3",
        "counter",
        "total_gas_m3",
    ),
    SeriesDef(
        "homewizard_p1_gas_timestamp",
        "Timestamp of last gas meter reading",
        "gauge",
        "gas_timestamp",
    ),
    # Network
    SeriesDef(
        "homewizard_p1_wifi_strength_percent",
        "WiFi signal strength percentage",
        "gauge",
        "wifi_strength",
    ),
    # Power quality
    SeriesDef(
        "homewizard_p1_voltage_sag_count_total",
        "Total voltage sag events",
        "counter",
        "voltage_sag_l1_count",
    ),
    SeriesDef(
        "homewizard_p1_voltage_swell_count_total",
        "Total voltage swell events",
        "counter",
        "voltage_swell_l1_count",
    ),
    SeriesDef(
        "homewizard_p1_power_failures_any_total",
        "Total power failures (any duration)",
        "counter",
        "any_power_fail_count",
    ),
    SeriesDef(
        "homewizard_p1_power_failures_long_total",
        "Total long power failures",
        "counter",
        "long_power_fail_count",
    ),
)
"""All scalar series, in exposition order. Families sharing a name are adjacent."""

GAS_METER_INFO = LabeledFamilyDef(
    "homewizard_p1_gas_meter_info",
    "Gas meter information",
    ("unique_id",),
)

METER_INFO = LabeledFamilyDef(
    "homewizard_p1_meter_info",
    "Meter information",
    ("meter_id", "meter_model", "smr_version", "wifi_ssid"),
)

EXTERNAL_SENSOR_VALUE = LabeledFamilyDef(
    "homewizard_p1_external_sensor_value",
    "External sensor value",
    ("unique_id", "type", "unit"),
)

EXTERNAL_SENSOR_TIMESTAMP = LabeledFamilyDef(
    "homewizard_p1_external_sensor_timestamp",
    "External sensor timestamp",
    ("unique_id", "type"),
)


# ---------------------------------------------------------------------------
# Published state
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RegistryState:
    """One complete, immutable set of series values.

    Never mutated after it has been published; :func:`build_state` always
    returns a fresh instance.
    """

    scalars: dict[SeriesDef, float] = field(
        default_factory=lambda: {series: 0.0 for series in SCALAR_SERIES}
    )
    meter_info: tuple[tuple[str, ...], ...] = ()
    gas_meter_info: tuple[tuple[str, ...], ...] = ()
    external_values: dict[tuple[str, str, str], float] = field(default_factory=dict)
    external_timestamps: dict[tuple[str, str], float] = field(default_factory=dict)


def build_state(snapshot: Snapshot, previous: RegistryState) -> RegistryState:
    """Derive the next registry state from a snapshot.

    This is a pure function. Scalar series whose snapshot field is ``None``
    keep their value from *previous*; every label-bearing series is rebuilt
    from the snapshot alone.

    Args:
        snapshot: The freshly fetched reading.
        previous: The currently published state.

    Returns:
        A new :class:`RegistryState`.
    """
    scalars = dict(previous.scalars)
    for series in SCALAR_SERIES:
        value = getattr(snapshot, series.field)
        if value is not None:
            # Counters carry the cumulative reading as-is, even if it dropped.
            scalars[series] = float(value)

    meter_info = (
        (
            snapshot.unique_id,
            snapshot.meter_model,
            str(snapshot.smr_version),
            snapshot.wifi_ssid,
        ),
    )

    gas_meter_info: tuple[tuple[str, ...], ...] = ()
    if snapshot.gas_unique_id is not None:
        gas_meter_info = ((snapshot.gas_unique_id,),)

    # Later entries overwrite earlier ones sharing the same label tuple.
    external_values: dict[tuple[str, str, str], float] = {}
    external_timestamps: dict[tuple[str, str], float] = {}
    for sensor in snapshot.external:
        external_values[(sensor.unique_id, sensor.sensor_type, sensor.unit)] = float(
            sensor.value
        )
        external_timestamps[(sensor.unique_id, sensor.sensor_type)] = float(
            sensor.timestamp
        )

    return RegistryState(
        scalars=scalars,
        meter_info=meter_info,
        gas_meter_info=gas_meter_info,
        external_values=external_values,
        external_timestamps=external_timestamps,
    )


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class HomeWizardCollector(Collector):
    """prometheus_client collector yielding families from the published state."""

    def __init__(self) -> None:
        self._state = RegistryState()

    @property
    def state(self) -> RegistryState:
        return self._state

    def publish(self, state: RegistryState) -> None:
        """Replace the published state in one reference assignment."""
        self._state = state

    def collect(self) -> Iterator[Metric]:
        state = self._state
        yield from _scalar_families(state)
        yield _labeled_family(GAS_METER_INFO, {t: 1.0 for t in state.gas_meter_info})
        yield _labeled_family(METER_INFO, {t: 1.0 for t in state.meter_info})
        yield _labeled_family(EXTERNAL_SENSOR_VALUE, state.external_values)
        yield _labeled_family(EXTERNAL_SENSOR_TIMESTAMP, state.external_timestamps)


def _scalar_families(state: RegistryState) -> Iterator[Metric]:
    """Group adjacent scalar series by name into one family each."""
    for name, group in itertools.groupby(SCALAR_SERIES, key=lambda s: s.name):
        members = list(group)
        family = Metric(name, members[0].documentation, members[0].metric_type)
        for series in members:
            family.add_sample(name, dict(series.labels), state.scalars[series])
        yield family


def _labeled_family(
    definition: LabeledFamilyDef,
    values: dict[tuple[str, ...], float],
) -> GaugeMetricFamily:
    family = GaugeMetricFamily(
        definition.name,
        definition.documentation,
        labels=definition.label_names,
    )
    for label_values in sorted(values):
        family.add_metric(list(label_values), values[label_values])
    return family


# ---------------------------------------------------------------------------
# Text exposition
# ---------------------------------------------------------------------------


def format_value(value: float) -> str:
    """Format a sample value the way Prometheus client libraries print it.

    Integral values are printed without a decimal point (``1500``), other
    finite values with the shortest repr that round-trips (``1234.567``).
    """
    value = float(value)
    if not math.isfinite(value):
        return floatToGoString(value)
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _escape_help(text: str) -> str:
    return text.replace("\\", r"\\").replace("\n", r"\n")


def _escape_label_value(text: str) -> str:
    return text.replace("\\", r"\\").replace("\n", r"\n").replace('"', r"\"")


def _format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    pairs = ",".join(
        f'{name}="{_escape_label_value(str(value))}"' for name, value in labels.items()
    )
    return "{" + pairs + "}"


def encode_text(families: Iterable[Metric]) -> str:
    """Encode metric families as Prometheus text exposition format 0.0.4.

    Families without samples are skipped entirely, HELP and TYPE included.
    """
    output: list[str] = []
    for family in families:
        if not family.samples:
            continue
        output.append(f"# HELP {family.name} {_escape_help(family.documentation)}\n")
        output.append(f"# TYPE {family.name} {family.type}\n")
        for sample in family.samples:
            output.append(
                f"{sample.name}{_format_labels(sample.labels)} "
                f"{format_value(sample.value)}\n"
            )
    return "".join(output)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class MetricRegistry:
    """Process-wide holder of the latest P1 snapshot as Prometheus series.

    Before the first :meth:`apply`, every scalar series renders as 0 and no
    info or external sensor tuples are present.

    Usage::

        registry = MetricRegistry()
        registry.apply(snapshot)
        body = registry.render()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._collector = HomeWizardCollector()
        self._registry = CollectorRegistry(auto_describe=False)
        self._registry.register(self._collector)
        self._applied = 0

    @property
    def applied_count(self) -> int:
        """Number of snapshots applied since construction."""
        return self._applied

    def apply(self, snapshot: Snapshot) -> None:
        """Overwrite all series from *snapshot* atomically with respect to render."""
        with self._lock:
            state = build_state(snapshot, self._collector.state)
            self._collector.publish(state)
            self._applied += 1

    def render(self) -> str:
        """Return the exposition document for the currently published state.

        Raises:
            RenderError: If the families cannot be encoded.
        """
        with self._lock:
            families = list(self._registry.collect())
        try:
            return encode_text(families)
        except (TypeError, ValueError) as exc:
            raise RenderError(f"failed to encode metrics: {exc}") from exc
