"""
Threshold classification for sensor readings.

Maps a (sensor type, value) pair onto a discrete severity using a per-type
threshold table. Two table shapes exist:

- SimpleThreshold: a single upward danger boundary (gas, CO), optionally
  preceded by a caution boundary.
- RangeThreshold: a comfort band with danger on either side (temperature,
  humidity), optionally with a narrower caution band.

Leaving the caution bounds out yields the two-state (normal/danger) policy.
Unknown sensor types always classify as normal so ingestion never depends
on complete configuration.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from app.exceptions import ConfigurationError


class Severity(str, Enum):
    """Reading severity, ordered from least to most severe."""
    NORMAL = "normal"
    CAUTION = "caution"
    DANGER = "danger"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def is_alert(self) -> bool:
        return self is not Severity.NORMAL


_SEVERITY_RANK = {Severity.NORMAL: 0, Severity.CAUTION: 1, Severity.DANGER: 2}


class SensorType(str, Enum):
    """Canonical sensor types known to the threshold table."""
    GAS = "gas"
    CARBON_MONOXIDE = "carbon_monoxide"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"


# Hardware names reported by device firmware
SENSOR_ALIASES: Dict[str, str] = {
    "MQ2": SensorType.GAS.value,
    "MQ4": SensorType.CARBON_MONOXIDE.value,
    "MQ7": SensorType.CARBON_MONOXIDE.value,
    "CO": SensorType.CARBON_MONOXIDE.value,
    "carbon-monoxide": SensorType.CARBON_MONOXIDE.value,
    "DHT11_temp": SensorType.TEMPERATURE.value,
    "DHT11_hum": SensorType.HUMIDITY.value,
}


_ALIASES_BY_LOWER = {name.lower(): canonical for name, canonical in SENSOR_ALIASES.items()}


def normalize_sensor_type(sensor_type: str) -> str:
    """Resolve firmware aliases (case-insensitive) to the canonical sensor type name."""
    lowered = sensor_type.strip().lower()
    return _ALIASES_BY_LOWER.get(lowered, lowered.replace("-", "_"))


@dataclass(frozen=True)
class SimpleThreshold:
    danger: float
    caution: Optional[float] = None

    def classify(self, value: float) -> Severity:
        if value >= self.danger:
            return Severity.DANGER
        if self.caution is not None and value >= self.caution:
            return Severity.CAUTION
        return Severity.NORMAL


@dataclass(frozen=True)
class RangeThreshold:
    danger_low: Optional[float] = None
    danger_high: Optional[float] = None
    caution_low: Optional[float] = None
    caution_high: Optional[float] = None

    def classify(self, value: float) -> Severity:
        if self.danger_low is not None and value <= self.danger_low:
            return Severity.DANGER
        if self.danger_high is not None and value >= self.danger_high:
            return Severity.DANGER
        if self.caution_low is not None and value < self.caution_low:
            return Severity.CAUTION
        if self.caution_high is not None and value > self.caution_high:
            return Severity.CAUTION
        return Severity.NORMAL


Threshold = Union[SimpleThreshold, RangeThreshold]


DEFAULT_THRESHOLDS: Dict[str, Dict[str, Any]] = {
    "gas": {"kind": "simple", "caution": 300, "danger": 600},
    "carbon_monoxide": {"kind": "simple", "caution": 50, "danger": 150},
    "temperature": {
        "kind": "range",
        "danger_low": 0,
        "danger_high": 35,
        "caution_low": 18,
        "caution_high": 28,
    },
    "humidity": {
        "kind": "range",
        "danger_low": 10,
        "danger_high": 85,
        "caution_low": 30,
        "caution_high": 70,
    },
}


def _build_threshold(sensor_type: str, entry: Dict[str, Any]) -> Threshold:
    kind = entry.get("kind")
    if kind is None:
        kind = "range" if any(k in entry for k in ("danger_low", "danger_high")) else "simple"

    try:
        if kind == "simple":
            return SimpleThreshold(
                danger=float(entry["danger"]),
                caution=float(entry["caution"]) if entry.get("caution") is not None else None,
            )
        if kind == "range":
            bounds = {
                key: float(entry[key]) if entry.get(key) is not None else None
                for key in ("danger_low", "danger_high", "caution_low", "caution_high")
            }
            if bounds["danger_low"] is None and bounds["danger_high"] is None:
                raise ConfigurationError(
                    f"thresholds.{sensor_type}", "range threshold needs danger_low or danger_high"
                )
            return RangeThreshold(**bounds)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"thresholds.{sensor_type}", str(e)) from e

    raise ConfigurationError(f"thresholds.{sensor_type}", f"unknown threshold kind {kind!r}")


class ThresholdTable:
    """Per-deployment mapping of sensor type to threshold."""

    def __init__(self, thresholds: Dict[str, Threshold]):
        self._thresholds = {normalize_sensor_type(k): v for k, v in thresholds.items()}

    @classmethod
    def from_dict(cls, raw: Dict[str, Dict[str, Any]]) -> "ThresholdTable":
        return cls({name: _build_threshold(name, entry) for name, entry in raw.items()})

    @classmethod
    def default(cls) -> "ThresholdTable":
        return cls.from_dict(DEFAULT_THRESHOLDS)

    @classmethod
    def from_settings(cls, settings) -> "ThresholdTable":
        """
        Load the table from THRESHOLDS_JSON, then THRESHOLDS_FILE, else the defaults.

        Raises:
            ConfigurationError: the configured table cannot be parsed
        """
        raw_json = settings.thresholds_json
        if not raw_json and settings.thresholds_file:
            try:
                with open(settings.thresholds_file, "r", encoding="utf-8") as fh:
                    raw_json = fh.read()
            except OSError as e:
                raise ConfigurationError("THRESHOLDS_FILE", str(e)) from e

        if not raw_json:
            return cls.default()

        try:
            raw = json.loads(raw_json)
        except json.JSONDecodeError as e:
            raise ConfigurationError("thresholds", f"invalid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigurationError("thresholds", "expected a JSON object keyed by sensor type")
        return cls.from_dict(raw)

    def get(self, sensor_type: str) -> Optional[Threshold]:
        return self._thresholds.get(normalize_sensor_type(sensor_type))

    def classify(self, sensor_type: str, value: float) -> Severity:
        threshold = self.get(sensor_type)
        if threshold is None:
            return Severity.NORMAL
        return threshold.classify(value)

    def sensor_types(self):
        return sorted(self._thresholds)

    def __contains__(self, sensor_type: str) -> bool:
        return normalize_sensor_type(sensor_type) in self._thresholds
