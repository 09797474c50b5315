"""Sample Normalizer.

Converts provider-specific raw sample payloads into the canonical
``SeriesPoint`` sequence every downstream analysis consumes.

Accepted raw shapes:
    - list of sample objects (Garmin/Polar/Zepp rows)
    - object of parallel arrays (Strava streams, optionally {"data": [...]})
    - list of {"type": ..., "data": [...]} stream objects
    - nested activity-details object ("samples", "activityDetails", ...)

Each provider is a tagged adapter registered in ``SampleAdapterRegistry``;
callers dispatch on ``ActivitySource`` explicitly instead of sniffing the
payload.

Guarantees on the output:
    - never raises on missing fields; unresolvable fields are None
    - unusable samples are dropped and logged
    - pace is derived from speed, never read from input
    - sorted by non-decreasing distance_m, missing distance reuses the
      previous value
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type

logger = logging.getLogger(__name__)


class ActivitySource(str, Enum):
    garmin = "garmin"
    polar = "polar"
    strava = "strava"
    strava_gpx = "strava_gpx"
    zepp_gpx = "zepp_gpx"


# ---------------------------------------------------------------------------
# Canonical point
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SeriesPoint:
    distance_m: float
    speed_ms: Optional[float] = None
    pace_min_per_km: Optional[float] = None
    heart_rate: Optional[int] = None
    power_watts: Optional[float] = None
    elevation_m: Optional[float] = None
    timestamp: Optional[int] = None  # epoch milliseconds
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    def to_dict(self, include_timestamp: bool = True, include_position: bool = True) -> Dict[str, Any]:
        d = asdict(self)
        if not include_timestamp:
            d.pop("timestamp")
        if not include_position:
            d.pop("latitude")
            d.pop("longitude")
        return d


def pace_from_speed(speed_ms: Optional[float]) -> Optional[float]:
    """min/km for a speed in m/s; None when speed is missing or not positive."""
    if speed_ms is None or speed_ms <= 0:
        return None
    return 1000.0 / (speed_ms * 60.0)


def make_point(
    distance_m: float,
    speed_ms: Optional[float] = None,
    heart_rate: Optional[int] = None,
    power_watts: Optional[float] = None,
    elevation_m: Optional[float] = None,
    timestamp: Optional[int] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
) -> SeriesPoint:
    """Build a SeriesPoint with pace derived from speed."""
    return SeriesPoint(
        distance_m=distance_m,
        speed_ms=speed_ms,
        pace_min_per_km=pace_from_speed(speed_ms),
        heart_rate=heart_rate,
        power_watts=power_watts,
        elevation_m=elevation_m,
        timestamp=timestamp,
        latitude=latitude,
        longitude=longitude,
    )


# ---------------------------------------------------------------------------
# Field aliasing
# ---------------------------------------------------------------------------

FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "distance_m": (
        "total_distance_in_meters", "totalDistanceInMeters", "distance_meters",
        "distance_m", "distanceInMeters", "distance",
    ),
    "speed_ms": (
        "speed_meters_per_second", "speedMetersPerSecond", "velocity_smooth",
        "speed_ms", "speed",
    ),
    "heart_rate": (
        "heart_rate", "heartRate", "heartrate", "heart_rate_bpm", "hr",
    ),
    "power_watts": (
        "power_in_watts", "powerInWatts", "power_watts", "watts", "power",
    ),
    "elevation_m": (
        "elevation_in_meters", "elevationInMeters", "elevation_m", "altitude", "elevation",
    ),
    "timestamp": (
        "sample_timestamp", "startTimeInSeconds", "timestamp", "ts",
        "time_seconds", "time",
    ),
    "latitude": (
        "latitude_in_degree", "latitudeInDegree", "latitude", "lat",
    ),
    "longitude": (
        "longitude_in_degree", "longitudeInDegree", "longitude", "lon", "lng",
    ),
}

NESTED_KEYS = ("samples", "activityDetails", "activity_details", "details", "streams")

# 10-digit values are epoch seconds, 13-digit values epoch milliseconds.
_EPOCH_MS_FLOOR = 100_000_000_000


def _first_present(sample: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        value = sample.get(key)
        if value is not None and value != "":
            return value
    return None


def as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def _to_epoch_ms(value: Any) -> Optional[int]:
    """Epoch milliseconds from seconds, milliseconds or an ISO-8601 string."""
    number = as_float(value)
    if number is None:
        if isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return int(parsed.timestamp() * 1000)
        return None
    if abs(number) >= _EPOCH_MS_FLOOR:
        return int(round(number))
    return int(round(number * 1000))


# ---------------------------------------------------------------------------
# Raw shape handling
# ---------------------------------------------------------------------------

def _unwrap_stream(value: Any) -> Any:
    if isinstance(value, dict) and isinstance(value.get("data"), list):
        return value["data"]
    return value


def _parallel_arrays_to_rows(arrays: Dict[str, Any]) -> List[Dict[str, Any]]:
    columns = {k: _unwrap_stream(v) for k, v in arrays.items()}
    columns = {k: v for k, v in columns.items() if isinstance(v, list)}
    if not columns:
        return []
    length = max(len(v) for v in columns.values())
    return [
        {k: (v[i] if i < len(v) else None) for k, v in columns.items()}
        for i in range(length)
    ]


def _is_typed_stream_list(raw: List[Any]) -> bool:
    return bool(raw) and all(
        isinstance(item, dict) and "type" in item and isinstance(item.get("data"), list)
        for item in raw
    )


def extract_rows(raw: Any) -> List[Any]:
    """Flatten any accepted raw shape into a list of per-sample rows.

    Rows that are not dicts are returned as-is so the adapter can count
    them as dropped.
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        if _is_typed_stream_list(raw):
            return _parallel_arrays_to_rows({item["type"]: item["data"] for item in raw})
        rows: List[Any] = []
        for item in raw:
            if isinstance(item, dict) and any(k in item for k in NESTED_KEYS):
                rows.extend(extract_rows(item))
            elif isinstance(item, list):
                # Batches of samples (array of arrays of sample objects)
                rows.extend(extract_rows(item))
            else:
                rows.append(item)
        return rows
    if isinstance(raw, dict):
        for key in NESTED_KEYS:
            if key in raw:
                return extract_rows(raw[key])
        values = [_unwrap_stream(v) for v in raw.values() if v is not None]
        if values and all(isinstance(v, list) for v in values):
            return _parallel_arrays_to_rows(raw)
        return [raw]
    return [raw]


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------

class SampleAdapter(ABC):
    """
    Normalizes one provider's raw samples.

    Subclasses only override what differs for their provider: the
    timestamp convention and any ordering or distance reconstruction
    (``prepare``). Distance fill, speed back-fill and the final ordering
    are shared.
    """

    @property
    @abstractmethod
    def source(self) -> ActivitySource:
        pass

    def normalize(self, raw: Any) -> List[SeriesPoint]:
        rows = extract_rows(raw)
        drafts: List[Dict[str, Any]] = []
        dropped = 0
        for row in rows:
            draft = self.read_sample(row)
            if draft is None:
                dropped += 1
                continue
            drafts.append(draft)

        if dropped:
            logger.debug(f"{self.source.value}: dropped {dropped} of {len(rows)} unusable samples")

        drafts = self.prepare(drafts)
        drafts = _fill_distance(drafts)
        drafts = _backfill_speed(drafts)

        points = [make_point(**d) for d in drafts]
        # sorted() is stable, so equal distances keep provider order
        return sorted(points, key=lambda p: p.distance_m)

    def read_timestamp(self, row: Dict[str, Any]) -> Optional[int]:
        return _to_epoch_ms(_first_present(row, FIELD_ALIASES["timestamp"]))

    def read_sample(self, row: Any) -> Optional[Dict[str, Any]]:
        """Map one raw row to a draft dict, or None when it is unusable."""
        if not isinstance(row, dict):
            return None

        distance = as_float(_first_present(row, FIELD_ALIASES["distance_m"]))
        if distance is not None and distance < 0:
            return None

        speed = as_float(_first_present(row, FIELD_ALIASES["speed_ms"]))
        if speed is not None and speed < 0:
            speed = None

        hr = as_float(_first_present(row, FIELD_ALIASES["heart_rate"]))
        heart_rate = int(round(hr)) if hr is not None and hr > 0 else None

        power = as_float(_first_present(row, FIELD_ALIASES["power_watts"]))
        if power is not None and power < 0:
            power = None

        timestamp = self.read_timestamp(row)

        if distance is None and speed is None and heart_rate is None and power is None and timestamp is None:
            return None

        lat = as_float(_first_present(row, FIELD_ALIASES["latitude"]))
        lon = as_float(_first_present(row, FIELD_ALIASES["longitude"]))
        latlng = row.get("latlng")
        if lat is None and isinstance(latlng, (list, tuple)) and len(latlng) == 2:
            lat, lon = as_float(latlng[0]), as_float(latlng[1])
        if lat is None or lon is None or not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
            lat, lon = None, None

        return {
            "distance_m": distance,
            "speed_ms": speed,
            "heart_rate": heart_rate,
            "power_watts": power,
            "elevation_m": as_float(_first_present(row, FIELD_ALIASES["elevation_m"])),
            "timestamp": timestamp,
            "latitude": lat,
            "longitude": lon,
        }

    def prepare(self, drafts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return drafts


def _fill_distance(drafts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    filled = []
    previous = 0.0
    for d in drafts:
        if d["distance_m"] is None:
            d = {**d, "distance_m": previous}
        previous = d["distance_m"]
        filled.append(d)
    return filled


def _backfill_speed(drafts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Speed = Δdistance/Δtime where the provider sent none."""
    out = []
    for i, d in enumerate(drafts):
        if d["speed_ms"] is None and i > 0:
            prev = drafts[i - 1]
            if d["timestamp"] is not None and prev["timestamp"] is not None:
                dt = (d["timestamp"] - prev["timestamp"]) / 1000.0
                dd = d["distance_m"] - prev["distance_m"]
                if dt > 0 and dd >= 0:
                    d = {**d, "speed_ms": dd / dt}
        out.append(d)
    return out


class SampleAdapterRegistry:
    """
    Registry of sample adapters keyed by ActivitySource.

    Usage:
        @SampleAdapterRegistry.register
        class GarminSampleAdapter(SampleAdapter):
            ...

        adapter = SampleAdapterRegistry.get_adapter(ActivitySource.garmin)
    """

    _adapters: Dict[ActivitySource, SampleAdapter] = {}

    @classmethod
    def register(cls, adapter_class: Type[SampleAdapter]) -> Type[SampleAdapter]:
        instance = adapter_class()
        if instance.source in cls._adapters:
            logger.warning(f"Overwriting existing sample adapter for source: {instance.source.value}")
        cls._adapters[instance.source] = instance
        return adapter_class

    @classmethod
    def get_adapter(cls, source: ActivitySource) -> SampleAdapter:
        adapter = cls._adapters.get(source)
        if adapter is None:
            raise KeyError(f"No sample adapter registered for {source}")
        return adapter

    @classmethod
    def sources(cls) -> List[ActivitySource]:
        return list(cls._adapters)


@SampleAdapterRegistry.register
class GarminSampleAdapter(SampleAdapter):
    @property
    def source(self) -> ActivitySource:
        return ActivitySource.garmin


@SampleAdapterRegistry.register
class PolarSampleAdapter(SampleAdapter):
    @property
    def source(self) -> ActivitySource:
        return ActivitySource.polar


@SampleAdapterRegistry.register
class StravaSampleAdapter(SampleAdapter):
    """Strava streams: time is seconds since start, distance may have gaps."""

    @property
    def source(self) -> ActivitySource:
        return ActivitySource.strava

    def read_timestamp(self, row: Dict[str, Any]) -> Optional[int]:
        offset = as_float(_first_present(row, ("time_seconds", "time", "elapsed_time")))
        if offset is not None:
            return int(round(offset * 1000))
        return super().read_timestamp(row)

    def prepare(self, drafts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # Integrate velocity over time where the distance stream has holes.
        out: List[Dict[str, Any]] = []
        for d in drafts:
            if d["distance_m"] is None and out:
                prev = out[-1]
                if (d["speed_ms"] is not None and d["timestamp"] is not None
                        and prev["timestamp"] is not None and prev["distance_m"] is not None):
                    dt = (d["timestamp"] - prev["timestamp"]) / 1000.0
                    if dt > 0:
                        d = {**d, "distance_m": prev["distance_m"] + d["speed_ms"] * dt}
            out.append(d)
        return out


class _GpxSampleAdapter(SampleAdapter):
    """GPX imports: trackpoints ordered by time, speed derived from distance."""

    def prepare(self, drafts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if drafts and all(d["timestamp"] is not None for d in drafts):
            return sorted(drafts, key=lambda d: d["timestamp"])
        return drafts


@SampleAdapterRegistry.register
class StravaGpxSampleAdapter(_GpxSampleAdapter):
    @property
    def source(self) -> ActivitySource:
        return ActivitySource.strava_gpx


@SampleAdapterRegistry.register
class ZeppGpxSampleAdapter(_GpxSampleAdapter):
    @property
    def source(self) -> ActivitySource:
        return ActivitySource.zepp_gpx


def normalize_samples(source: ActivitySource | str, raw: Any) -> List[SeriesPoint]:
    """Normalize ``raw`` using the adapter registered for ``source``."""
    return SampleAdapterRegistry.get_adapter(ActivitySource(source)).normalize(raw)
