"""
Provider activity summaries -> StrainInput.

Each provider stores its activity summary with its own column spellings
and units. The mapping table below names the column for each logical
field; Polar additionally reports duration as an ISO-8601 period
("PT1H2M3S") and distance in kilometres.
"""
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from core.logging import log_context
from services.sample_normalizer import ActivitySource, as_float
from services.training_load import StrainInput

logger = logging.getLogger(__name__)

_ISO_DURATION = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)


def parse_iso_duration(value: Any) -> float:
    """Seconds in an ISO-8601 duration such as PT1H30M5.5S; 0 when unparseable."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    match = _ISO_DURATION.match(str(value).strip())
    if not match:
        return 0.0
    parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


@dataclass(frozen=True)
class SummaryMapping:
    duration: str
    distance: str
    avg_hr: str
    activity_type: str
    avg_pace: Optional[str] = None
    elevation_gain: Optional[str] = None
    distance_in_km: bool = False
    iso_duration: bool = False


SUMMARY_MAPPINGS: Dict[ActivitySource, SummaryMapping] = {
    ActivitySource.garmin: SummaryMapping(
        duration="duration_in_seconds",
        distance="distance_in_meters",
        avg_hr="average_heart_rate_in_beats_per_minute",
        avg_pace="average_pace_in_minutes_per_kilometer",
        elevation_gain="total_elevation_gain_in_meters",
        activity_type="activity_type",
    ),
    ActivitySource.strava: SummaryMapping(
        duration="moving_time",
        distance="distance",
        avg_hr="average_heartrate",
        elevation_gain="total_elevation_gain",
        activity_type="type",
    ),
    ActivitySource.polar: SummaryMapping(
        duration="duration",
        distance="distance",
        avg_hr="average_heart_rate_bpm",
        activity_type="activity_type",
        distance_in_km=True,
        iso_duration=True,
    ),
    ActivitySource.strava_gpx: SummaryMapping(
        duration="duration_in_seconds",
        distance="distance_in_meters",
        avg_hr="average_heart_rate",
        elevation_gain="total_elevation_gain_in_meters",
        activity_type="activity_type",
    ),
    ActivitySource.zepp_gpx: SummaryMapping(
        duration="duration_in_seconds",
        distance="distance_in_meters",
        avg_hr="average_heart_rate",
        elevation_gain="elevation_gain_meters",
        activity_type="activity_type",
    ),
}


def summary_to_strain_input(
    provider: ActivitySource,
    activity_date: date,
    summary: Dict[str, Any],
    activity_id: Optional[str] = None,
) -> StrainInput:
    """Map one provider summary row to the strain scorer's input."""
    mapping = SUMMARY_MAPPINGS[ActivitySource(provider)]

    if mapping.iso_duration:
        duration_s = parse_iso_duration(summary.get(mapping.duration))
    else:
        duration_s = as_float(summary.get(mapping.duration)) or 0.0
    if not duration_s:
        logger.debug(
            "Summary has no duration; strain will be zero",
            extra=log_context(activity_id=activity_id, provider=ActivitySource(provider).value),
        )

    distance = as_float(summary.get(mapping.distance))
    distance_m = distance * 1000 if (distance is not None and mapping.distance_in_km) else distance

    avg_pace = as_float(summary.get(mapping.avg_pace)) if mapping.avg_pace else None
    if not avg_pace and distance_m and duration_s:
        avg_pace = (duration_s / 60) / (distance_m / 1000)

    return StrainInput(
        activity_date=activity_date,
        duration_seconds=duration_s,
        avg_hr=as_float(summary.get(mapping.avg_hr)),
        avg_pace_min_km=avg_pace or None,
        elevation_gain_m=as_float(summary.get(mapping.elevation_gain)) if mapping.elevation_gain else None,
        activity_type=str(summary.get(mapping.activity_type) or "unknown"),
        provider=ActivitySource(provider).value,
        activity_id=activity_id,
        distance_m=distance_m,
    )
