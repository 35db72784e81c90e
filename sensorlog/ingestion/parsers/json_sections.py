"""
JSON section parser.

Accepts a single object or an array of objects shaped like::

    {
      "description": "Power measurements for PSU1",
      "measurements": {"values": [...], "total measurements": 3,
                       "min": 1.0, "max": 3.0, "avg": 2.0, "units": "Watts"},
      "metadata": {"source": "...", "tst_id": "...", "uut_type": "...",
                   "status": "...", "serial number": "...", "category": "...",
                   "sub_category": "...", "sensor name": "..."}
    }

Entries missing ``measurements``, ``metadata`` or ``description`` are skipped
without affecting the rest of the array.
"""

import json
import math
from typing import Any, Dict, List, Mapping, Optional

from sensorlog.shared.config import SectionDefaultsConfig
from sensorlog.shared.errors import NotJsonError
from sensorlog.shared.observability import get_logger
from sensorlog.shared.observability.metrics import (
    sections_dropped_total,
    sections_parsed_total,
)

from ..sections import MeasurementSection, build_section

logger = get_logger(__name__)

PARSER_NAME = "json"

# JSON metadata key -> section field
METADATA_KEYS = {
    "source": "source",
    "tst_id": "tst_id",
    "uut_type": "uut_type",
    "status": "status",
    "serial number": "serial_number",
    "category": "category",
    "sub_category": "sub_category",
    "sensor name": "sensor_name",
}

REQUIRED_KEYS = ("measurements", "metadata", "description")


def load_json(content: str) -> Any:
    """
    Decode file content as JSON.

    Raises:
        NotJsonError: If the content is not valid JSON
    """
    try:
        return json.loads(content)
    except (json.JSONDecodeError, TypeError) as e:
        raise NotJsonError(f"Content is not valid JSON: {e}") from e


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def _as_int(value: Any) -> Optional[int]:
    number = _as_float(value)
    return int(number) if number is not None else None


def _readings(values: Any) -> List[float]:
    if not isinstance(values, list):
        return []
    readings = []
    for raw in values:
        value = _as_float(raw)
        if value is not None:
            readings.append(value)
    return readings


def entry_to_section(
    entry: Any, defaults: Optional[SectionDefaultsConfig] = None
) -> Optional[MeasurementSection]:
    """
    Convert one JSON entry to a section.

    Returns:
        MeasurementSection, or None when required keys are missing
    """
    if not isinstance(entry, Mapping):
        logger.warning("json_entry_not_object", entry_type=type(entry).__name__)
        return None

    missing = [key for key in REQUIRED_KEYS if entry.get(key) in (None, "")]
    if missing:
        logger.warning("json_entry_missing_fields", missing=missing)
        return None

    measurements = entry["measurements"]
    metadata = entry["metadata"]
    if not isinstance(measurements, Mapping) or not isinstance(metadata, Mapping):
        logger.warning("json_entry_malformed", reason="measurements/metadata not objects")
        return None

    fields: Dict[str, Optional[str]] = {
        field_name: metadata.get(key) for key, field_name in METADATA_KEYS.items()
    }
    fields["units"] = measurements.get("units")
    fields["description"] = entry.get("description")

    return build_section(
        _readings(measurements.get("values")),
        fields,
        defaults=defaults,
        total_measurements=_as_int(measurements.get("total measurements")),
        min_value=_as_float(measurements.get("min")),
        max_value=_as_float(measurements.get("max")),
        avg_value=_as_float(measurements.get("avg")),
    )


def parse_json(
    content: str, defaults: Optional[SectionDefaultsConfig] = None
) -> List[MeasurementSection]:
    """
    Parse JSON content into valid measurement sections.

    Raises:
        NotJsonError: If the content is not JSON, so callers can fall back
    """
    document = load_json(content)
    entries = document if isinstance(document, list) else [document]

    sections: List[MeasurementSection] = []
    for index, entry in enumerate(entries):
        section = entry_to_section(entry, defaults=defaults)
        if section is None:
            sections_dropped_total.labels(parser=PARSER_NAME, reason="malformed").inc()
            continue
        if not section.is_valid():
            logger.info(
                "json_section_invalid",
                entry_index=index,
                readings=len(section.sensor_readings),
                has_sensor_name=bool(section.sensor_name),
            )
            sections_dropped_total.labels(parser=PARSER_NAME, reason="invalid").inc()
            continue
        sections.append(section)

    sections_parsed_total.labels(parser=PARSER_NAME).inc(len(sections))
    logger.info("json_log_parsed", entries=len(entries), sections=len(sections))
    return sections


class JsonSectionParser:
    """Parser object wrapper used by the parser selection policy."""

    name = PARSER_NAME

    def __init__(self, defaults: Optional[SectionDefaultsConfig] = None):
        self.defaults = defaults

    def parse(self, content: str) -> List[MeasurementSection]:
        return parse_json(content, defaults=self.defaults)
