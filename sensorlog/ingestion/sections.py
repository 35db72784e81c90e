"""
Canonical records for the ingestion pipeline.

Both parsers converge on MeasurementSection; the coordinator turns each
section into a MeasurementDraft, which is the shape written to the store.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sensorlog.shared.config import SectionDefaultsConfig

# String metadata fields carried by every section, in canonical order
METADATA_FIELDS = (
    "units",
    "description",
    "source",
    "tst_id",
    "uut_type",
    "status",
    "serial_number",
    "category",
    "sub_category",
    "sensor_name",
)

EMBEDDING_PENDING = "pending"
EMBEDDING_PROCESSING = "processing"
EMBEDDING_COMPLETED = "completed"
EMBEDDING_FAILED = "failed"


def current_timestamp() -> str:
    """UTC timestamp used when a section carries no tst_id."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class MeasurementSection:
    """One sensor's readings plus descriptive metadata."""

    sensor_readings: List[float]
    total_measurements: int
    min: float
    max: float
    avg: float
    units: str = ""
    description: str = ""
    source: str = ""
    tst_id: str = ""
    uut_type: str = ""
    status: str = ""
    serial_number: str = ""
    category: str = ""
    sub_category: str = ""
    sensor_name: str = ""

    def is_valid(self) -> bool:
        return bool(self.sensor_readings) and bool(self.sensor_name)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_section(
    readings: Sequence[float],
    metadata: Mapping[str, Optional[str]],
    defaults: Optional[SectionDefaultsConfig] = None,
    total_measurements: Optional[int] = None,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
    avg_value: Optional[float] = None,
) -> MeasurementSection:
    """
    Assemble a section, filling derived statistics and metadata defaults.

    Statistics supplied by the source win over values derived from the
    readings. With no readings the derived statistics are 0.0; such a
    section is invalid and gets dropped by the caller.

    Args:
        readings: Parsed sensor readings
        metadata: Field name -> value; missing or empty values get defaults
        defaults: Default metadata values (config ingestion.defaults)
        total_measurements: Source override for the reading count
        min_value: Source-supplied minimum
        max_value: Source-supplied maximum
        avg_value: Source-supplied average

    Returns:
        MeasurementSection
    """
    defaults = defaults or SectionDefaultsConfig()
    values = [float(v) for v in readings]

    if values:
        derived_min = min(values)
        derived_max = max(values)
        derived_avg = sum(values) / len(values)
    else:
        derived_min = derived_max = derived_avg = 0.0

    def pick(name: str, fallback: str) -> str:
        value = metadata.get(name)
        if value is None:
            return fallback
        value = str(value)
        return value if value else fallback

    return MeasurementSection(
        sensor_readings=values,
        total_measurements=int(total_measurements or len(values)),
        min=float(derived_min if min_value is None else min_value),
        max=float(derived_max if max_value is None else max_value),
        avg=float(derived_avg if avg_value is None else avg_value),
        units=pick("units", defaults.units),
        description=pick("description", ""),
        source=pick("source", ""),
        tst_id=pick("tst_id", "") or current_timestamp(),
        uut_type=pick("uut_type", defaults.uut_type),
        status=pick("status", defaults.status),
        serial_number=pick("serial_number", defaults.serial_number),
        category=pick("category", defaults.category),
        sub_category=pick("sub_category", defaults.sub_category),
        sensor_name=pick("sensor_name", ""),
    )


@dataclass
class MeasurementDraft:
    """A measurement row ready to be inserted."""

    log_id: int
    name: str
    section: MeasurementSection
    embedding_text: str
    readings_summary: List[float]
    embedding_status: str = EMBEDDING_PENDING

    def to_row(self) -> Dict[str, Any]:
        """Column name -> value mapping for the measurements table."""
        s = self.section
        return {
            "log_id": self.log_id,
            "name": self.name,
            "sensor_name": s.sensor_name,
            "meas_description": s.description,
            "units": s.units,
            "min_value": s.min,
            "max_value": s.max,
            "avg_value": s.avg,
            "total_measurements": s.total_measurements,
            "sensor_readings": list(s.sensor_readings),
            "source": s.source,
            "tst_id": s.tst_id,
            "uut_type": s.uut_type,
            "meas_status": s.status,
            "serial_number": s.serial_number,
            "category": s.category,
            "sub_category": s.sub_category,
            "readings_summary": list(self.readings_summary),
            "embedding_text": self.embedding_text,
            "embedding_status": self.embedding_status,
            "embedding": None,
        }


def display_name(section: MeasurementSection) -> str:
    if section.tst_id:
        return f"{section.sensor_name} @ {section.tst_id}"
    return section.sensor_name


def embedding_text(section: MeasurementSection) -> str:
    """Natural-language summary consumed by the embedding model."""
    return (
        f"Sensor {section.sensor_name} measuring {section.description} "
        f"with values ranging from {section.min} to {section.max} {section.units}. "
        f"Category: {section.category}, Sub-category: {section.sub_category}. "
        f"Source: {section.source}, Status: {section.status}"
    )


@dataclass
class LogFile:
    """Owning record for one uploaded file."""

    id: int
    name: str
    storage_object_id: str
    storage_object_path: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class UploadEvent:
    """Object-storage upload notification."""

    bucket: str
    object_id: str
    owner: Optional[str]
    name: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UploadEvent":
        missing = [k for k in ("bucket", "object_id", "name") if not payload.get(k)]
        if missing:
            raise ValueError(f"Upload event missing fields: {', '.join(missing)}")
        return cls(
            bucket=str(payload["bucket"]),
            object_id=str(payload["object_id"]),
            owner=payload.get("owner"),
            name=str(payload["name"]),
        )
