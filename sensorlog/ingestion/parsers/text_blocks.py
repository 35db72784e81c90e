"""
Text block parser for semi-structured instrumentation logs.

A log is a run of sensor blocks, each starting with the keyword
``measurements``. Inside a block:

    - readings sit between ``values`` and ``total``; every token may carry a
      leading digit run (an ordinal) that is stripped before parsing
    - metadata is written as quoted label/value pairs, e.g.
      ``"units" "Watts" "sensor name" "PSU1 Input"``

Label attribution is a small finite-state scan over the quoted tokens, driven
by LABEL_SYNONYMS. It lives in scan_metadata() so it can be tested alone.
"""

import re
from typing import Dict, List, Optional, Sequence, Tuple

from sensorlog.shared.config import SectionDefaultsConfig
from sensorlog.shared.errors import ParseBlockError
from sensorlog.shared.observability import get_logger
from sensorlog.shared.observability.metrics import (
    sections_dropped_total,
    sections_parsed_total,
)

from ..sections import MeasurementSection, build_section

logger = get_logger(__name__)

PARSER_NAME = "text"

_BLOCK_SPLIT_RE = re.compile(r"(?=measurements)")
_VALUES_RE = re.compile(r"values([\d\s.]+)total")
_ORDINAL_PREFIX_RE = re.compile(r"^\d+")
_NUMBER_PREFIX_RE = re.compile(r"[+-]?(\d*\.\d+|\d+\.?)")
_QUOTED_RE = re.compile(r'"([^"]+)"')
_SENSOR_FROM_DESCRIPTION_RE = re.compile(r"measurements for (.+)")

# Label substring -> section field. First match wins, so more specific
# labels come before the labels they contain ("sub_category" > "category").
LABEL_SYNONYMS: Tuple[Tuple[str, str], ...] = (
    ("serial number", "serial_number"),
    ("sub_category", "sub_category"),
    ("sensor name", "sensor_name"),
    ("uut_type", "uut_type"),
    ("tst_id", "tst_id"),
    ("description", "description"),
    ("units", "units"),
    ("source", "source"),
    ("status", "status"),
    ("category", "category"),
)


def label_field(label: str) -> Optional[str]:
    """Map a quoted label to a section field, or None if it is not a label."""
    lowered = label.lower()
    for needle, field_name in LABEL_SYNONYMS:
        if needle in lowered:
            return field_name
    return None


def split_blocks(content: str) -> List[str]:
    """Split at every ``measurements`` keyword, keeping the keyword."""
    return [block for block in _BLOCK_SPLIT_RE.split(content) if block.strip()]


def _parse_reading(token: str) -> Optional[float]:
    """Read the leading number left after the ordinal strip; ".3.2" reads as 0.3."""
    remainder = _ORDINAL_PREFIX_RE.sub("", token)
    match = _NUMBER_PREFIX_RE.match(remainder)
    if not match:
        return None
    return float(match.group(0))


def extract_readings(block: str) -> List[float]:
    """
    Extract numeric readings from the ``values ... total`` span of a block.

    Raises:
        ParseBlockError: If the span is missing or holds no parseable numbers
    """
    match = _VALUES_RE.search(block)
    if not match:
        raise ParseBlockError("no values/total span")

    readings = []
    for token in match.group(1).split():
        value = _parse_reading(token)
        if value is not None:
            readings.append(value)

    if not readings:
        raise ParseBlockError("values span holds no parseable numbers")
    return readings


def scan_metadata(tokens: Sequence[str]) -> Dict[str, str]:
    """
    Attribute quoted values to the labels that precede them.

    States:
        SEEK  - looking for a token that names a field
        VALUE - the previous token was a label; this token is its value

    A value token is consumed and never re-read as a label, so a description
    containing the word "status" cannot steal the next value. The first token
    has no predecessor and therefore never becomes a value. Later duplicates
    of a label overwrite earlier ones.
    """
    metadata: Dict[str, str] = {}
    pending_field: Optional[str] = None

    for token in tokens:
        if pending_field is not None:
            metadata[pending_field] = token
            pending_field = None
            continue
        pending_field = label_field(token)

    description = metadata.get("description")
    if description and not metadata.get("sensor_name"):
        match = _SENSOR_FROM_DESCRIPTION_RE.search(description)
        if match:
            metadata["sensor_name"] = match.group(1)

    return metadata


def extract_metadata(block: str) -> Dict[str, str]:
    return scan_metadata(_QUOTED_RE.findall(block))


def parse_block(
    block: str,
    defaults: Optional[SectionDefaultsConfig] = None,
    block_index: Optional[int] = None,
) -> MeasurementSection:
    """
    Parse one block into a section.

    Raises:
        ParseBlockError: If the block holds no readings
    """
    try:
        readings = extract_readings(block)
    except ParseBlockError as e:
        e.block_index = block_index
        raise

    metadata = extract_metadata(block)
    return build_section(readings, metadata, defaults=defaults)


def parse_text(
    content: str, defaults: Optional[SectionDefaultsConfig] = None
) -> List[MeasurementSection]:
    """
    Parse a plain-text log into valid measurement sections.

    A block that fails is logged and skipped; it never stops its siblings.
    """
    blocks = split_blocks(content)
    sections: List[MeasurementSection] = []

    for index, block in enumerate(blocks):
        try:
            section = parse_block(block, defaults=defaults, block_index=index)
        except ParseBlockError as e:
            logger.debug("text_block_skipped", block_index=index, reason=e.reason)
            sections_dropped_total.labels(parser=PARSER_NAME, reason="no_readings").inc()
            continue

        if not section.is_valid():
            logger.info(
                "text_section_invalid",
                block_index=index,
                readings=len(section.sensor_readings),
                has_sensor_name=bool(section.sensor_name),
            )
            sections_dropped_total.labels(parser=PARSER_NAME, reason="invalid").inc()
            continue

        sections.append(section)

    sections_parsed_total.labels(parser=PARSER_NAME).inc(len(sections))
    logger.info(
        "text_log_parsed",
        blocks=len(blocks),
        sections=len(sections),
    )
    return sections


class TextBlockParser:
    """Parser object wrapper used by the parser selection policy."""

    name = PARSER_NAME

    def __init__(self, defaults: Optional[SectionDefaultsConfig] = None):
        self.defaults = defaults

    def parse(self, content: str) -> List[MeasurementSection]:
        return parse_text(content, defaults=self.defaults)
