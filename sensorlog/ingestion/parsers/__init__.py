"""
Parser module for the sensor log ingestion pipeline.

Two grammars converge on one canonical MeasurementSection:
    - "json": structured JSON objects (single object or array)
    - "text": semi-structured plain-text blocks

Selection policy: JSON is tried first; when the content is not JSON the text
parser takes over. When the chosen parser yields nothing valid the file is
rejected with NoValidMeasurementsError.

Usage:
    from sensorlog.ingestion.parsers import parse_measurements

    result = parse_measurements(raw_text)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sensorlog.shared.config import SectionDefaultsConfig
from sensorlog.shared.errors import NoValidMeasurementsError, NotJsonError
from sensorlog.shared.observability import get_logger

from ..sections import MeasurementSection
from .json_sections import JsonSectionParser
from .text_blocks import TextBlockParser

logger = get_logger(__name__)

ENGINE_JSON = JsonSectionParser.name
ENGINE_TEXT = TextBlockParser.name


@dataclass
class ParseResult:
    """Sections plus the parser that produced them."""

    sections: List[MeasurementSection]
    parser: str


def parse_measurements(
    content: str, defaults: Optional[SectionDefaultsConfig] = None
) -> ParseResult:
    """
    Parse raw log content with the JSON-first, text-fallback policy.

    Args:
        content: Decoded file content
        defaults: Metadata defaults (config ingestion.defaults)

    Returns:
        ParseResult with at least one valid section

    Raises:
        NoValidMeasurementsError: If no valid section was found
    """
    try:
        sections = JsonSectionParser(defaults).parse(content)
        parser = ENGINE_JSON
    except NotJsonError as e:
        logger.info("json_parse_fallback", reason=str(e))
        sections = TextBlockParser(defaults).parse(content)
        parser = ENGINE_TEXT

    if not sections:
        logger.warning("no_valid_measurements", parser=parser)
        raise NoValidMeasurementsError(
            f"No valid measurements found in file (parser={parser})"
        )

    return ParseResult(sections=sections, parser=parser)


__all__ = [
    "parse_measurements",
    "ParseResult",
    "JsonSectionParser",
    "TextBlockParser",
    "ENGINE_JSON",
    "ENGINE_TEXT",
]
