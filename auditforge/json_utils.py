"""
JSON utilities for handling malformed LLM responses.
"""
import re
import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]')
_CODE_BLOCK = re.compile(r'```(?:json)?\s*(\{[\s\S]*?\})\s*```', re.DOTALL)
_GREEDY_OBJECT = re.compile(r'\{.*\}', re.DOTALL)


def sanitize_json_string(json_str: str) -> str:
    """
    Repair common structural issues in LLM-produced JSON.

    Args:
        json_str: Raw JSON candidate

    Returns:
        Sanitized JSON string
    """
    if not json_str:
        return "{}"

    json_str = _CONTROL_CHARS.sub('', json_str)

    # Remove trailing commas before closing braces/brackets
    json_str = re.sub(r',\s*([}\]])', r'\1', json_str)

    # Fix missing commas between objects in arrays
    json_str = re.sub(r'}\s*{', '},{', json_str)

    open_braces = json_str.count('{')
    close_braces = json_str.count('}')
    open_brackets = json_str.count('[')
    close_brackets = json_str.count(']')

    if open_brackets > close_brackets:
        json_str += ']' * (open_brackets - close_brackets)
    if open_braces > close_braces:
        json_str += '}' * (open_braces - close_braces)

    return json_str


def safe_json_parse(json_str: str, fallback: Any = None) -> Any:
    """
    Safely parse JSON string with fallback.

    Tries a strict decode, then a lenient one (control characters allowed
    inside strings), then the same two after sanitizing.
    """
    lenient = json.JSONDecoder(strict=False)
    for candidate in (json_str, sanitize_json_string(json_str)):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
        try:
            return lenient.decode(candidate)
        except json.JSONDecodeError as e:
            logger.debug(f"JSON decode failed at pos {e.pos}: {e.msg}")
    return fallback


def extract_json_from_response(response: str) -> Optional[str]:
    """
    Extract the first JSON object from LLM response text.

    A fenced ```json block wins over a bare object; otherwise the greedy
    span from the first ``{`` to the last ``}`` is returned.
    """
    if not response:
        return None

    code_block_match = _CODE_BLOCK.search(response)
    if code_block_match:
        return code_block_match.group(1)

    json_match = _GREEDY_OBJECT.search(response)
    if json_match:
        return json_match.group(0)

    return None


class AuditResponseModel(BaseModel):
    """Envelope the LLM analyzer asks for: ``{"vulnerabilities": [...]}``."""
    vulnerabilities: List[Any] = []


def parse_llm_json(raw_response: str) -> Optional[Dict[str, Any]]:
    """Extract and decode the JSON object in an LLM response.

    Returns:
        The decoded object, or None when no object could be found or decoded.
    """
    json_str = extract_json_from_response(raw_response or "")
    if not json_str:
        return None
    data = safe_json_parse(json_str)
    if isinstance(data, dict):
        return data
    return None


def parse_vulnerability_envelope(raw_response: str) -> Optional[List[Any]]:
    """Return the raw ``vulnerabilities`` entries of an LLM JSON answer.

    None means the response held no decodable JSON object. A decodable object
    whose envelope fails validation yields an empty list.
    """
    data = parse_llm_json(raw_response)
    if data is None:
        return None
    try:
        envelope = AuditResponseModel(**data)
    except ValidationError as e:
        logger.warning(f"LLM response did not match the vulnerability envelope: {e.error_count()} error(s)")
        return []
    return list(envelope.vulnerabilities)
