"""
Normalization of upstream reply content.

Replies are parsed with an explicit parse-then-fallback rule:

1. Strip markdown code fences and pull out the outermost ``{...}`` span.
2. If that span decodes to a JSON object -> StructuredComponent.
3. Otherwise -> PlainText, with component type, simple properties, a
   tip/note line and up to four bullet suggestions recovered heuristically.

parse_reply() never raises.
"""
import json
import re
from typing import Any, Dict, List, Optional

from figbud.services.ai.schema import ParsedReply, PlainText, StructuredComponent

DEFAULT_MESSAGE = "I can help you with that!"
MAX_SUGGESTIONS = 4

COMPONENT_VOCABULARY = (
    "button",
    "card",
    "input",
    "form",
    "modal",
    "navbar",
    "badge",
    "text",
    "checkbox",
    "toggle",
)

_FENCE_START = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_END = re.compile(r"\n?```\s*$")
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_COMPONENT = re.compile(r"\b(" + "|".join(COMPONENT_VOCABULARY) + r")s?\b", re.IGNORECASE)
_BULLET = re.compile(r"^\s*[*\-•]\s+(.+)$", re.MULTILINE)
_SEP = r"(?:[ \t]*:[ \t]*|[ \t]+)"
_TIP = re.compile(r"\b(?:pro tip|tip|note|remember)" + _SEP + r"(.+?)(?:\n|$)", re.IGNORECASE)
_PROPERTY_PATTERNS = {
    "label": re.compile(r"\b(?:label|caption)" + _SEP + r"[\"']?([^\"'\n]+)[\"']?", re.IGNORECASE),
    "variant": re.compile(r"\b(?:variant|style)" + _SEP + r"(\w+)", re.IGNORECASE),
    "size": re.compile(r"\bsize" + _SEP + r"(\w+)", re.IGNORECASE),
    "color": re.compile(r"\bcolou?r" + _SEP + r"(#?\w+)", re.IGNORECASE),
}


def strip_code_fences(content: str) -> str:
    cleaned = content.strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def _decode_object(content: str) -> Optional[Dict[str, Any]]:
    cleaned = strip_code_fences(content)
    match = _JSON_OBJECT.search(cleaned)
    if match:
        cleaned = match.group(0)
    try:
        decoded = json.loads(cleaned)
    except (ValueError, TypeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_suggestions(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def _structured(data: Dict[str, Any], raw: str = "") -> StructuredComponent:
    message = (
        _as_str(data.get("message"))
        or _as_str(data.get("response"))
        or _as_str(data.get("text"))
        or raw.strip()
        or DEFAULT_MESSAGE
    )
    component_type = _as_str(data.get("componentType") or data.get("component_type") or data.get("type"))
    properties = data.get("properties")
    return StructuredComponent(
        message=message,
        component_type=component_type.lower() if component_type else None,
        properties=properties if isinstance(properties, dict) else {},
        teacher_note=_as_str(data.get("teacherNote") or data.get("teacher_note")),
        suggestions=_as_suggestions(data.get("suggestions")),
    )


def extract_component_type(content: str) -> Optional[str]:
    """First vocabulary component mentioned in the text, if any."""
    match = _COMPONENT.search(content)
    return match.group(1).lower() if match else None


def extract_properties(content: str) -> Dict[str, str]:
    properties = {}
    for key, pattern in _PROPERTY_PATTERNS.items():
        match = pattern.search(content)
        if match:
            properties[key] = match.group(1).strip()
    return properties


def extract_teacher_note(content: str) -> Optional[str]:
    match = _TIP.search(content)
    return match.group(1).strip() if match else None


def extract_suggestions(content: str) -> List[str]:
    return [m.strip() for m in _BULLET.findall(content)][:MAX_SUGGESTIONS]


def _plain(content: str) -> PlainText:
    return PlainText(
        text=content.strip(),
        component_type=extract_component_type(content),
        properties=extract_properties(content),
        teacher_note=extract_teacher_note(content),
        suggestions=extract_suggestions(content),
    )


def parse_reply(content: Optional[str]) -> ParsedReply:
    """Normalize reply content into a StructuredComponent or PlainText."""
    if not content:
        return PlainText(text="")
    decoded = _decode_object(content)
    if decoded is not None:
        return _structured(decoded, strip_code_fences(content))
    return _plain(content)
