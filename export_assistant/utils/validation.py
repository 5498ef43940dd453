import re
from export_assistant.core.config import settings
from export_assistant.core.exceptions import MessageValidationError

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_HTML_TAG = re.compile(r"<[^>]*>")
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)


def sanitize(text: str) -> str:
    """Strip markup and script vectors from user input."""
    if not isinstance(text, str):
        return ""
    text = _SCRIPT_TAG.sub("", text.strip())
    text = _HTML_TAG.sub("", text)
    text = _JS_PROTOCOL.sub("", text)
    text = _EVENT_HANDLER.sub("", text)
    return text.strip()


def process_message_content(text: str, max_length: int = None) -> str:
    """Sanitize a user message and reject it when empty or oversized.

    Returns the cleaned text. Raises MessageValidationError listing every
    problem found.
    """
    if max_length is None:
        max_length = settings.max_message_length
    if not isinstance(text, str) or not text:
        raise MessageValidationError(["Content is required and must be a string"])

    errors = []
    cleaned = sanitize(text)
    if not cleaned:
        errors.append("Content cannot be empty after sanitization")
    if len(cleaned) > max_length:
        errors.append(f"Content exceeds maximum length of {max_length} characters")
    if errors:
        raise MessageValidationError(errors)
    return cleaned
