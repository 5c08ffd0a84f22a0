from __future__ import annotations

PLACEHOLDER_KEY = "fallback-key"
PLACEHOLDER_MARKERS = ("your-api-key", "placeholder")
MIN_CREDENTIAL_LENGTH = 20

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "x-goog-api-key"}


def is_usable_credential(key: str) -> bool:
    if len(key) < MIN_CREDENTIAL_LENGTH:
        return False
    lowered = key.lower()
    if any(marker in lowered for marker in PLACEHOLDER_MARKERS):
        return False
    return key != PLACEHOLDER_KEY


def parse_credentials(raw: str | None) -> list[str]:
    """Split a comma-separated key list, dropping blanks, placeholders and duplicates."""
    if not raw:
        return []
    keys = [part.strip() for part in raw.split(",")]
    usable = [k for k in keys if k and is_usable_credential(k)]
    return list(dict.fromkeys(usable))


def mask_credential(key: str) -> str:
    if len(key) <= 8:
        return "***"
    return f"{key[:4]}...{key[-4:]}"


def sanitize_headers(headers: dict) -> dict:
    sanitized = {}
    for k, v in headers.items():
        if k.lower() in SENSITIVE_HEADERS:
            sanitized[k] = "[redacted]"
        else:
            sanitized[k] = v
    return sanitized
