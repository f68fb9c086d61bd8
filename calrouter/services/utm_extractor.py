"""Campaign attribution — the five UTM fields from the booking's tracking block."""

import logging

log = logging.getLogger("calrouter.enrichment")

UTM_FIELDS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")


def _normalize(value) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def empty_utm() -> dict[str, None]:
    return {field: None for field in UTM_FIELDS}


def extract_utm_parameters(payload) -> dict[str, str | None]:
    """Every field is always present; blank or missing values are None."""
    try:
        tracking = (payload.get("payload") or {}).get("tracking")
        if not isinstance(tracking, dict):
            return empty_utm()
        return {field: _normalize(tracking.get(field)) for field in UTM_FIELDS}
    except Exception as e:
        log.error(f"UTM extraction failed: {e}")
        return empty_utm()
