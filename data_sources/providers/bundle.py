"""
Series Bundle - JSON schema shared by file and HTTP sources.

Schema:

    {
      "factors": {
        "<factor key>": {
          "source": "provider name",
          "fetched_at": "2024-05-01T00:00:00Z",
          "series": {
            "<series name>": [["2024-04-30", 123.4], {"timestamp": ..., "value": ...}]
          },
          "sub_scores": {"<sub-signal>": 55}
        }
      },
      "price": {"series": {"close": [...], "spot": [...]}}
    }

Timestamps may be ISO-8601 strings, dates, or epoch seconds /
milliseconds.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from composite_risk.types import FactorInput, SeriesPoint
from data_sources.exceptions import NormalizationError


PRICE_KEY = "price"

# Epoch values above this are taken as milliseconds.
_EPOCH_MS_THRESHOLD = 1e11


def parse_timestamp(value: Any) -> datetime:
    """Parse a bundle timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > _EPOCH_MS_THRESHOLD else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Invalid timestamp: {value!r}")


def _parse_point(raw: Any) -> SeriesPoint:
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        stamp, value = raw
    elif isinstance(raw, dict):
        stamp = raw.get("timestamp", raw.get("date"))
        value = raw.get("value")
    else:
        raise ValueError(f"Invalid series point: {raw!r}")
    if stamp is None or value is None:
        raise ValueError(f"Incomplete series point: {raw!r}")
    return SeriesPoint(timestamp=parse_timestamp(stamp), value=float(value))


def parse_factor_entry(key: str, entry: dict[str, Any], default_source: str) -> FactorInput:
    """Parse one factor entry of a bundle."""
    if not isinstance(entry, dict):
        raise NormalizationError(f"Entry for '{key}' must be an object", default_source, field_name=key)

    try:
        series = {
            name: [_parse_point(p) for p in points]
            for name, points in (entry.get("series") or {}).items()
        }
        sub_scores: dict[str, Optional[float]] = {
            name: None if value is None else float(value)
            for name, value in (entry.get("sub_scores") or {}).items()
        }
        fetched_raw = entry.get("fetched_at")
        fetched_at = parse_timestamp(fetched_raw) if fetched_raw is not None else None
    except (TypeError, ValueError) as e:
        raise NormalizationError(
            f"Malformed entry for '{key}': {e}",
            default_source,
            field_name=key,
            original_error=e,
        ) from e

    return FactorInput(
        key=key,
        series=series,
        sub_scores=sub_scores,
        source=str(entry.get("source") or default_source),
        fetched_at=fetched_at,
        error=entry.get("error"),
    )


def parse_bundle(data: Any, source: str) -> dict[str, FactorInput]:
    """
    Parse a whole bundle into factor inputs keyed by factor key.

    The optional top-level "price" entry is returned under "price".
    """
    if not isinstance(data, dict):
        raise NormalizationError("Bundle must be a JSON object", source)

    factors = data.get("factors") or {}
    if not isinstance(factors, dict):
        raise NormalizationError("'factors' must be an object", source, field_name="factors")

    inputs = {key: parse_factor_entry(key, entry, source) for key, entry in factors.items()}
    if data.get(PRICE_KEY) is not None:
        inputs[PRICE_KEY] = parse_factor_entry(PRICE_KEY, data[PRICE_KEY], source)
    return inputs
