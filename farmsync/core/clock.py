# farmsync/core/clock.py
"""
Horloge serveur et watermarks.

Tous les horodatages sont stockés en UTC naïf, à la microseconde. Le
watermark d'une ligne (`updated_at`) est toujours posé par le serveur.
"""
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """Heure serveur en UTC naïf"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Accepte une chaîne ISO-8601 (avec ou sans fuseau, suffixe Z compris),
    un timestamp epoch en millisecondes ou un datetime.
    Une valeur vide retourne None ; une valeur illisible lève ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Horodatage invalide: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).replace(tzinfo=None)

    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        return parse_datetime(int(text))
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return to_naive_utc(datetime.fromisoformat(text))


def parse_watermark(value: Any) -> Optional[datetime]:
    """Watermark client ; absent signifie « depuis le début »"""
    return parse_datetime(value)


def format_watermark(value: datetime) -> str:
    return to_naive_utc(value).isoformat(timespec="microseconds") + "Z"
