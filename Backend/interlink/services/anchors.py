"""
anchors.py
~~~~~~~~~~
Normalizes the link-insertion log reported by the workflow engine.

The engine has shipped several shapes over time:
    [{"slug", "phrase", "url"}, ...]
    [{"keyword", "text" | "anchor_text", "link"}, ...]
    {"anchors": [...]} or {"links": [...]}
All of them are converted here, once, into a list of AnchorLink. Consumers
only ever see the canonical form.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from interlink.core.errors import ValidationError

logger = logging.getLogger(__name__)

SLUG_KEYS = ("slug", "keyword")
PHRASE_KEYS = ("phrase", "text", "anchor_text")
URL_KEYS = ("url", "link")
CONTAINER_KEYS = ("anchors", "links")


@dataclass(frozen=True)
class AnchorLink:
    slug: str
    phrase: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _first_str(entry: Dict[str, Any], keys: tuple) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _normalize_entry(entry: Any, index: int) -> AnchorLink | None:
    if not isinstance(entry, dict):
        logger.warning(f"Dropping anchor #{index}: expected an object, got {type(entry).__name__}")
        return None
    link = AnchorLink(
        slug=_first_str(entry, SLUG_KEYS),
        phrase=_first_str(entry, PHRASE_KEYS),
        url=_first_str(entry, URL_KEYS),
    )
    if not link.phrase and not link.url:
        logger.warning(f"Dropping anchor #{index}: no phrase or url in keys {sorted(entry)}")
        return None
    return link


def normalize_anchor_log(raw: Any) -> List[AnchorLink]:
    """
    Convert any accepted anchor-log shape into AnchorLink entries.
    None means "nothing reported". Unknown top-level shapes raise ValidationError;
    malformed individual entries are dropped with a warning.
    """
    if raw is None:
        return []

    entries: Any = raw
    if isinstance(raw, dict):
        container = next((key for key in CONTAINER_KEYS if key in raw), None)
        if container is None:
            raise ValidationError(
                f"anchors_log object must contain one of {', '.join(CONTAINER_KEYS)}"
            )
        entries = raw[container]

    if not isinstance(entries, list):
        raise ValidationError(f"anchors_log must be a list of anchors, got {type(entries).__name__}")

    normalized = []
    for index, entry in enumerate(entries):
        link = _normalize_entry(entry, index)
        if link is not None:
            normalized.append(link)
    return normalized
