"""Evidence attached to order deliveries and work proofs.

Every item is stored in one tagged shape, ``{kind, content, filename}``,
normalized once when it is written. Readers never have to guess whether a
string is a raw URL, a data URI or an encoded blob.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlparse

from marketplace_escrow.domain.enums import EvidenceKind
from marketplace_escrow.domain.exceptions import InputValidationError

MAX_CONTENT_LENGTH = 2_000_000
MAX_ITEMS = 20

_IMAGE_PREFIX = "data:image/"


@dataclass(frozen=True)
class EvidenceItem:
    """A single normalized piece of evidence."""

    kind: EvidenceKind
    content: str
    filename: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


def _normalize_item(raw: dict[str, Any], index: int) -> EvidenceItem:
    field = f"evidence[{index}]"
    try:
        kind = EvidenceKind(str(raw.get("kind", "")).strip().lower())
    except ValueError as err:
        valid = ", ".join(k.value for k in EvidenceKind)
        raise InputValidationError(f"{field}.kind must be one of: {valid}", field) from err

    content = str(raw.get("content") or "").strip()
    if not content:
        raise InputValidationError(f"{field}.content must not be empty", field)
    if len(content) > MAX_CONTENT_LENGTH:
        raise InputValidationError(f"{field}.content is too large", field)

    if kind is EvidenceKind.LINK:
        parsed = urlparse(content)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InputValidationError(f"{field}.content must be an http(s) URL", field)
    elif kind is EvidenceKind.IMAGE and not content.startswith(("http://", "https://")):
        # Bare base64 screenshots get their data-URI prefix here, once.
        if not content.startswith(_IMAGE_PREFIX):
            content = f"{_IMAGE_PREFIX}png;base64,{content}"

    filename = raw.get("filename")
    if filename is not None:
        filename = str(filename).strip() or None
    return EvidenceItem(kind=kind, content=content, filename=filename)


def normalize_evidence(items: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Validate raw evidence items and return their stored representation.

    Raises:
        InputValidationError: If an item has an unknown kind, empty content,
            a malformed link, or there are too many items.
    """
    if not items:
        return []
    if len(items) > MAX_ITEMS:
        raise InputValidationError(f"At most {MAX_ITEMS} evidence items are allowed", "evidence")
    return [_normalize_item(raw, i).to_dict() for i, raw in enumerate(items)]
