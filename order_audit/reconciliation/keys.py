from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

from order_audit.common.csv_io import norm_text

KEY_SEPARATOR = "|"

_QUOTES_RE = re.compile(r"['‘’‛`\"“”]")
_NON_ALNUM_RE = re.compile(r"[\W_]+")
_PLACEHOLDER_RE = re.compile(r"^\s*(?:(?:error\s*-\s*)?store\s*purchase|processing\s+error)\s*$", re.I)


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_component(value: str | None) -> str:
    """Canonical form of one key component.

    Diacritics are stripped, case is folded, apostrophes and quotes vanish and
    every other run of non-alphanumerics becomes a single space, so
    ``"Men's  Tee"`` and ``"mens tee"`` compare equal.
    """

    text = _strip_marks(value or "").casefold()
    text = _strip_marks(text)
    text = _QUOTES_RE.sub("", text)
    return _NON_ALNUM_RE.sub(" ", text).strip()


def is_placeholder(product_name: str | None) -> bool:
    return bool(_PLACEHOLDER_RE.match(product_name or ""))


@dataclass(frozen=True, order=True)
class ReconciliationKey:
    product_name: str
    color: str = ""
    size: str = ""

    @classmethod
    def of(cls, product_name: str | None, color: str | None = None, size: str | None = None) -> "ReconciliationKey":
        return cls(norm_text(product_name), norm_text(color), norm_text(size))

    @classmethod
    def parse(cls, serialized: str) -> "ReconciliationKey":
        parts = serialized.split(KEY_SEPARATOR)
        if len(parts) > 3:
            # Product names may carry the separator; colour and size never do.
            parts = [KEY_SEPARATOR.join(parts[:-2]), parts[-2], parts[-1]]
        parts += [""] * (3 - len(parts))
        return cls(*parts[:3])

    def normalized(self) -> "ReconciliationKey":
        return ReconciliationKey(
            normalize_component(self.product_name),
            normalize_component(self.color),
            normalize_component(self.size),
        )

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder(self.product_name)

    def __str__(self) -> str:
        return KEY_SEPARATOR.join((self.product_name, self.color, self.size))


def normalize_key(serialized: str) -> str:
    return str(ReconciliationKey.parse(serialized).normalized())
