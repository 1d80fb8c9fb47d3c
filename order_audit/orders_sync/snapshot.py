"""Plain-data capture of an order detail page.

The browser side only measures: descriptor-group fields, the currency tokens
found in each enclosing ancestor of a group, header positions and the body
text. Every decision about which ancestor is the line's row, which token
belongs to which column and what counts as red is made in Python over the
captured data.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence, Tuple

# Evaluated with ``page.evaluate``; returns {groups, headers, bodyText}.
SNAPSHOT_SCRIPT = r"""
() => {
  const CURRENCY = /\$[0-9][\d,]*\.?\d*/;
  const HEADER = /^(price|discount|disc\.?\s*price|discounted\s+price|taxes)$/i;
  const MAX_ANCESTORS = 8;
  const norm = (s) => (s || '').replace(/\s+/g, ' ').trim();
  const keyify = (s) => (s || '').trim().toUpperCase().replace(/\s+/g, '_').replace(/[^A-Z0-9_]/g, '');
  const visible = (r) => r.width > 0 && r.height > 0;

  function fieldsOf(group) {
    const kv = {};
    group.querySelectorAll('.ant-descriptions-item').forEach((item) => {
      const label = item.querySelector('.ant-descriptions-item-label')?.textContent || '';
      const value = item.querySelector('.ant-descriptions-item-content')?.textContent || '';
      const key = keyify(label);
      if (key) kv[key] = value.trim();
    });
    return kv;
  }

  function isTokenLeaf(node) {
    const text = node.textContent || '';
    if (!CURRENCY.test(text)) return false;
    for (const child of node.children) {
      if (CURRENCY.test(child.textContent || '')) return false;
    }
    return true;
  }

  function tokensIn(container, group) {
    const box = container.getBoundingClientRect();
    const walker = document.createTreeWalker(container, NodeFilter.SHOW_ELEMENT, null);
    const tokens = [];
    let node = walker.currentNode;
    while (node) {
      if (node !== container && group.contains(node)) {
        let next = walker.nextSibling();
        while (!next && walker.parentNode()) next = walker.nextSibling();
        node = next;
        continue;
      }
      if (isTokenLeaf(node)) {
        const rect = node.getBoundingClientRect();
        if (visible(rect) && rect.bottom >= box.top - 4 && rect.top <= box.bottom + 4) {
          let color = '';
          try { color = window.getComputedStyle(node).color || ''; } catch (e) { color = ''; }
          tokens.push({ text: (node.textContent || '').match(CURRENCY)[0], x: rect.left + rect.width / 2, color });
        }
      }
      node = walker.nextNode();
    }
    return tokens;
  }

  const groups = [];
  document.querySelectorAll('.ant-descriptions').forEach((group) => {
    const candidates = [];
    let current = group.parentElement;
    let depth = 0;
    while (current && depth < MAX_ANCESTORS) {
      const link = current.querySelector('a');
      candidates.push({ depth, name: norm(link ? link.textContent : ''), tokens: tokensIn(current, group) });
      current = current.parentElement;
      depth += 1;
    }
    groups.push({ fields: fieldsOf(group), candidates });
  });

  const headers = [];
  document.querySelectorAll('body *').forEach((el) => {
    const text = (el.textContent || '').trim();
    if (!text || text.length > 30 || !HEADER.test(text)) return;
    const rect = el.getBoundingClientRect();
    if (!visible(rect)) return;
    headers.push({ text: norm(text), x: rect.left + rect.width / 2, top: rect.top });
  });

  return { groups, headers, bodyText: document.body ? document.body.innerText || '' : '' };
}
"""

PRICE = "Price"
DISCOUNT = "Discount"
DISCOUNTED_PRICE = "Disc. Price"
TAXES = "Taxes"

HEADER_PATTERNS: Tuple[Tuple[str, re.Pattern[str]], ...] = (
    (PRICE, re.compile(r"^price$", re.I)),
    (DISCOUNT, re.compile(r"^discount$", re.I)),
    (DISCOUNTED_PRICE, re.compile(r"^(disc\.?|discounted)\s*price$", re.I)),
    (TAXES, re.compile(r"^taxes$", re.I)),
)

LINE_ITEM_ID_FIELDS = ("SKU", "UPC", "AX_ITEM_NUMBER", "JASPER_PRODUCT_ID", "PRODUCT_ID", "VARIANT_GROUP_ID")

_RGB_RE = re.compile(r"rgba?\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)")


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def is_red(color: str | None) -> bool:
    """Discount and tax amounts render in red: R >= 170, G <= 90, B <= 90."""

    match = _RGB_RE.search(color or "")
    if not match:
        return False
    red, green, blue = (int(part) for part in match.groups())
    return red >= 170 and green <= 90 and blue <= 90


@dataclass(frozen=True)
class PriceToken:
    text: str
    x: float
    color: str = ""

    @property
    def red(self) -> bool:
        return is_red(self.color)


@dataclass(frozen=True)
class RowCandidate:
    """One ancestor of a descriptor group, ``depth`` 0 being the direct parent."""

    depth: int
    name: str = ""
    tokens: Tuple[PriceToken, ...] = ()


@dataclass(frozen=True)
class DescriptorGroup:
    fields: Mapping[str, str]
    candidates: Tuple[RowCandidate, ...] = ()

    @property
    def qualifies(self) -> bool:
        return any((self.fields.get(key) or "").strip() for key in LINE_ITEM_ID_FIELDS)

    def best_row(self) -> RowCandidate | None:
        """Smallest ancestor holding the most aligned currency tokens."""

        best: RowCandidate | None = None
        for candidate in sorted(self.candidates, key=lambda item: item.depth):
            if best is None or len(candidate.tokens) > len(best.tokens):
                best = candidate
        return best


@dataclass(frozen=True)
class HeaderCell:
    text: str
    x: float
    top: float


@dataclass(frozen=True)
class DetailSnapshot:
    groups: Tuple[DescriptorGroup, ...] = ()
    headers: Tuple[HeaderCell, ...] = ()
    body_text: str = ""

    @property
    def line_groups(self) -> List[DescriptorGroup]:
        return [group for group in self.groups if group.qualifies]

    def header_positions(self) -> Dict[str, float]:
        """Horizontal centre of the top-most visible header for each price column."""

        positions: Dict[str, float] = {}
        tops: Dict[str, float] = {}
        for cell in self.headers:
            for name, pattern in HEADER_PATTERNS:
                if not pattern.match(cell.text.strip()):
                    continue
                if name not in tops or cell.top < tops[name]:
                    tops[name] = cell.top
                    positions[name] = cell.x
        return positions

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "DetailSnapshot":
        payload = payload or {}
        groups: List[DescriptorGroup] = []
        for raw_group in payload.get("groups") or []:
            candidates = tuple(
                RowCandidate(
                    depth=int(raw.get("depth") or 0),
                    name=str(raw.get("name") or ""),
                    tokens=_tokens(raw.get("tokens") or []),
                )
                for raw in raw_group.get("candidates") or []
            )
            raw_fields = raw_group.get("fields") or {}
            groups.append(
                DescriptorGroup(
                    fields={str(key): str(value or "") for key, value in raw_fields.items()},
                    candidates=candidates,
                )
            )
        headers = tuple(
            HeaderCell(text=str(raw.get("text") or ""), x=_float(raw.get("x")), top=_float(raw.get("top")))
            for raw in payload.get("headers") or []
        )
        return cls(groups=tuple(groups), headers=headers, body_text=str(payload.get("bodyText") or ""))


def _tokens(raw_tokens: Sequence[Mapping[str, Any]]) -> Tuple[PriceToken, ...]:
    return tuple(
        PriceToken(text=str(raw.get("text") or ""), x=_float(raw.get("x")), color=str(raw.get("color") or ""))
        for raw in raw_tokens
        if raw.get("text")
    )


@dataclass
class SnapshotStats:
    """Counters reported alongside an extraction for debugging selector drift."""

    groups: int = 0
    line_groups: int = 0
    headers: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def of(cls, snapshot: DetailSnapshot) -> "SnapshotStats":
        return cls(
            groups=len(snapshot.groups),
            line_groups=len(snapshot.line_groups),
            headers=snapshot.header_positions(),
        )
