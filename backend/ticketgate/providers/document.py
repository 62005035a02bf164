"""Tolerant field extraction over receipt documents.

Institutions change their receipt layouts without notice, so nothing here
relies on element ids or exact positions. A receipt is flattened into an
ordered list of text fragments and fields are located by label proximity:
a fragment that *is* a label is followed by its value, or a fragment that
*starts with* ``label:`` carries its value inline.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Set

from bs4 import BeautifulSoup

_WS = re.compile(r"\s+")
_LAYOUT_COLUMNS = re.compile(r"\s{2,}|\t+")
# The whole value must be one number, optionally with a currency word
_AMOUNT = re.compile(
    r"^(?:ETB|Birr|Br)?\.?\s*(-?\d+(?:\.\d+)?)\s*(?:ETB|Birr|Br)?\.?$",
    re.IGNORECASE,
)


def clean_text(value: Any) -> str:
    return _WS.sub(" ", str(value or "")).strip()


def _norm_label(value: str) -> str:
    return clean_text(value).rstrip(":").strip().casefold()


def parse_amount(raw: Any) -> Optional[Decimal]:
    """Parse an amount like ``ETB 1,500.00`` or ``1 500.00 Birr``.

    Currency words and symbols, thousands separators and whitespace are
    dropped. Returns ``None`` unless the whole value is a single number,
    so ids such as ``FT2209AB12`` or dates never read as amounts.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            return None
    text = clean_text(raw).replace(",", "")
    text = re.sub(r"(?<=\d)\s+(?=\d{3}\b)", "", text)
    m = _AMOUNT.match(text)
    if not m:
        return None
    try:
        return Decimal(m.group(1))
    except InvalidOperation:
        return None


@dataclass
class ReceiptDocument:
    fragments: List[str] = field(default_factory=list)

    @classmethod
    def from_html(cls, html: str) -> "ReceiptDocument":
        soup = BeautifulSoup(html or "", "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return cls([clean_text(s) for s in soup.stripped_strings if clean_text(s)])

    @classmethod
    def from_layout_text(cls, text: str) -> "ReceiptDocument":
        """Build from ``pdftotext -layout`` output, one column per fragment."""
        out: List[str] = []
        for line in (text or "").splitlines():
            for part in _LAYOUT_COLUMNS.split(line.strip()):
                part = clean_text(part)
                if part:
                    out.append(part)
        return cls(out)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReceiptDocument":
        out: List[str] = []
        for k, v in (data or {}).items():
            if isinstance(v, (dict, list)):
                continue
            out.append(clean_text(k))
            out.append(clean_text(v))
        return cls(out)

    def text(self) -> str:
        return " ".join(self.fragments)

    def contains(self, needle: str) -> bool:
        return needle.casefold() in self.text().casefold()

    def find_value(self, labels: Sequence[str], known: Iterable[str] = ()) -> str:
        """Return the value next to the first label found, in label priority order.

        ``known`` holds every label the document may carry (for all fields).
        A fragment that is a known label is never taken as a value, and a run
        of consecutive labels is read as a header row whose values follow in
        the same column order.
        """
        wanted = [_norm_label(lbl) for lbl in labels if lbl]
        known = set(wanted) | {_norm_label(lbl) for lbl in known if lbl}
        for label in wanted:
            for i, frag in enumerate(self.fragments):
                norm = _norm_label(frag)
                if norm == label:
                    value = self._next_value(i, known)
                    if value:
                        return value
                    continue
                prefix = label + ":"
                if frag.casefold().startswith(prefix):
                    value = clean_text(frag[len(prefix):])
                    if value:
                        return value
        return ""

    def _next_value(self, index: int, labels: Set[str]) -> str:
        start = index
        while start > 0 and _norm_label(self.fragments[start - 1]) in labels:
            start -= 1
        end = index + 1
        while end < len(self.fragments) and _norm_label(self.fragments[end]) in labels:
            end += 1

        if end - start > 1:
            pos = end + (index - start)
            if pos >= len(self.fragments):
                return ""
            value = clean_text(self.fragments[pos])
            return "" if _norm_label(value) in labels else value

        for frag in self.fragments[index + 1:index + 3]:
            if _norm_label(frag) in labels:
                return ""
            value = clean_text(frag.lstrip(":"))
            if value:
                return value
        return ""
