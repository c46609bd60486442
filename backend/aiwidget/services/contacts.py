"""
Contact/lead extraction from visitor messages.

Best effort only: results are used to ping the project owner, so a missed or
spurious match is harmless. Duplicates inside one message are not.
"""
import re
from dataclasses import asdict, dataclass
from typing import Dict, List, Set, Tuple

EMAIL_RE = re.compile(r"(?<![\w.+-])[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"(?<![\w@/+])\+?\d[\d\s\-()]{5,}\d(?!\w)")
TG_LINK_RE = re.compile(r"(?:https?://)?(?:t\.me|telegram\.me)/([A-Za-z][A-Za-z0-9_]{3,31})", re.IGNORECASE)
TG_LABEL_RE = re.compile(r"\b(?:telegram|tg)\s*[:\-]\s*@?([A-Za-z][A-Za-z0-9_]{3,31})", re.IGNORECASE)
TG_HANDLE_RE = re.compile(r"(?<![\w.@/])@([A-Za-z][A-Za-z0-9_]{3,31})\b")
WA_LINK_RE = re.compile(r"(?:https?://)?wa\.me/\+?(\d{7,15})", re.IGNORECASE)
WA_LABEL_RE = re.compile(r"\bwhats\s?app\s*[:\-]\s*(\+?[\d\s\-()]{7,20}\d)", re.IGNORECASE)

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15


@dataclass(frozen=True)
class Contact:
    type: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def _normalize(kind: str, value: str) -> str:
    if kind in ("phone", "whatsapp"):
        return _digits(value)
    return value.strip().lstrip("@").lower()


def extract_contacts(text: str) -> List[Contact]:
    """Return de-duplicated contacts in order of first appearance."""
    if not text:
        return []

    found: List[Tuple[int, Contact]] = []
    seen: Set[Tuple[str, str]] = set()

    def add(kind: str, value: str, position: int) -> None:
        key = (kind, _normalize(kind, value))
        if not key[1] or key in seen:
            return
        seen.add(key)
        found.append((position, Contact(kind, value.strip())))

    for match in EMAIL_RE.finditer(text):
        add("email", match.group(0), match.start())

    for pattern in (TG_LINK_RE, TG_LABEL_RE, TG_HANDLE_RE):
        for match in pattern.finditer(text):
            add("telegram", "@" + match.group(1), match.start())

    for pattern in (WA_LINK_RE, WA_LABEL_RE):
        for match in pattern.finditer(text):
            digits = _digits(match.group(1))
            if MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
                add("whatsapp", match.group(1), match.start())

    whatsapp_numbers = {value for kind, value in seen if kind == "whatsapp"}
    for match in PHONE_RE.finditer(text):
        raw = match.group(0)
        digits = _digits(raw)
        if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
            continue
        if digits in whatsapp_numbers:
            continue
        add("phone", raw, match.start())

    found.sort(key=lambda item: item[0])
    return [contact for _, contact in found]
