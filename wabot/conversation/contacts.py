"""Contact keys, text normalization and the address book."""

import re
import unicodedata

DEFAULT_JID_SUFFIX = "@s.whatsapp.net"


def contact_key(address: str) -> str:
    """
    Digits-only partition key for a chat address.

    `5491122334455:12@s.whatsapp.net` -> `5491122334455`. Addresses without
    digits fall back to their lower-cased local part.
    """
    local = str(address or "").strip().split("@", 1)[0]
    local = local.split(":", 1)[0]
    digits = re.sub(r"\D+", "", local)
    return digits or local.strip().lower()


def normalize_text(text: str) -> str:
    """Lower-case, strip diacritics and collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", str(text or "").lower())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return re.sub(r"\s+", " ", stripped).strip()


class ContactBook:
    """Remembers the reply address of each contact and who wrote last."""

    def __init__(self):
        self._addresses: dict[str, str] = {}
        self._last_contact: str = ""

    def remember(self, key: str, address: str) -> None:
        if not key:
            return
        if address:
            self._addresses[key] = address
        self._last_contact = key

    def address_for(self, key: str) -> str:
        return self._addresses.get(key) or f"{key}{DEFAULT_JID_SUFFIX}"

    @property
    def last_contact(self) -> str:
        return self._last_contact

    def __len__(self) -> int:
        return len(self._addresses)
