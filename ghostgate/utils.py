import hashlib
import json
import re
import secrets
import time
import unicodedata
from collections.abc import Callable
from typing import Any

from bs4 import BeautifulSoup

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_PLAIN_FILTER_VALUE = re.compile(r"^[\w.\-]+$")


def value_signature(value: Any) -> str:
    """
    Structural fingerprint of a JSON-like value.

    Dict key order does not matter; values json cannot encode are
    stringified.
    """
    encoded = json.dumps(value, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def generate_subscription_id(clock: Callable[[], float] = time.time) -> str:
    """Subscription id of the form ``sub_<epoch-ms>_<random base36>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"sub_{int(clock() * 1000)}_{suffix}"


def slugify(text: str) -> str:
    """Lowercase, ASCII, hyphen-separated slug for a display name."""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^\w\s-]", "", text.lower())
    return re.sub(r"[-\s_]+", "-", text).strip("-")


def html_to_text(html: str) -> str:
    """Visible text of an HTML fragment, whitespace collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def sanitize_html(html: str) -> str:
    """Strip ``<script>`` elements and inline ``on*`` event handlers."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup("script"):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in [a for a in tag.attrs if a.lower().startswith("on")]:
            del tag[attr]
    return str(soup)


def meta_description(html: str, max_length: int = 500) -> str:
    """Plain-text excerpt of ``html`` truncated to ``max_length`` with an ellipsis."""
    text = html_to_text(html)
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def filter_term(field: str, value: str, quote: bool = False) -> str:
    """Build one ``field:value`` filter term, quoting values that need it."""
    if quote or not _PLAIN_FILTER_VALUE.match(value):
        value = "'" + value.replace("'", "\\'") + "'"
    return f"{field}:{value}"
