# identity.py
#
# Per-visitor identity from the `rex_id` cookie.
#
# The token is a capability ("holder may use the recorded cap"), not proof of
# who the user is. It is created once per device and kept for ~180 days.
#
from __future__ import annotations

import logging
import random
import string
import time
from email.utils import formatdate
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote, unquote


logger = logging.getLogger(__name__)

UNKNOWN_CLIENT_ID = "unknown"

_ALPHABET = string.digits + string.ascii_lowercase


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_ALPHABET[r])
    return "".join(reversed(out))


def new_client_id() -> str:
    # Best-effort uniqueness, not a secret.
    entropy = _base36(random.getrandbits(52))
    stamp = _base36(int(time.time() * 1000))
    return f"rex_{entropy}_{stamp}"


def parse_cookies(header: Optional[str]) -> Dict[str, str]:
    """
    Lenient Cookie header parser.
    Pairs without a name are skipped; a bad percent-escape keeps the raw value.
    """
    out: Dict[str, str] = {}
    if not header:
        return out
    for part in str(header).split(";"):
        name, sep, value = part.strip().partition("=")
        name = name.strip()
        if not name or not sep:
            continue
        try:
            out[name] = unquote(value.strip())
        except Exception:
            out[name] = value.strip()
    return out


class IdentityResolver:
    def __init__(self, cookie_name: str = "rex_id", max_age_days: int = 180) -> None:
        self.cookie_name = cookie_name
        self.max_age_days = max_age_days

    def set_cookie_header(self, client_id: str, now: Optional[float] = None) -> str:
        max_age = self.max_age_days * 24 * 60 * 60
        expires = formatdate((now if now is not None else time.time()) + max_age, usegmt=True)
        return (
            f"{self.cookie_name}={quote(client_id, safe='')}; Path=/; HttpOnly; "
            f"SameSite=Lax; Expires={expires}; Max-Age={max_age}"
        )

    def resolve(self, cookie_header: Optional[str]) -> Tuple[str, Optional[str]]:
        """
        Returns (client_id, set_cookie_value). The second element is None when the
        visitor already carries an id, otherwise the Set-Cookie value to emit.
        """
        try:
            existing = parse_cookies(cookie_header).get(self.cookie_name)
        except Exception:
            logger.warning("cookie header could not be read; issuing a new id")
            existing = None

        if existing:
            return existing, None

        client_id = new_client_id()
        return client_id, self.set_cookie_header(client_id)

    def bind(self, cookie_header: Optional[str], response: Any) -> str:
        """
        Resolve and, when needed, attach the Set-Cookie header to `response`
        (anything exposing `headers.append`). If the header cannot be written the
        request continues under the ephemeral UNKNOWN_CLIENT_ID.
        """
        client_id, set_cookie = self.resolve(cookie_header)
        if set_cookie is None:
            return client_id
        try:
            response.headers.append("set-cookie", set_cookie)
        except Exception:
            logger.warning("could not set identity cookie; using ephemeral id")
            return UNKNOWN_CLIENT_ID
        return client_id
