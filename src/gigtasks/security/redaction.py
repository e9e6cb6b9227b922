# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.security.redaction
===========================

Scrubbing of bearer credentials and other secrets from log records.

The task service receives caller credentials on every complete/cancel call and
forwards them to the user service; they must never reach a log sink.

- `Redactor`: key and value heuristics (sensitive key names, bearer/JWT patterns).
- `redact_obj(obj, redactor=...)`: recursive redaction of mappings/lists/strings.
"""

import re
from collections.abc import Iterable, MutableMapping
from typing import Any

__all__ = [
    "Redactor",
    "redact_obj",
]


_DEFAULT_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "auth",
        "bearer",
        "credential",
        "credentials",
        "token",
        "access_token",
        "refresh_token",
        "password",
        "secret",
        "client_secret",
        "api_key",
        "cookie",
    }
)


class Redactor:
    """
    Redaction policy.

    Keys are matched case-insensitively on the last segment of their dotted path.
    String values are scrubbed for `Bearer <token>`, JWT-shaped substrings and
    `token=...`-style pairs.
    """

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        key_regexes: Iterable[str] | None = None,
        replacement: str = "***",
    ) -> None:
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or _DEFAULT_SENSITIVE_KEYS))
        self.key_regexes = [re.compile(r, re.IGNORECASE) for r in (key_regexes or [])]
        self.replacement = replacement

        self._re_bearer = re.compile(r"(Bearer\s+)([A-Za-z0-9_\-\.=~+/]+)", re.IGNORECASE)
        self._re_jwt = re.compile(r"[A-Za-z0-9_\-]{8,}=*\.[A-Za-z0-9_\-]{8,}=*\.[A-Za-z0-9_\-]+=*")
        self._re_keyval = re.compile(
            r"(?P<key>(?:token|secret|password|credential|api[_-]?key))\s*[=:]\s*(?P<val>[^\s;,]+)",
            re.IGNORECASE,
        )

    def is_sensitive_key(self, key_path: str) -> bool:
        key_lower = key_path.split(".")[-1].lower()
        if key_lower in self.sensitive_keys:
            return True
        return any(rx.search(key_path) for rx in self.key_regexes)

    def redact_value(self, value: Any) -> Any:
        return self.replacement

    def redact_text(self, text: str) -> str:
        out = self._re_bearer.sub(r"\1" + self.replacement, text)
        out = self._re_keyval.sub(lambda m: f"{m.group('key')}={self.replacement}", out)
        return self._re_jwt.sub(self.replacement, out)


def redact_obj(obj: Any, *, redactor: Redactor, in_place: bool = False, _path: str = "") -> Any:
    """
    Recursively redact `obj`. A sensitive key replaces its whole value; strings are
    scrubbed with `redactor.redact_text()`; other scalars pass through.
    """
    if isinstance(obj, MutableMapping):
        target: MutableMapping[str, Any] = obj if in_place else obj.__class__()  # type: ignore[call-arg]
        for k, v in list(obj.items()):
            key_path = f"{_path}.{k}" if _path else str(k)
            if v is not None and redactor.is_sensitive_key(key_path):
                target[k] = redactor.redact_value(v)
            else:
                target[k] = redact_obj(v, redactor=redactor, in_place=False, _path=key_path)
        return target

    if isinstance(obj, list):
        if in_place:
            for i, v in enumerate(obj):
                obj[i] = redact_obj(v, redactor=redactor, in_place=False, _path=_path)
            return obj
        return [redact_obj(v, redactor=redactor, in_place=False, _path=_path) for v in obj]

    if isinstance(obj, tuple):
        return tuple(redact_obj(v, redactor=redactor, in_place=False, _path=_path) for v in obj)

    if isinstance(obj, str):
        return redactor.redact_text(obj)

    return obj
