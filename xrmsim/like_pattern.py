"""SQL ``LIKE`` wildcard patterns translated to anchored regular expressions."""
import logging
import re
from functools import lru_cache
from typing import Optional, Pattern

log = logging.getLogger(__name__)

# characters that mean something to ``re`` outside a character class
_REGEX_SPECIALS = frozenset(".^$*+?{}\\|()")


def convert_pattern(pattern: Optional[str]) -> str:
    """
    Translate a LIKE pattern into a regular expression string.

      %        -> .*
      _        -> .
      [...]    -> copied as a character class ([a-z], [^0-9] ...)
      other    -> literal, escaped when it is a regex metacharacter

    The result is anchored with ^...$. ``None`` and ``""`` give ``^$``.
    A ``[`` with no closing bracket is taken literally.
    """
    if not pattern:
        return "^$"

    out = ["^"]
    i = 0
    n = len(pattern)
    while i < n:
        ch = pattern[i]
        if ch == "%":
            out.append(".*")
        elif ch == "_":
            out.append(".")
        elif ch == "[":
            close = pattern.find("]", i + 1)
            if close == -1:
                out.append("\\[")
            else:
                body = pattern[i + 1:close].replace("[", "\\[")
                out.append("[" + body + "]")
                i = close
        elif ch in _REGEX_SPECIALS:
            out.append("\\" + ch)
        else:
            out.append(ch)
        i += 1
    out.append("$")
    return "".join(out)


@lru_cache(maxsize=512)
def compile_pattern(pattern: Optional[str]) -> Pattern[str]:
    regex = convert_pattern(pattern)
    try:
        return re.compile(regex, re.IGNORECASE)
    except re.error:
        # a class like [z-a] is not a valid range; match it literally instead
        log.warning("LIKE pattern %r is not a valid class expression; matching it literally", pattern)
        return re.compile("^" + re.escape(pattern or "") + "$", re.IGNORECASE)


def match_pattern(text: Optional[str], pattern: Optional[str]) -> bool:
    """Case-insensitive whole-string LIKE match. A missing value never matches."""
    if text is None:
        return False
    return compile_pattern(pattern).fullmatch(str(text)) is not None


def escape_literal(text: str) -> str:
    """Quote ``text`` so that every character of it is matched literally by a LIKE pattern."""
    out = []
    for ch in text:
        if ch in "%_[":
            out.append(f"[{ch}]")
        else:
            out.append(ch)
    return "".join(out)


__all__ = ["convert_pattern", "compile_pattern", "match_pattern", "escape_literal"]
