"""Post-conversion cleanup of Markdown produced from web pages."""

import re

# Cloudflare email obfuscation leaves "[email protected]" with a plain,
# non-breaking or entity-encoded space.
_EMAIL_PROTECTED_RE = re.compile(r"\[email(?:\s| |&#160;|&nbsp;)+protected\]", re.IGNORECASE)
_TEL_URI_RE = re.compile(r"tel:[+\d%().\-]+", re.IGNORECASE)
_NUMERIC_ENTITY_RE = re.compile(r"&#x?[0-9a-fA-F]+;")
_EMPTY_LINK_RE = re.compile(r"!?\[\s*\]\([^)]*\)")
_SKIP_LINK_RE = re.compile(r"\[?skip to (?:main )?content\]?(?:\([^)]*\))?", re.IGNORECASE)

_COOKIE_PATTERNS = [
    re.compile(r"[^.\n]*\bthis (?:website|site) uses cookies\b[^.\n]*\.?", re.IGNORECASE),
    re.compile(r"[^.\n]*\bwe use cookies\b[^.\n]*\.?", re.IGNORECASE),
    re.compile(r"[^.\n]*\baccept (?:all )?cookies\b[^.\n]*\.?", re.IGNORECASE),
    re.compile(r"[^.\n]*\bcookie (?:policy|settings|preferences)\b[^.\n]*\.?", re.IGNORECASE),
]

_TRAILING_SPACES_RE = re.compile(r"[ \t]+\n")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def clean_markdown(text: str) -> str:
    """Strip obfuscation artefacts, cookie banners and empty links from *text*."""
    if not text:
        return ""

    text = _EMAIL_PROTECTED_RE.sub("", text)
    text = _TEL_URI_RE.sub("", text)
    text = _NUMERIC_ENTITY_RE.sub("", text)
    text = _EMPTY_LINK_RE.sub("", text)
    text = _SKIP_LINK_RE.sub("", text)

    for pattern in _COOKIE_PATTERNS:
        text = pattern.sub("", text)

    text = _TRAILING_SPACES_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()
