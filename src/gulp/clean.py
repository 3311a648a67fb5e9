from __future__ import annotations

import re

__all__ = ["clean_to_paragraphs"]

_I = re.IGNORECASE
_M = re.MULTILINE

# Header lines emitted by reader-mode extractors ahead of the content.
_METADATA_PATTERNS = [
    re.compile(r"^Title:\s*.+$", _I | _M),
    re.compile(r"^URL Source:\s*.+$", _I | _M),
    re.compile(r"^Markdown Content:\s*$", _I | _M),
    re.compile(r"^(Published|Updated|Date|Posted|Written):\s*.+$", _I | _M),
    re.compile(r"^(Author|By|Written by):\s*.+$", _I | _M),
    re.compile(r"^\d+\s*(min|minute)s?\s*(read|reading).*$", _I | _M),
    re.compile(r"^reading time:?\s*.+$", _I | _M),
]

# Ordered (pattern, replacement) pairs; images go before links so alt text
# does not survive as link text.
_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"!\[[^\]]*\]\([^)]+\)"), ""),
    (re.compile(r"<img[^>]*>", _I), ""),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\[[^\]]*\]"), r"\1"),
    (re.compile(r"^\[[^\]]+\]:\s*.+$", _M), ""),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"```\w*\n[\s\S]*?```"), ""),
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"^(?: {4}|\t).+$", _M), ""),
    (re.compile(r"\*\*([^*]+)\*\*"), r"\1"),
    (re.compile(r"__([^_]+)__"), r"\1"),
    (re.compile(r"\*([^*\n]+)\*"), r"\1"),
    (re.compile(r"(?<![a-zA-Z])_([^_\n]+)_(?![a-zA-Z])"), r"\1"),
    (re.compile(r"~~([^~]+)~~"), r"\1"),
    (re.compile(r"^#{1,6}\s+(.+)$", _M), r"\1"),
    (re.compile(r"^>\s*", _M), ""),
    (re.compile(r"^[-*_]{3,}\s*$", _M), ""),
    (re.compile(r"^\s*[-*+]\s+", _M), ""),
    (re.compile(r"^\s*\d+\.\s+", _M), ""),
    (re.compile(r"<[^>]+>"), ""),
    (re.compile(r"&[a-z]+;", _I), " "),
    (re.compile(r"&#\d+;"), " "),
]

_URL_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^https?://\S+$", _M), ""),
    (re.compile(r"https?://\S+"), " "),
    (re.compile(r"www\.\S+"), " "),
]

_BOILERPLATE_PATTERNS = [
    re.compile(pattern, _I)
    for pattern in (
        # navigation
        r"^(skip to|jump to|go to|back to|return to)\s",
        r"^(menu|navigation|nav|footer|header|sidebar|breadcrumb)",
        r"^(home|about|contact|search|help|faq)\s*$",
        r"^(previous|next|older|newer)\s*(post|article|page)?s?\s*$",
        # accounts
        r"^(sign in|sign up|log in|log out|login|logout|register|subscribe|unsubscribe)",
        r"^(my account|your account|profile|settings|dashboard)",
        r"^(forgot password|reset password|create account)",
        # sharing
        r"^(share|tweet|facebook|linkedin|pinterest|instagram|twitter|email this|print)",
        r"^(follow us|connect with us|join us|like us)",
        r"^\d+\s*(shares?|likes?|comments?|views?|retweets?)",
        # related content
        r"^(related|recommended|you may also|you might also|more from|trending|popular)",
        r"^(see also|read more|read next|up next|don't miss)",
        r"^(latest|recent)\s*(posts?|articles?|news|stories)",
        # promotions
        r"^(advertisement|sponsored|promo|ad|ads)\b",
        r"^(special offer|limited time|sale|discount|deal)",
        # legal
        r"^(copyright|©|\(c\)|all rights reserved)",
        r"^(privacy policy|terms of service|terms and conditions|cookie policy)",
        r"^(disclaimer|legal|sitemap)",
        # newsletters
        r"^(newsletter|subscribe to|get updates|join our|sign up for)",
        r"^(enter your email|your email address)",
        # comments
        r"^(leave a comment|post a comment|comments|comment section)",
        r"^(reply|replies|\d+\s*comments?)",
        # widgets
        r"^(loading|please wait|click here|tap here|swipe)",
        r"^(show more|show less|expand|collapse|toggle)",
        r"^(table of contents|contents|toc)\s*$",
        r"^\[.*\]\s*$",
        r"^\s*\|\s*",
        r"^[-•·►▸▶→←↑↓]\s*$",
        # media credits
        r"^(image|photo|picture|illustration|figure|fig\.?)\s*:?\s*\d*",
        r"^(credit|source|via|courtesy):?\s",
        r"^(getty|shutterstock|unsplash|pexels|adobe stock)",
        # bare timestamps
        r"^\d{1,2}[:.]\d{2}\s*(am|pm)?\s*$",
        r"^(today|yesterday|tomorrow)\s*$",
        r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\s+\d+",
        # badges
        r"^(verified|certified|official|trusted)",
        r"^\d+[km]?\+?\s*(followers?|subscribers?|members?)",
        # filler
        r"^[.\-_=*#]+$",
        r"^\s*$",
    )
]

_NAV_ITEM_RE = re.compile(r"^[A-Z][a-zA-Z\s]{0,20}$")
_MAX_CONSECUTIVE_SHORT = 3
_SENTENCE_END_RE = re.compile(r"[.!?]$")
_NUMBER_ONLY_RE = re.compile(r"^\d+$")
_DATE_ONLY_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$")
_EMAIL_ONLY_RE = re.compile(r"^[\w.-]+@[\w.-]+\.\w+$")

_END_MARKERS = [
    re.compile(pattern, _I | _M)
    for pattern in (
        r"^related\s+(posts?|articles?|stories?|content)",
        r"^(you may also like|recommended for you|more from)",
        r"^(comments?|leave a reply|post a comment)",
        r"^(share this|share on)",
        r"^(about the author|author bio)",
        r"^(tags?|categories?|topics?):\s",
        r"^(subscribe|newsletter|sign up for)",
        r"^(advertisement|sponsored content)",
        r"^(footer|copyright ©)",
    )
]
_MIN_CONTENT_BEFORE_MARKER = 200


def _strip_metadata(text: str) -> str:
    for pattern in _METADATA_PATTERNS:
        text = pattern.sub("", text)
    return text


def _apply_rules(text: str, rules: list[tuple[re.Pattern[str], str]]) -> str:
    for pattern, replacement in rules:
        text = pattern.sub(replacement, text)
    return text


def _remove_boilerplate(text: str) -> str:
    cleaned: list[str] = []
    consecutive_short = 0
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed:
            cleaned.append("")
            consecutive_short = 0
            continue
        if any(pattern.search(trimmed) for pattern in _BOILERPLATE_PATTERNS):
            consecutive_short = 0
            continue
        if len(trimmed) < 4 and not _SENTENCE_END_RE.search(trimmed):
            consecutive_short += 1
            continue
        if len(trimmed) < 25 and _NAV_ITEM_RE.match(trimmed) and "." not in trimmed:
            consecutive_short += 1
            if consecutive_short >= _MAX_CONSECUTIVE_SHORT:
                continue
        else:
            consecutive_short = 0
        if (
            _NUMBER_ONLY_RE.match(trimmed)
            or _DATE_ONLY_RE.match(trimmed)
            or _EMAIL_ONLY_RE.match(trimmed)
        ):
            continue
        cleaned.append(trimmed)
    return "\n".join(cleaned)


def _truncate_at_end_markers(text: str) -> str:
    result = text
    for marker in _END_MARKERS:
        match = marker.search(result)
        if match is None:
            continue
        before = result[: match.start()].strip()
        if len(before) > _MIN_CONTENT_BEFORE_MARKER:
            result = before
    return result


def _normalize_paragraphs(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()


def _final_cleanup(text: str) -> str:
    text = re.sub(r"\[x\]", "", text, flags=_I)
    text = text.replace("[ ]", "")
    text = re.sub(r"([.!?]){2,}", r"\1", text)
    text = re.sub(r",{2,}", ",", text)
    text = re.sub(r"\s+([.,!?;:])", r"\1", text)
    text = re.sub(r"([.,!?;:])[ \t]+", r"\1 ", text)
    lines = [
        re.sub(r"[,;\s]+$", "", re.sub(r"^[,;:\s]+", "", line))
        for line in text.split("\n")
    ]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_to_paragraphs(raw_text: object) -> str:
    """
    Reduce extracted page or document text to readable paragraphs.

    Reader-mode metadata, markdown syntax, bare URLs, navigation and other
    boilerplate lines are removed; trailing "related posts" style sections are
    cut once enough article text precedes them. Paragraphs stay separated by a
    blank line.
    """
    if not raw_text or not isinstance(raw_text, str):
        return ""
    text = _strip_metadata(raw_text)
    text = _apply_rules(text, _MARKDOWN_RULES)
    text = _apply_rules(text, _URL_RULES)
    text = _remove_boilerplate(text)
    text = _truncate_at_end_markers(text)
    text = _normalize_paragraphs(text)
    return _final_cleanup(text)


