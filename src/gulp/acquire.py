from __future__ import annotations

import io
import ipaddress
import logging
import re
import xml.etree.ElementTree as ET
import zipfile
from pathlib import PurePosixPath
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from .clean import clean_to_paragraphs
from .errors import UpstreamError, ValidationError

__all__ = [
    "ALLOWED_EXTENSIONS",
    "MAX_FILE_SIZE",
    "MAX_URL_LENGTH",
    "acquire_text",
    "extract_upload_text",
    "fetch_url_text",
    "html_to_text",
    "is_allowed_file_type",
    "is_url_like",
    "sanitize_filename",
    "validate_url",
]

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048
MAX_FILE_SIZE = 20 * 1024 * 1024
MAX_FILENAME_LENGTH = 255
DEFAULT_FETCH_TIMEOUT = 15.0
USER_AGENT = "gulp-rsvp/0.1"
MAX_REDIRECTS = 5
_REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})

_URL_LIKE_RE = re.compile(r"^(https?://|www\.)\S+$", re.IGNORECASE)
_BLOCKED_HOST_PATTERNS = [
    re.compile(r"^localhost$", re.IGNORECASE),
    re.compile(r"^127\."),
    re.compile(r"^0\."),
    re.compile(r"^10\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^\[?::1\]?$"),
    re.compile(r"^metadata\.google", re.IGNORECASE),
    re.compile(r"\.internal$", re.IGNORECASE),
    re.compile(r"\.local$", re.IGNORECASE),
    re.compile(r"\.localhost$", re.IGNORECASE),
]

TEXT_EXTENSIONS = frozenset(
    {"txt", "csv", "json", "xml", "yaml", "yml", "log", "rst", "tex"}
)
MARKDOWN_EXTENSIONS = frozenset({"md", "markdown"})
HTML_EXTENSIONS = frozenset({"html", "htm", "xhtml"})
EPUB_EXTENSIONS = frozenset({"epub"})
ALLOWED_EXTENSIONS = TEXT_EXTENSIONS | MARKDOWN_EXTENSIONS | HTML_EXTENSIONS | EPUB_EXTENSIONS
ALLOWED_MIME_TYPES = frozenset(
    {
        "application/json",
        "application/xml",
        "application/xhtml+xml",
        "application/epub+zip",
        "application/zip",
    }
)
_TEXT_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

# Elements that never carry readable article text.
_NON_CONTENT_TAGS = [
    "script",
    "style",
    "noscript",
    "template",
    "svg",
    "iframe",
    "nav",
    "header",
    "footer",
    "aside",
    "form",
    "button",
    "figure",
]
_BLOCK_TAGS = [
    "p",
    "div",
    "section",
    "article",
    "main",
    "li",
    "blockquote",
    "pre",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "tr",
    "dt",
    "dd",
]


def is_url_like(value: object) -> bool:
    if not isinstance(value, str):
        return False
    return bool(_URL_LIKE_RE.match(value.strip()))


def _is_blocked_host(hostname: str) -> bool:
    host = hostname.lower().strip("[]")
    if any(pattern.search(host) for pattern in _BLOCKED_HOST_PATTERNS):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
    )


def validate_url(value: object) -> str:
    """Return a normalized http(s) URL or raise :class:`ValidationError`."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("URL is required.")
    candidate = value.strip()
    if len(candidate) > MAX_URL_LENGTH:
        raise ValidationError("URL is too long.")
    if candidate.lower().startswith("www."):
        candidate = f"https://{candidate}"
    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in {"http", "https"}:
        raise ValidationError("Only HTTP and HTTPS URLs are allowed.")
    if not parsed.hostname:
        raise ValidationError("Invalid URL format.")
    if _is_blocked_host(parsed.hostname):
        raise ValidationError("This URL cannot be accessed.")
    return parsed.geturl()


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(_NON_CONTENT_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    for br in root.find_all("br"):
        br.replace_with("\n")
    for block in root.find_all(_BLOCK_TAGS):
        block.insert_before("\n\n")
    return root.get_text(separator="")


def fetch_url_text(
    url: str,
    *,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> str:
    """Download ``url`` and return cleaned readable text."""
    target = validate_url(url)
    client = session or requests.Session()
    # Redirects are followed by hand so every hop passes the host block list.
    for _ in range(MAX_REDIRECTS + 1):
        try:
            response = client.get(
                target,
                headers={"User-Agent": USER_AGENT, "Accept": "text/html,text/plain;q=0.9"},
                timeout=timeout,
                allow_redirects=False,
            )
        except requests.RequestException as exc:
            logger.warning("Fetching %s failed: %s", target, exc)
            raise UpstreamError(f"Fetching {target} failed: {exc}") from exc
        location = response.headers.get("Location")
        if response.status_code not in _REDIRECT_STATUSES or not location:
            break
        next_target = urljoin(target, location)
        try:
            target = validate_url(next_target)
        except ValidationError:
            logger.warning("Refusing redirect from %s to %s", target, next_target)
            raise
    else:
        raise UpstreamError(f"Too many redirects starting from {url}")
    try:
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Fetching %s failed: %s", target, exc)
        raise UpstreamError(f"Fetching {target} failed: {exc}") from exc

    content_type = response.headers.get("Content-Type", "").split(";")[0].strip().lower()
    if content_type and not (content_type.startswith("text/") or content_type in ALLOWED_MIME_TYPES):
        raise UpstreamError(f"Unsupported content type from {target}: {content_type}")
    body = response.text
    if content_type in {"text/plain", "text/markdown"}:
        return clean_to_paragraphs(body)
    return clean_to_paragraphs(html_to_text(body))


def sanitize_filename(filename: object) -> str | None:
    if not isinstance(filename, str) or not filename:
        return None
    basename = re.split(r"[/\\]", filename)[-1]
    cleaned = re.sub(r"[\x00-\x1f\x7f]", "", basename)
    cleaned = re.sub(r'[<>:"|?*]', "", cleaned)[:MAX_FILENAME_LENGTH]
    if not cleaned or cleaned in {".", ".."}:
        return None
    return cleaned


def _extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def is_allowed_file_type(filename: str, content_type: str | None = None) -> bool:
    if _extension(filename) not in ALLOWED_EXTENSIONS:
        return False
    mime = (content_type or "").split(";")[0].strip().lower()
    if not mime or mime == "application/octet-stream":
        return True
    return mime.startswith("text/") or mime in ALLOWED_MIME_TYPES


def _decode_text(data: bytes) -> str:
    if data.startswith((b"\xff\xfe", b"\xfe\xff")):
        return data.decode("utf-16", errors="replace")
    for encoding in _TEXT_ENCODINGS:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="ignore")


def _epub_spine(archive: zipfile.ZipFile) -> list[str]:
    try:
        container = ET.fromstring(archive.read("META-INF/container.xml"))
    except (KeyError, ET.ParseError) as exc:
        raise ValidationError("File is not a valid EPUB.") from exc
    ns = {"c": "urn:oasis:names:tc:opendocument:xmlns:container"}
    rootfile = container.find(".//c:rootfile", ns)
    opf_path = rootfile.attrib.get("full-path") if rootfile is not None else None
    if not opf_path:
        raise ValidationError("File is not a valid EPUB.")
    try:
        opf = ET.fromstring(archive.read(opf_path))
    except (KeyError, ET.ParseError) as exc:
        raise ValidationError("File is not a valid EPUB.") from exc
    prefix = opf.tag.split("}")[0] + "}" if opf.tag.startswith("{") else ""
    manifest = {
        item.attrib["id"]: item.attrib["href"]
        for item in opf.findall(f".//{prefix}manifest/{prefix}item")
        if "id" in item.attrib and "href" in item.attrib
    }
    base = PurePosixPath(opf_path).parent
    spine: list[str] = []
    for itemref in opf.findall(f".//{prefix}spine/{prefix}itemref"):
        href = manifest.get(itemref.attrib.get("idref", ""))
        if href:
            spine.append((base / href).as_posix())
    if not spine:
        spine = [
            name
            for name in archive.namelist()
            if _extension(name) in HTML_EXTENSIONS
        ]
    return spine


def _epub_to_text(data: bytes) -> str:
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ValidationError("File is not a valid EPUB.") from exc
    chapters: list[str] = []
    with archive:
        names = set(archive.namelist())
        for name in _epub_spine(archive):
            if name not in names:
                continue
            text = html_to_text(_decode_text(archive.read(name)))
            if text.strip():
                chapters.append(text)
    return clean_to_paragraphs("\n\n".join(chapters))


def extract_upload_text(
    filename: object,
    data: bytes,
    content_type: str | None = None,
) -> str:
    """Turn an uploaded file into readable text, validating its name, size and type."""
    name = sanitize_filename(filename)
    if name is None:
        raise ValidationError("Invalid file name.")
    if len(data) > MAX_FILE_SIZE:
        raise ValidationError("File too large. Maximum size is 20MB.")
    if not is_allowed_file_type(name, content_type):
        ext = _extension(name)
        raise ValidationError(f"Unsupported file type: .{ext}" if ext else "Unsupported file type.")
    ext = _extension(name)
    if ext in EPUB_EXTENSIONS:
        return _epub_to_text(data)
    text = _decode_text(data).replace("\0", "")
    if ext in HTML_EXTENSIONS:
        return clean_to_paragraphs(html_to_text(text))
    if ext in MARKDOWN_EXTENSIONS:
        return clean_to_paragraphs(text)
    return text


def acquire_text(
    content: str,
    *,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> str:
    """Resolve user input: URLs are fetched, anything else is read as-is."""
    if is_url_like(content):
        return fetch_url_text(content, session=session, timeout=timeout)
    return content
