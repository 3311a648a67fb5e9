from __future__ import annotations

import io
import zipfile

import pytest
import requests

from gulp.acquire import (
    MAX_FILE_SIZE,
    acquire_text,
    extract_upload_text,
    fetch_url_text,
    html_to_text,
    is_allowed_file_type,
    is_url_like,
    sanitize_filename,
    validate_url,
)
from gulp.errors import UpstreamError, ValidationError
from gulp.tokens import tokenize


class _FakeResponse:
    def __init__(
        self,
        text: str,
        content_type: str = "text/html; charset=utf-8",
        status: int = 200,
        location: str | None = None,
    ) -> None:
        self.text = text
        self.headers = {"Content-Type": content_type}
        if location is not None:
            self.headers["Location"] = location
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class _FakeSession:
    def __init__(self, *responses: _FakeResponse | Exception) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


ARTICLE_HTML = """<html><head><style>p { color: red; }</style></head><body>
<nav>Home Menu</nav>
<article><h1>Title</h1><p>First para.</p><p>Second<br>line.</p></article>
<footer>footer links</footer><script>alert(1)</script>
</body></html>"""


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("https://example.com/a", True),
        ("http://example.com", True),
        ("www.example.com/post", True),
        ("  https://example.com  ", True),
        ("just some text", False),
        ("https://example.com and more", False),
        (None, False),
    ],
)
def test_is_url_like(value, expected: bool) -> None:
    assert is_url_like(value) is expected


def test_validate_url_normalizes_bare_www() -> None:
    assert validate_url("www.example.com/post") == "https://www.example.com/post"
    assert validate_url(" https://example.com/a?b=1 ") == "https://example.com/a?b=1"


@pytest.mark.parametrize(
    ("value", "message"),
    [
        ("", "URL is required."),
        ("https://example.com/" + "a" * 2100, "URL is too long."),
        ("ftp://example.com/file", "Only HTTP and HTTPS URLs are allowed."),
        ("https://", "Invalid URL format."),
        ("http://localhost:8000/", "This URL cannot be accessed."),
        ("http://127.0.0.1/", "This URL cannot be accessed."),
        ("http://192.168.1.10/admin", "This URL cannot be accessed."),
        ("http://169.254.169.254/latest", "This URL cannot be accessed."),
        ("http://[::1]/", "This URL cannot be accessed."),
        ("http://metadata.google.internal/", "This URL cannot be accessed."),
        ("http://printer.local/", "This URL cannot be accessed."),
    ],
)
def test_validate_url_rejects(value: str, message: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        validate_url(value)
    assert excinfo.value.user_message == message


def test_html_to_text_keeps_article_blocks() -> None:
    text = html_to_text(ARTICLE_HTML)
    assert "Home Menu" not in text
    assert "footer links" not in text
    assert "alert" not in text
    assert "color" not in text
    assert "First para.\n\nSecond\nline." in text


def test_fetch_url_text_cleans_html() -> None:
    session = _FakeSession(_FakeResponse(ARTICLE_HTML))
    text = fetch_url_text("https://example.com/post", session=session, timeout=3)
    assert tokenize(text) == ["Title", "First", "para.", "Second", "line."]
    url, kwargs = session.calls[0]
    assert url == "https://example.com/post"
    assert kwargs["timeout"] == 3
    assert "User-Agent" in kwargs["headers"]


def test_fetch_url_text_plain_text_skips_html_parsing() -> None:
    session = _FakeSession(_FakeResponse("Plain <b>words</b> stay readable.", "text/plain"))
    assert fetch_url_text("https://example.com/a.txt", session=session) == "Plain words stay readable."


def test_fetch_url_text_hides_upstream_detail() -> None:
    session = _FakeSession(_FakeResponse("nope", status=403))
    with pytest.raises(UpstreamError) as excinfo:
        fetch_url_text("https://example.com/private", session=session)
    assert "403" in excinfo.value.detail
    assert "403" not in excinfo.value.user_message


def test_fetch_url_text_wraps_connection_errors() -> None:
    session = _FakeSession(requests.ConnectionError("boom"))
    with pytest.raises(UpstreamError):
        fetch_url_text("https://example.com/", session=session)


def test_fetch_url_text_rejects_binary_content() -> None:
    session = _FakeSession(_FakeResponse("\x89PNG", "image/png"))
    with pytest.raises(UpstreamError):
        fetch_url_text("https://example.com/pic", session=session)


def test_fetch_url_text_validates_before_requesting() -> None:
    session = _FakeSession(_FakeResponse("never"))
    with pytest.raises(ValidationError):
        fetch_url_text("http://10.0.0.5/", session=session)
    assert session.calls == []


def test_acquire_text_passes_plain_text_through() -> None:
    session = _FakeSession(_FakeResponse("unused"))
    assert acquire_text("Just read this.", session=session) == "Just read this."
    assert session.calls == []


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("notes.txt", "notes.txt"),
        ("../../etc/passwd", "passwd"),
        ("C:\\docs\\file.md", "file.md"),
        ('bad<name>?.txt', "badname.txt"),
        ("..", None),
        ("", None),
        (None, None),
    ],
)
def test_sanitize_filename(filename, expected) -> None:
    assert sanitize_filename(filename) == expected


def test_is_allowed_file_type() -> None:
    assert is_allowed_file_type("a.txt", "text/plain")
    assert is_allowed_file_type("a.md", None)
    assert is_allowed_file_type("a.epub", "application/epub+zip")
    assert is_allowed_file_type("a.txt", "application/octet-stream")
    assert not is_allowed_file_type("a.exe", "text/plain")
    assert not is_allowed_file_type("a.txt", "image/png")
    assert not is_allowed_file_type("README", None)


def test_extract_upload_text_plain_file() -> None:
    assert extract_upload_text("notes.txt", "hello\0 world".encode("utf-8")) == "hello world"


def test_extract_upload_text_falls_back_to_legacy_encoding() -> None:
    assert extract_upload_text("notes.txt", "café".encode("cp1252")) == "café"


def test_extract_upload_text_markdown_is_cleaned() -> None:
    data = b"# Head\n\nSome **bold** words here."
    assert tokenize(extract_upload_text("doc.md", data)) == ["Head", "Some", "bold", "words", "here."]


def test_extract_upload_text_html_file() -> None:
    text = extract_upload_text("page.html", ARTICLE_HTML.encode("utf-8"), "text/html")
    assert tokenize(text) == ["Title", "First", "para.", "Second", "line."]


@pytest.mark.parametrize(
    ("filename", "data", "content_type", "message"),
    [
        ("", b"x", None, "Invalid file name."),
        ("big.txt", b"x" * (MAX_FILE_SIZE + 1), None, "File too large. Maximum size is 20MB."),
        ("tool.exe", b"MZ", None, "Unsupported file type: .exe"),
        ("noext", b"data", None, "Unsupported file type."),
    ],
)
def test_extract_upload_text_rejects(filename, data, content_type, message) -> None:
    with pytest.raises(ValidationError) as excinfo:
        extract_upload_text(filename, data, content_type)
    assert excinfo.value.user_message == message


def _build_epub(chapters: dict[str, str], spine: list[str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/epub+zip")
        archive.writestr(
            "META-INF/container.xml",
            '<?xml version="1.0"?>'
            '<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">'
            '<rootfiles><rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/></rootfiles>'
            "</container>",
        )
        items = "".join(
            f'<item id="{name}" href="{name}.xhtml" media-type="application/xhtml+xml"/>' for name in chapters
        )
        refs = "".join(f'<itemref idref="{name}"/>' for name in spine)
        archive.writestr(
            "OEBPS/content.opf",
            '<?xml version="1.0"?>'
            '<package xmlns="http://www.idpf.org/2007/opf" version="3.0">'
            f"<manifest>{items}</manifest><spine>{refs}</spine></package>",
        )
        for name, body in chapters.items():
            archive.writestr(
                f"OEBPS/{name}.xhtml",
                f'<html xmlns="http://www.w3.org/1999/xhtml"><body><p>{body}</p></body></html>',
            )
    return buffer.getvalue()


def test_extract_upload_text_reads_epub_in_spine_order() -> None:
    data = _build_epub(
        {"ch1": "Chapter one opens the book.", "ch2": "Chapter two closes it."},
        spine=["ch2", "ch1"],
    )
    text = extract_upload_text("book.epub", data, "application/epub+zip")
    assert text.split("\n\n") == ["Chapter two closes it.", "Chapter one opens the book."]


def test_extract_upload_text_rejects_broken_epub() -> None:
    with pytest.raises(ValidationError) as excinfo:
        extract_upload_text("book.epub", b"not a zip")
    assert excinfo.value.user_message == "File is not a valid EPUB."


@pytest.mark.parametrize(
    "location",
    ["http://127.0.0.1/admin", "http://169.254.169.254/latest/meta-data", "http://db.internal/"],
)
def test_fetch_url_text_refuses_redirect_to_blocked_host(location: str) -> None:
    session = _FakeSession(
        _FakeResponse("", status=302, location=location),
        _FakeResponse("INTERNAL SECRET"),
    )
    with pytest.raises(ValidationError) as excinfo:
        fetch_url_text("https://public.example/article", session=session)
    assert excinfo.value.user_message == "This URL cannot be accessed."
    assert [url for url, _ in session.calls] == ["https://public.example/article"]
    assert session.calls[0][1]["allow_redirects"] is False


def test_fetch_url_text_follows_public_redirects() -> None:
    session = _FakeSession(
        _FakeResponse("", status=301, location="/moved"),
        _FakeResponse("Moved article text.", "text/plain"),
    )
    assert fetch_url_text("https://example.com/old", session=session) == "Moved article text."
    assert [url for url, _ in session.calls] == ["https://example.com/old", "https://example.com/moved"]


def test_fetch_url_text_stops_redirect_loops() -> None:
    session = _FakeSession(_FakeResponse("", status=302, location="https://example.com/loop"))
    with pytest.raises(UpstreamError):
        fetch_url_text("https://example.com/loop", session=session)
    assert len(session.calls) == 6
