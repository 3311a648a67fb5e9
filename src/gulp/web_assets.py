from __future__ import annotations

from urllib.parse import quote

__all__ = ["build_favicon_svg", "favicon_data_url", "GULP_FAVICON_URL"]


def build_favicon_svg(
    *,
    background: str = "#0b0d14",
    text_color: str = "#f5f5f5",
    pivot_color: str = "#ef4444",
) -> str:
    """Return a square SVG badge: a word with its pivot on a centre guide."""
    return f"""<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 64 64" role="img" aria-label="gulp icon">
  <rect width="64" height="64" rx="14" ry="14" fill="{background}" />
  <line x1="32" y1="8" x2="32" y2="16" stroke="{pivot_color}" stroke-width="3" stroke-linecap="round" />
  <line x1="32" y1="48" x2="32" y2="56" stroke="{pivot_color}" stroke-width="3" stroke-linecap="round" />
  <text x="32" y="41" text-anchor="middle" font-family="Menlo, 'DejaVu Sans Mono', monospace"
        font-size="22" font-weight="700" fill="{text_color}">g<tspan fill="{pivot_color}">u</tspan>lp</text>
</svg>"""


def favicon_data_url(
    *,
    background: str = "#0b0d14",
    text_color: str = "#f5f5f5",
    pivot_color: str = "#ef4444",
) -> str:
    svg = build_favicon_svg(
        background=background,
        text_color=text_color,
        pivot_color=pivot_color,
    )
    return "data:image/svg+xml," + quote(svg)


GULP_FAVICON_URL = favicon_data_url()
