"""JSON and CSV export of bookmark lists."""

import csv
import io
import json
from datetime import date, datetime
from typing import Optional, Sequence

from ..models.bookmark import Bookmark

EXPORT_FILENAME_PREFIX = "nyxvaulta-bookmarks"
CSV_HEADERS = ("Title", "URL", "Description", "Tags", "Favorite", "Created")

MEDIA_TYPES = {
    "json": "application/json",
    "csv": "text/csv",
}


def format_short_date(value: datetime) -> str:
    """Format as e.g. ``Feb 3, 2026``."""
    return f"{value:%b} {value.day}, {value.year}"


def generate_filename(extension: str, today: Optional[date] = None) -> str:
    """Return ``nyxvaulta-bookmarks-YYYY-MM-DD.<extension>``."""
    today = today or date.today()
    return f"{EXPORT_FILENAME_PREFIX}-{today.isoformat()}.{extension}"


def bookmarks_to_json(bookmarks: Sequence[Bookmark]) -> str:
    """Serialize bookmarks as an indented JSON array of rows."""
    return json.dumps([b.model_dump(mode="json") for b in bookmarks], indent=2)


def bookmarks_to_csv(bookmarks: Sequence[Bookmark]) -> str:
    """Serialize bookmarks as CSV with every cell quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")

    buffer.write(",".join(CSV_HEADERS) + "\n")
    for b in bookmarks:
        writer.writerow(
            [
                b.title,
                b.url,
                b.description or "",
                "; ".join(b.tags or []),
                "Yes" if b.is_favorite else "No",
                format_short_date(b.created_at),
            ]
        )

    return buffer.getvalue().rstrip("\n")


def export_bookmarks(bookmarks: Sequence[Bookmark], fmt: str) -> str:
    """Render bookmarks in ``fmt`` ("json" or "csv")."""
    if fmt == "json":
        return bookmarks_to_json(bookmarks)
    if fmt == "csv":
        return bookmarks_to_csv(bookmarks)
    raise ValueError(f"Unsupported export format: {fmt}")
