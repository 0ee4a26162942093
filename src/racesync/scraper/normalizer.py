"""
Scraper API payload normalizer.

Converts raw event/news dicts from the scraper service into field dicts
that map directly onto the Event and News SQLModel columns. No DB access
here; ScraperClient handles persistence.

Payload shapes (GET /events/usabmx/, /events/uci/, /news/, /news/uci/):

  events: {"total": n, "events": [{"title", "start_date", "end_date", "date",
           "location", "city", "state", "country", "continent", "latitude",
           "longitude", "details_url", "is_uci_event", "dates"}, ...]}

  news:   {"total": n, "news": [{"id", "title", "published_at", "date",
           "category", "url", "summary", "author"}, ...]}

USABMX news ids are integers; UCI news ids are UUID strings.
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_LOCATION = "TBD"


def parse_scraper_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 date or datetime into a naive UTC datetime.

    Accepts "YYYY-MM-DD", "YYYY-MM-DDTHH:MM:SS" and a trailing "Z" or offset.
    Returns None for empty values; raises ValueError for anything else
    unparseable.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _coordinate(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def make_event_scraper_id(source: str, title: str, main_date: str) -> str:
    """Stable identity for an event: source + title + main date, slugged."""
    return re.sub(r"\s+", "_", f"{source}_{title}_{main_date}").lower()


def normalize_event(raw: Dict[str, Any], source: str) -> Dict[str, Any]:
    """
    Normalize one scraper event into Event model fields.

    The main date is start_date, falling back to date. Undated events keep a
    stable scraper_id ("..._undated") and get the sync time as their date.

    Args:
        raw: One item of the "events" list.
        source: "USABMX" or "UCI".

    Returns:
        Dict with keys matching Event columns.
    """
    title = (raw.get("title") or "").strip()
    if not title:
        raise ValueError("event has no title")

    main_date_text = raw.get("start_date") or raw.get("date")
    main_date = parse_scraper_datetime(main_date_text) or datetime.utcnow()

    return {
        "scraper_id": make_event_scraper_id(source, title, main_date_text or "undated"),
        "source": source,
        "name": title,
        "title": title,
        "date": main_date,
        "location": raw.get("location") or DEFAULT_LOCATION,
        "start_date": parse_scraper_datetime(raw.get("start_date")),
        "end_date": parse_scraper_datetime(raw.get("end_date")),
        "dates_text": raw.get("dates"),
        "city": raw.get("city"),
        "state": raw.get("state"),
        "country": raw.get("country"),
        "continent": raw.get("continent"),
        "latitude": _coordinate(raw.get("latitude")),
        "longitude": _coordinate(raw.get("longitude")),
        "details_url": raw.get("details_url"),
        "is_uci_event": bool(raw.get("is_uci_event")) or source == "UCI",
    }


def normalize_news(raw: Dict[str, Any], source: str) -> Dict[str, Any]:
    """
    Normalize one scraper news item into News model fields.

    content falls back to the title when the item has no summary.
    """
    news_id = raw.get("id")
    if news_id is None or news_id == "":
        raise ValueError("news item has no id")
    title = (raw.get("title") or "").strip()
    if not title:
        raise ValueError(f"news item {news_id} has no title")

    # bool is an int subclass; the scraper never sends it as an id
    numeric_id = isinstance(news_id, int) and not isinstance(news_id, bool)

    return {
        "scraper_id": f"{source}_{news_id}",
        "source": source,
        "title": title,
        "content": raw.get("summary") or title,
        "summary": raw.get("summary"),
        "published_at": parse_scraper_datetime(raw.get("published_at")),
        "date": parse_scraper_datetime(raw.get("date")),
        "category": raw.get("category"),
        "url": raw.get("url"),
        "author": raw.get("author"),
        "external_id": str(news_id) if numeric_id else None,
        "uuid_id": news_id if isinstance(news_id, str) else None,
    }
