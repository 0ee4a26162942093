"""Scraped content: race events and news articles."""
from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class Event(SQLModel, table=True):
    """One row per race event pulled from the scraper (USABMX or UCI)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    scraper_id: str = Field(unique=True, index=True)
    source: str  # "USABMX", "UCI"

    name: str
    title: Optional[str] = None
    date: datetime
    location: str = "TBD"

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    dates_text: Optional[str] = None  # free-form range as shown on the source site
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    continent: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None

    details_url: Optional[str] = None
    is_uci_event: bool = False

    synced_at: datetime = Field(default_factory=datetime.utcnow)


class News(SQLModel, table=True):
    """One row per news article pulled from the scraper."""

    id: Optional[int] = Field(default=None, primary_key=True)
    scraper_id: str = Field(unique=True, index=True)
    source: str

    title: str
    content: str
    summary: Optional[str] = None
    published_at: Optional[datetime] = None
    date: Optional[datetime] = None
    category: Optional[str] = None
    url: Optional[str] = None
    author: Optional[str] = None

    # The scraper hands out numeric ids for USABMX and UUIDs for UCI
    external_id: Optional[str] = None
    uuid_id: Optional[str] = None

    synced_at: datetime = Field(default_factory=datetime.utcnow)
