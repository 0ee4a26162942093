"""
Async client for the scraper service, and the DataSourceClient the sync
engine drives.

The scraper exposes JSON lists of race events and news per source. This
client fetches them over httpx, normalizes each item and upserts it into
the Event / News tables keyed by scraper_id, so re-running a sync is
idempotent.

A source that cannot be fetched (network error, non-2xx, malformed body)
contributes an error message and marks that sync unsuccessful; the other
source is still persisted. A single item that fails to normalize or
persist is reported in `errors` and skipped.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlmodel import Session, select

from racesync.config import get_settings
from racesync.errors import TransientExternalError
from racesync.models.content import Event, News
from racesync.scraper.normalizer import normalize_event, normalize_news

logger = logging.getLogger(__name__)

USABMX = "USABMX"
UCI = "UCI"

EVENT_ENDPOINTS = {USABMX: "/events/usabmx/", UCI: "/events/uci/"}
NEWS_ENDPOINTS = {USABMX: "/news/", UCI: "/news/uci/"}


class ScraperClient:
    """
    Thin async wrapper over the scraper HTTP API plus local persistence.

    Can be used as an async context manager, or kept open for the life of
    the process and closed with aclose().
    """

    def __init__(
        self,
        engine,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        health_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            engine: SQLAlchemy engine the scraped rows are written to.
            base_url: Scraper base URL (defaults to settings.scraper_api_url).
            timeout: Request timeout in seconds (defaults to settings).
            health_timeout: Timeout for the health probe (defaults to settings).
            transport: Optional httpx transport (tests pass httpx.MockTransport).
        """
        settings = get_settings()
        self.engine = engine
        self.base_url = (base_url or settings.scraper_api_url).rstrip("/")
        self.timeout = timeout or settings.scraper_timeout_seconds
        self.health_timeout = health_timeout or settings.scraper_health_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _run(self, fn, *args, **kwargs):
        """Run a blocking Session call in the thread pool."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    # ─── Health ──────────────────────────────────────────────────────────────

    async def check_health(self) -> Dict[str, Any]:
        """Probe the scraper root. Never raises."""
        try:
            response = await self._get_client().get("/", timeout=self.health_timeout)
            return {"is_healthy": response.is_success, "scraper_url": self.base_url}
        except httpx.HTTPError as exc:
            return {"is_healthy": False, "scraper_url": self.base_url, "error": str(exc)}

    # ─── Fetching ────────────────────────────────────────────────────────────

    async def _get_list(self, path: str, key: str) -> List[Dict[str, Any]]:
        """GET `path` and return body[key]. Raises TransientExternalError on any failure."""
        try:
            response = await self._get_client().get(path)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientExternalError(f"GET {path} failed: {exc}") from exc

        items = body.get(key) if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise TransientExternalError(f"GET {path} returned no '{key}' list")
        return items

    async def _fetch(
        self, endpoints: Dict[str, str], key: str
    ) -> Tuple[Dict[str, List[Dict[str, Any]]], List[str]]:
        """Fetch every source concurrently. Returns (items by source, error messages)."""
        sources = list(endpoints)
        results = await asyncio.gather(
            *(self._get_list(endpoints[source], key) for source in sources),
            return_exceptions=True,
        )
        items: Dict[str, List[Dict[str, Any]]] = {}
        errors: List[str] = []
        for source, result in zip(sources, results):
            if isinstance(result, Exception):
                logger.error("Fetching %s %s failed: %s", source, key, result)
                errors.append(str(result))
                items[source] = []
            else:
                items[source] = result
        logger.info(
            "Fetched %s: %s",
            key,
            ", ".join(f"{len(v)} {k}" for k, v in items.items()),
        )
        return items, errors

    async def fetch_events(self) -> Tuple[Dict[str, List[Dict[str, Any]]], List[str]]:
        return await self._fetch(EVENT_ENDPOINTS, "events")

    async def fetch_news(self) -> Tuple[Dict[str, List[Dict[str, Any]]], List[str]]:
        return await self._fetch(NEWS_ENDPOINTS, "news")

    # ─── Syncing ─────────────────────────────────────────────────────────────

    async def sync_events(self) -> Dict[str, Any]:
        """Fetch and upsert events. Returns {success, usabmx, uci, errors}."""
        return await self._sync("events", self.fetch_events, Event, normalize_event)

    async def sync_news(self) -> Dict[str, Any]:
        """Fetch and upsert news. Returns {success, usabmx, uci, errors}."""
        return await self._sync("news", self.fetch_news, News, normalize_news)

    async def sync_all(self) -> Dict[str, Any]:
        """Events and news concurrently; success only if both succeed with no errors."""
        events, news = await asyncio.gather(self.sync_events(), self.sync_news())
        errors = events["errors"] + news["errors"]
        return {
            "success": events["success"] and news["success"] and not errors,
            "events": {"usabmx": events["usabmx"], "uci": events["uci"]},
            "news": {"usabmx": news["usabmx"], "uci": news["uci"]},
            "errors": errors,
        }

    async def _sync(self, kind: str, fetch, model, normalize) -> Dict[str, Any]:
        counts = {USABMX: 0, UCI: 0}
        errors: List[str] = []
        try:
            items, fetch_errors = await fetch()
            errors.extend(fetch_errors)
            for source, raw_items in items.items():
                for raw in raw_items:
                    try:
                        fields = normalize(raw, source)
                        await self._run(self._upsert, model, fields)
                        counts[source] += 1
                    except Exception as exc:
                        title = raw.get("title") if isinstance(raw, dict) else raw
                        errors.append(f'Error syncing {source} {kind} item "{title}": {exc}')
        except Exception as exc:
            errors.append(f"Error syncing {kind}: {exc}")
            logger.exception("Syncing %s failed", kind)
            return {"success": False, "usabmx": counts[USABMX], "uci": counts[UCI], "errors": errors}

        logger.info(
            "Synced %s: %d USABMX, %d UCI, %d errors",
            kind, counts[USABMX], counts[UCI], len(errors),
        )
        return {
            "success": not fetch_errors,
            "usabmx": counts[USABMX],
            "uci": counts[UCI],
            "errors": errors,
        }

    def _upsert(self, model, fields: Dict[str, Any]) -> None:
        """Insert or update one row keyed by scraper_id."""
        with Session(self.engine) as s:
            existing = s.exec(
                select(model).where(model.scraper_id == fields["scraper_id"])
            ).first()
            if existing:
                for k, v in fields.items():
                    setattr(existing, k, v)
                existing.synced_at = datetime.utcnow()
                row = existing
            else:
                row = model(**fields)
            s.add(row)
            s.commit()
