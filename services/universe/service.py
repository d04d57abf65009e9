import csv
import io
import json
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from core.config.settings import UniverseSettings
from core.logging import get_logger
from core.schemas.universe import UniverseEntry, UniverseRevisionRecord
from core.storage.base import TradingStore
from services.kiwoom.fields import normalize_symbol, to_number
from services.kiwoom.service import KiwoomService

DEFAULT_MARKETS = ("0", "10")


class UniverseService:
    """
    Universe catalog: the tradable symbols with market cap metadata.

    Entries are replaced wholesale (from an HTTP source or the Kiwoom stock
    list) and read through a short-lived in-process cache.
    """

    def __init__(self, settings: UniverseSettings, store: TradingStore, kiwoom: KiwoomService,
                 http_client: Optional[httpx.AsyncClient] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.settings = settings
        self.store = store
        self.kiwoom = kiwoom
        self.http = http_client
        self._clock = clock
        self._cache: Optional[List[UniverseEntry]] = None
        self._loaded_at = 0.0
        self.logger = get_logger("universe_service", component="universe")

    def invalidate(self) -> None:
        self._cache = None

    async def get_entries(self) -> List[UniverseEntry]:
        if self._cache is not None and self._clock() - self._loaded_at < self.settings.cache_ttl_seconds:
            return list(self._cache)

        try:
            entries = await self.store.list_universe_entries()
        except Exception as e:
            self.logger.warning("Failed to load universe entries", error=str(e))
            entries = []
        self._cache = entries
        self._loaded_at = self._clock()
        return list(entries)

    async def replace_entries(self, entries: Sequence[UniverseEntry], source: str,
                              note: Optional[str] = None) -> UniverseRevisionRecord:
        entries = list(entries)
        revision = UniverseRevisionRecord(source=source, note=note, entry_count=len(entries))
        await self.store.replace_universe_entries(entries, revision)
        self.invalidate()
        self.logger.info("Universe replaced", source=source, entries=len(entries))
        return revision

    async def refresh_from_source(self) -> int:
        """Reload the catalog from ``UNIVERSE__SOURCE_URL`` (JSON or CSV). Returns the entry count."""
        source_url = self.settings.source_url
        if not source_url:
            self.logger.warning("Universe refresh skipped, UNIVERSE__SOURCE_URL not set")
            return 0

        try:
            response = await self._get(source_url)
        except httpx.HTTPError as e:
            self.logger.warning("Universe refresh failed", error=str(e))
            return 0
        if not response.is_success:
            self.logger.warning("Universe refresh failed", status_code=response.status_code)
            return 0

        content_type = response.headers.get("content-type", "")
        fmt = self.settings.source_format.lower() or (
            "json" if source_url.lower().endswith(".json") or "json" in content_type else "csv"
        )
        symbol_field = self.settings.source_symbol_field.lower()
        market_cap_field = self.settings.source_market_cap_field.lower()
        name_field = self.settings.source_name_field.lower()
        if fmt == "json":
            entries = parse_universe_json(response.text, symbol_field, market_cap_field, name_field)
        else:
            entries = parse_universe_csv(response.text, symbol_field, market_cap_field, name_field)

        if not entries:
            self.logger.warning("Universe refresh returned no entries", url=source_url, format=fmt)
            return 0

        await self.replace_entries(entries, "source", source_url)
        return len(entries)

    async def _get(self, url: str) -> httpx.Response:
        if self.http is not None:
            return await self.http.get(url)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.get(url)

    async def refresh_from_kiwoom(self, markets: Optional[Sequence[str]] = None) -> int:
        """Rebuild the catalog from the Kiwoom stock list; market cap = listed shares x last price."""
        market_types = list(markets) if markets else list(DEFAULT_MARKETS)
        entries: List[UniverseEntry] = []
        for market_type in market_types:
            for listing in await self.kiwoom.get_stock_list(market_type):
                entries.append(UniverseEntry(
                    symbol=listing.symbol,
                    name=listing.name or None,
                    market_cap=listing.market_cap,
                    market_code=listing.market_code or market_type,
                    market_name=listing.market_name,
                ))

        if not entries:
            self.logger.warning("Universe refresh from Kiwoom returned no entries", markets=market_types)
            return 0

        await self.replace_entries(entries, "kiwoom", f"markets={','.join(market_types)}")
        return len(entries)


def _lower_keys(row: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key).lower(): value for key, value in row.items()}


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_universe_json(raw: str, symbol_field: str = "symbol", market_cap_field: str = "marketcap",
                        name_field: str = "name") -> List[UniverseEntry]:
    try:
        payload = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(payload, list):
        return []

    entries = []
    for row in payload:
        if not isinstance(row, dict):
            continue
        row = _lower_keys(row)
        symbol = normalize_symbol(_text(row.get(symbol_field) or row.get("symbol")))
        if not symbol:
            continue
        entries.append(UniverseEntry(
            symbol=symbol,
            market_cap=to_number(row.get(market_cap_field) or row.get("marketcap") or 0),
            name=_text(row.get(name_field) or row.get("name")),
            market_code=_text(row.get("marketcode") or row.get("market_cd")),
            market_name=_text(row.get("marketname") or row.get("market_nm")),
        ))
    return entries


def parse_universe_csv(raw: str, symbol_field: str = "symbol", market_cap_field: str = "marketcap",
                       name_field: str = "name") -> List[UniverseEntry]:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if not lines:
        return []

    first = lines[0].lower()
    has_header = any(token in first for token in ("symbol", "code", "ticker"))
    if has_header:
        rows = [
            {key.strip().lower(): value for key, value in row.items() if key is not None}
            for row in csv.DictReader(io.StringIO("\n".join(lines)))
        ]
    else:
        fieldnames = [symbol_field, market_cap_field, name_field, "marketcode", "marketname"]
        rows = list(csv.DictReader(io.StringIO("\n".join(lines)), fieldnames=fieldnames))

    entries = []
    for row in rows:
        symbol = normalize_symbol(_text(row.get(symbol_field)))
        if not symbol:
            continue
        entries.append(UniverseEntry(
            symbol=symbol,
            market_cap=to_number(row.get(market_cap_field) or 0),
            name=_text(row.get(name_field)),
            market_code=_text(row.get("marketcode")),
            market_name=_text(row.get("marketname")),
        ))
    return entries
