import time
import asyncio
import logging
import aiohttp
from typing import Any, Dict, List, Optional
from export_assistant.core.config import settings
from export_assistant.core.exceptions import UpstreamDataError
from export_assistant.repositories.base import PersistenceStore
from export_assistant.schemas.context import UserContext
from export_assistant.schemas.conversation import EntityType, Intent, IntentType
from export_assistant.schemas.response import DataVisualization

logger = logging.getLogger("trade_data_service")

EXPORTS_INDICATOR = "NE.EXP.GNFS.CD"
IMPORTS_INDICATOR = "NE.IMP.GNFS.CD"

COUNTRY_CODES = {
    "United States": "USA",
    "United Kingdom": "GBR",
    "United Arab Emirates": "ARE",
    "China": "CHN",
    "Germany": "DEU",
    "Japan": "JPN",
    "India": "IND",
    "Canada": "CAN",
    "Australia": "AUS",
    "France": "FRA",
    "Italy": "ITA",
    "Spain": "ESP",
    "Brazil": "BRA",
    "Mexico": "MEX",
    "Russia": "RUS",
    "South Korea": "KOR",
    "Singapore": "SGP",
    "Netherlands": "NLD",
    "Switzerland": "CHE",
    "Sweden": "SWE",
}

MAJOR_ECONOMIES = ["USA", "CHN", "DEU", "JPN", "GBR"]


def country_code(name: str) -> Optional[str]:
    if not name:
        return None
    if name in COUNTRY_CODES:
        return COUNTRY_CODES[name]
    upper = name.upper()
    return upper if upper in COUNTRY_CODES.values() else None


class TradeDataService:
    """World Bank indicator client with results cached in the persistence store.

    Every public method returns a result dict instead of raising; a failed
    lookup is simply "no data" for the caller.
    """

    def __init__(
        self,
        store: PersistenceStore,
        base_url: str = None,
        timeout_seconds: float = None,
        cache_ttl_ms: int = None,
    ):
        self.store = store
        self.base_url = (base_url or settings.trade_api_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.trade_api_timeout_seconds
        self.cache_ttl_ms = cache_ttl_ms or settings.trade_cache_ttl_ms

    async def _make_api_request(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        start_time = time.time()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    f"{self.base_url}{path}",
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    response_time = time.time() - start_time
                    if response.status == 200:
                        data = await response.json(content_type=None)
                        return {"success": True, "data": data, "response_time": response_time}
                    return {
                        "success": False,
                        "error": f"HTTP {response.status}",
                        "response_time": response_time,
                    }
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            return {"success": False, "error": str(e), "response_time": time.time() - start_time}

    async def _fetch_indicators(self, codes: List[str], date_range: str) -> List[Dict[str, Any]]:
        result = await self._make_api_request(
            f"/country/{';'.join(codes)}/indicator/{EXPORTS_INDICATOR};{IMPORTS_INDICATOR}",
            {"format": "json", "per_page": 1000, "date": date_range, "source": 2},
        )
        if not result["success"]:
            raise UpstreamDataError(f"Trade data request failed: {result['error']}")
        payload = result["data"]
        # Indicator responses are [paging metadata, records]; errors come back as [{"message": ...}]
        if not isinstance(payload, list) or len(payload) < 2 or not isinstance(payload[1], list):
            raise UpstreamDataError("Malformed trade data payload")
        if not payload[1]:
            raise UpstreamDataError(f"No trade data for {', '.join(codes)}")
        return payload[1]

    @staticmethod
    def _summarize(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Collapse indicator rows into one summary per country."""
        by_country: Dict[str, Dict[str, Any]] = {}
        for row in records:
            value = row.get("value")
            code = row.get("countryiso3code") or (row.get("country") or {}).get("id")
            indicator = (row.get("indicator") or {}).get("id")
            if value is None or not code or indicator not in (EXPORTS_INDICATOR, IMPORTS_INDICATOR):
                continue
            entry = by_country.setdefault(code, {
                "country_code": code,
                "country": (row.get("country") or {}).get("value", code),
                "exports_by_year": {},
                "imports_by_year": {},
            })
            key = "exports_by_year" if indicator == EXPORTS_INDICATOR else "imports_by_year"
            entry[key][str(row.get("date"))] = float(value)

        summaries = {}
        for code, entry in by_country.items():
            exports = entry.pop("exports_by_year")
            imports = entry.pop("imports_by_year")
            latest_exports = exports[max(exports)] if exports else 0.0
            latest_imports = imports[max(imports)] if imports else 0.0
            growth_rate = 0.0
            if len(exports) > 1 and exports[min(exports)]:
                growth_rate = (latest_exports - exports[min(exports)]) / exports[min(exports)] * 100
            summaries[code] = {
                **entry,
                "year": max(exports) if exports else None,
                "total_exports": latest_exports,
                "total_imports": latest_imports,
                "trade_balance": latest_exports - latest_imports,
                "growth_rate": round(growth_rate, 2),
            }
        return summaries

    async def _cached(self, key: str):
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning(f"Trade data cache read failed for {key}: {e}")
            return None

    async def _cache(self, key: str, value: Any) -> None:
        try:
            await self.store.set(key, value, self.cache_ttl_ms)
        except Exception as e:
            logger.warning(f"Trade data cache write failed for {key}: {e}")

    async def get_trade_statistics(self, code: str) -> Dict[str, Any]:
        cache_key = f"trade_stats:{code}"
        cached = await self._cached(cache_key)
        if cached is not None:
            return {"success": True, "data": cached, "cached": True}
        try:
            summaries = self._summarize(await self._fetch_indicators([code], "2018:2023"))
            if code not in summaries:
                raise UpstreamDataError(f"No trade data for {code}")
        except UpstreamDataError as e:
            logger.warning(f"Trade statistics unavailable for {code}: {e.message}")
            return {"success": False, "error": e.to_dict(), "cached": False}
        await self._cache(cache_key, summaries[code])
        return {"success": True, "data": summaries[code], "cached": False}

    async def get_market_data(self, codes: List[str], product_category: Optional[str] = None) -> Dict[str, Any]:
        codes = sorted(set(codes or MAJOR_ECONOMIES))
        category = product_category or "general"
        cache_key = f"market_data:{';'.join(codes)}:{category}"
        cached = await self._cached(cache_key)
        if cached is not None:
            return {"success": True, "data": cached, "cached": True}
        try:
            summaries = self._summarize(await self._fetch_indicators(codes, "2020:2023"))
        except UpstreamDataError as e:
            logger.warning(f"Market data unavailable for {codes}: {e.message}")
            return {"success": False, "error": e.to_dict(), "cached": False}
        markets = [
            {
                "country": s["country"],
                "country_code": s["country_code"],
                "product_category": category,
                "market_size": s["total_imports"],
                "growth_rate": s["growth_rate"],
            }
            for s in summaries.values()
        ]
        markets.sort(key=lambda m: m["market_size"], reverse=True)
        await self._cache(cache_key, markets)
        return {"success": True, "data": markets, "cached": False}

    async def build_visualization(self, intent: Intent, context: UserContext) -> Optional[DataVisualization]:
        """Visualization descriptor for data-backed intents, or None when there is no data."""
        codes = [c for c in (country_code(e.value) for e in intent.entities_of(EntityType.COUNTRY)) if c]
        if not codes:
            codes = [c for c in (country_code(m) for m in context.business_profile.target_markets) if c]

        if intent.name == IntentType.FIND_BUYERS:
            if not codes:
                return None
            results = await asyncio.gather(*(self.get_trade_statistics(c) for c in dict.fromkeys(codes)))
            rows = [r["data"] for r in results if r["success"]]
            if not rows:
                return None
            return DataVisualization(
                type="table",
                title="Trade Statistics",
                description="Export and import data for target markets",
                data=[
                    {
                        "country": row["country"],
                        "total_exports": row["total_exports"],
                        "total_imports": row["total_imports"],
                        "trade_balance": row["trade_balance"],
                    }
                    for row in rows
                ],
                config={
                    "columns": ["country", "total_exports", "total_imports", "trade_balance"],
                    "sort_by": "total_exports",
                    "sort_order": "desc",
                },
                cached=all(r["cached"] for r in results if r["success"]),
            )

        if intent.name == IntentType.MARKET_RESEARCH:
            products = intent.entities_of(EntityType.PRODUCT)
            category = products[0].value if products else next(iter(context.business_profile.products), None)
            result = await self.get_market_data(codes, category)
            if not result["success"] or not result["data"]:
                return None
            return DataVisualization(
                type="chart",
                title="Market Analysis",
                description="Trade statistics and market opportunities",
                data=result["data"],
                config={"chart_type": "bar", "x_axis": "country", "y_axis": "market_size", "color_by": "growth_rate"},
                cached=result["cached"],
            )
        return None
