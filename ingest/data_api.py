import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp

from config import config
from config.utils import as_float, optional_str


DEFAULT_DATA_API_URL = "https://data-api.polymarket.com"


class DataAPIError(Exception):
    def __init__(self, status: int, body: str, path: Optional[str] = None):
        self.status = status
        self.body = body
        self.path = path
        text = f"Data API error (status={status}, path={path}, body={body[:200]})"
        super().__init__(text)


class DataAPIClient:
    """Read-only client for the exchange data API (activity and positions)."""

    def __init__(self, base_url: Optional[str] = None, timeout_s: Optional[float] = None):
        api_cfg = config.section('data_api')
        self.base_url = (
            optional_str(base_url) or optional_str(api_cfg.get('base_url')) or DEFAULT_DATA_API_URL
        ).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else as_float(api_cfg.get('request_timeout_s'), 10.0)
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout_s)
                )
            return self._session

    async def close(self):
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                self._session = None

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"

        async with session.get(url, params=params) as resp:
            text = await resp.text()
            if resp.status >= 400:
                raise DataAPIError(resp.status, text, path)

            content_type = resp.headers.get("Content-Type", "")
            if "application/json" in content_type:
                try:
                    return json.loads(text)
                except ValueError:
                    return text
            return text

    async def fetch_trade_activity(self, address: str) -> List[Dict[str, Any]]:
        payload = await self.get("/activity", params={"user": address, "type": "TRADE"})
        return payload if isinstance(payload, list) else []

    async def fetch_positions(self, address: str) -> List[Dict[str, Any]]:
        payload = await self.get("/positions", params={"user": address})
        return payload if isinstance(payload, list) else []
