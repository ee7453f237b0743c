from __future__ import annotations

import logging

import httpx

logger = logging.getLogger("pm_relay")


class FraudChecker:
    def __init__(self, http: httpx.AsyncClient, list_url: str) -> None:
        self._http = http
        self._list_url = list_url

    async def is_suspicious(self, visitor_id: int) -> bool:
        if not self._list_url:
            return False
        try:
            response = await self._http.get(self._list_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            # fail open
            logger.warning("fraud_list_unavailable error=%s", exc)
            return False
        needle = str(visitor_id)
        return any(line.strip() == needle for line in response.text.splitlines())
