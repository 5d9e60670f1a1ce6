from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Callable, Dict, List, Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_WOM_API_BASE = "https://api.wiseoldman.net/v2"
USER_AGENT = "Siege-Clan-Tracker/1.0"

_PLAYER_ID_PATTERN = re.compile(r"[0-9]+")


class WomApiError(RuntimeError):
    """A Wise Old Man request that failed; keeps the upstream status when there is one."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def is_valid_player_id(value: Any) -> bool:
    return isinstance(value, str) and _PLAYER_ID_PATTERN.fullmatch(value) is not None


class WomClient:
    """Small Wise Old Man v2 client with retry on rate limiting."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        retries: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.getenv("WOM_API_KEY", "")
        self.base_url = (base_url or os.getenv("WOM_API_BASE") or DEFAULT_WOM_API_BASE).rstrip("/")
        self.retries = max(1, retries)
        self.backoff = backoff
        self._sleep = sleep
        self._transport = transport

    def get_group(self, group_id: Any) -> Dict[str, Any]:
        payload = self._get_json(f"/groups/{group_id}", params={"includeMemberships": "true"})
        if not isinstance(payload, dict):
            raise WomApiError("Unexpected payload for WOM group")
        return payload

    def get_group_competitions(self, group_id: Any) -> List[Dict[str, Any]]:
        payload = self._get_json(f"/groups/{group_id}/competitions")
        if not isinstance(payload, list):
            raise WomApiError("Unexpected payload for WOM group competitions")
        return [item for item in payload if isinstance(item, dict)]

    def get_group_achievements(self, group_id: Any, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        payload = self._get_json(f"/groups/{group_id}/achievements", params={"limit": limit, "offset": offset})
        if not isinstance(payload, list):
            raise WomApiError("Unexpected payload for WOM group achievements")
        return [item for item in payload if isinstance(item, dict)]

    def get_competition(self, competition_id: Any) -> Dict[str, Any]:
        payload = self._get_json(f"/competitions/{competition_id}")
        if not isinstance(payload, dict):
            raise WomApiError("Unexpected payload for WOM competition")
        return payload

    def get_player_by_id(self, player_id: Any) -> Dict[str, Any]:
        payload = self._get_json(f"/players/id/{player_id}")
        if not isinstance(payload, dict):
            raise WomApiError("Unexpected payload for WOM player")
        return payload

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _get_json(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        delay = self.backoff
        last_error: Optional[str] = None

        for attempt in range(1, self.retries + 1):
            try:
                with httpx.Client(timeout=15.0, transport=self._transport) as client:
                    response = client.get(url, params=params, headers=self._headers())
            except httpx.RequestError as exc:
                last_error = str(exc)
                logger.warning("WOM request %s failed on attempt %s (%s)", path, attempt, exc)
            else:
                if response.status_code == 429:
                    last_error = "rate limited"
                    logger.warning("WOM rate limit hit for %s on attempt %s", path, attempt)
                elif response.is_error:
                    raise WomApiError(
                        f"WOM API error {response.status_code} for {path}",
                        status_code=response.status_code,
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise WomApiError(f"Invalid JSON from WOM for {path}") from exc

            if attempt < self.retries:
                self._sleep(delay)
                delay *= 2

        raise WomApiError(
            f"WOM request {path} failed after {self.retries} attempts: {last_error}",
            status_code=429 if last_error == "rate limited" else None,
        )
