"""Freelo time-tracking API client."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError

from tracker_agent.backend.models import StartTrackingResponse, WorkItem, parse_task_list
from tracker_agent.core.config import FreeloConfig
from tracker_agent.core.errors import BackendError

logger = logging.getLogger(__name__)


class FreeloClient:
    """Async client for the parts of the Freelo API the tracker needs.

    Every call opens its own ``aiohttp.ClientSession``; calls happen at most a
    few times per poll interval so connection reuse buys nothing.
    """

    def __init__(self, config: FreeloConfig):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._auth = aiohttp.BasicAuth(config.email, config.api_key)
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout_seconds)

    @property
    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent}

    async def list_items(self) -> list[WorkItem]:
        """Fetch open tasks across all projects."""
        params = {
            "states_ids[]": str(self.config.active_state_id),
            "limit": str(self.config.task_limit),
        }
        payload = await self._request("GET", "/all-tasks", params=params)

        try:
            items = parse_task_list(payload)
        except ValidationError as e:
            raise BackendError(f"Unexpected task list format: {e}") from e

        logger.info(f"Loaded {len(items)} open tasks from Freelo")
        return items

    async def start_session(self, item_id: str | None, note: str) -> str:
        """Start time tracking and return the tracking UUID.

        Args:
            item_id: Task to track against, or None for general work.
            note: Free-text note attached to the time entry.
        """
        body: dict[str, Any] = {"note": note}
        if item_id is not None:
            body["task_id"] = item_id

        payload = await self._request("POST", "/timetracking/start", json=body)

        try:
            uuid = StartTrackingResponse.model_validate(payload).uuid
        except ValidationError as e:
            raise BackendError(f"Unexpected start tracking response: {e}") from e

        logger.info(f"Freelo tracking started (task: {item_id or 'general'}, uuid: {uuid})")
        return uuid

    async def stop_session(self, session_id: str) -> None:
        """Stop the tracking identified by ``session_id``."""
        await self._request("POST", "/timetracking/stop", json={"uuid": session_id})
        logger.info(f"Freelo tracking stopped (uuid: {session_id})")

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with aiohttp.ClientSession(
                auth=self._auth, headers=self._headers, timeout=self._timeout
            ) as session:
                async with session.request(method, url, **kwargs) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise BackendError(
                            f"Freelo API error {resp.status} on {path}: {text}",
                            status=resp.status,
                        )
                    if resp.content_length == 0:
                        return {}
                    try:
                        return await resp.json(content_type=None) or {}
                    except ValueError as e:
                        raise BackendError(f"Invalid JSON from Freelo on {path}: {e}") from e
        except aiohttp.ClientError as e:
            raise BackendError(f"HTTP error on {path}: {e}") from e
        except asyncio.TimeoutError as e:
            raise BackendError(f"Timed out calling {path}") from e
