"""
futaba/features/checkins/discord_source.py

Discord REST adapter serving as both event source and membership source.

Gateway handling belongs to whichever client holds the websocket; it hands
MESSAGE_CREATE payloads to ``dispatch`` and they fan out to subscribers.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from futaba.core.config import settings
from futaba.core.errors import ConfigurationError, SourceFailure
from futaba.core.logging import log_event
from futaba.models.checkin import InboundEvent, Member

MAX_RATE_LIMIT_RETRIES = 3
DEFAULT_RETRY_AFTER_SECONDS = 1.0
MAX_RETRY_AFTER_SECONDS = 60.0


def event_from_payload(payload: Dict[str, Any]) -> InboundEvent:
    """Convert a Discord message object."""
    try:
        author = payload["author"]
        return InboundEvent(
            event_id=int(payload["id"]),
            stream_id=int(payload["channel_id"]) if payload.get("channel_id") else None,
            author_id=int(author["id"]),
            author_name=author.get("username", ""),
            author_is_bot=bool(author.get("bot", False)),
            content=payload.get("content") or "",
            edited=payload.get("edited_timestamp") is not None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SourceFailure(f"Malformed message payload: {exc}") from exc


def member_from_payload(payload: Dict[str, Any]) -> Member:
    """Convert a Discord guild member object."""
    try:
        user = payload["user"]
        return Member(
            actor_id=int(user["id"]),
            username=user["username"],
            nickname=payload.get("nick"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SourceFailure(f"Malformed member payload: {exc}") from exc


def _retry_after(response: httpx.Response) -> float:
    """Seconds to wait before retrying a 429, from the header or the JSON body."""
    header = response.headers.get("Retry-After")
    if header:
        try:
            return min(float(header), MAX_RETRY_AFTER_SECONDS)
        except ValueError:
            pass
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("retry_after"), (int, float)):
        return min(float(body["retry_after"]), MAX_RETRY_AFTER_SECONDS)
    return DEFAULT_RETRY_AFTER_SECONDS


class DiscordSource:
    def __init__(
        self,
        *,
        token: str,
        guild_id: int,
        channel_id: int,
        api_base: str = "https://discord.com/api/v10",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
        max_retries: int = MAX_RATE_LIMIT_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.max_retries = max_retries
        self._sleep = sleep
        self._client = client or httpx.Client(
            base_url=api_base,
            timeout=timeout,
            headers={"Authorization": f"Bot {token}"},
        )
        self._subscribers: List[Callable[[InboundEvent], None]] = []

    @classmethod
    def from_settings(cls, settings_obj=None) -> "DiscordSource":
        cfg = settings_obj or settings
        if not cfg.DISCORD_BOT_TOKEN or not cfg.GUILD_ID or not cfg.CHANNEL_ID:
            raise ConfigurationError("DISCORD_BOT_TOKEN, GUILD_ID and CHANNEL_ID are mandatory")
        return cls(
            token=cfg.DISCORD_BOT_TOKEN,
            guild_id=cfg.GUILD_ID,
            channel_id=cfg.CHANNEL_ID,
            api_base=cfg.DISCORD_API_BASE,
            timeout=cfg.DISCORD_HTTP_TIMEOUT_SECONDS,
            max_retries=cfg.DISCORD_RATE_LIMIT_RETRIES,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> Any:
        for attempt in range(self.max_retries + 1):
            try:
                response = self._client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                raise SourceFailure(f"Discord request failed: {method} {url}: {exc}") from exc
            if response.status_code != 429 or attempt == self.max_retries:
                break
            delay = _retry_after(response)
            log_event(
                "warning",
                f"Rate limited on {method} {url}, retrying in {delay:.2f}s (attempt {attempt + 1}/{self.max_retries})",
            )
            self._sleep(delay)

        if response.status_code >= 300:
            raise SourceFailure(f"Discord request failed: {method} {url}: {response.status_code} {response.text}")
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise SourceFailure(f"Discord returned invalid JSON for {method} {url}") from exc

    # Event source -----------------------------------------------------
    def list_events_after(self, cursor: int, limit: int) -> List[InboundEvent]:
        payload = self._request(
            "GET",
            f"/channels/{self.channel_id}/messages",
            params={"after": str(cursor), "limit": limit},
        )
        if not isinstance(payload, list):
            raise SourceFailure("Discord message history is not a list")
        return [event_from_payload(item) for item in payload]

    def current_stream_head(self) -> Optional[int]:
        channel = self._request("GET", f"/channels/{self.channel_id}")
        if not isinstance(channel, dict):
            raise SourceFailure("Discord channel payload is not an object")
        last_message_id = channel.get("last_message_id")
        return int(last_message_id) if last_message_id else None

    def delete_event(self, event_id: int) -> None:
        self._request("DELETE", f"/channels/{self.channel_id}/messages/{event_id}")

    def subscribe(self, callback: Callable[[InboundEvent], None]) -> None:
        self._subscribers.append(callback)

    def dispatch(self, payload: Dict[str, Any]) -> None:
        event = event_from_payload(payload)
        if event.stream_id is not None and event.stream_id != self.channel_id:
            return
        for callback in self._subscribers:
            callback(event)

    # Membership source ------------------------------------------------
    def list_members_after(self, after: Optional[int], limit: int) -> List[Member]:
        params: Dict[str, Any] = {"limit": limit}
        if after is not None:
            params["after"] = str(after)
        payload = self._request("GET", f"/guilds/{self.guild_id}/members", params=params)
        if not isinstance(payload, list):
            raise SourceFailure("Discord member list is not a list")
        members = [member_from_payload(item) for item in payload]
        log_event("info", f"Fetched {len(members)} members after {after}")
        return members
