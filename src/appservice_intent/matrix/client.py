import asyncio
import itertools
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, TypeVar, runtime_checkable
from urllib.parse import quote

import httpx
from loguru import logger

from appservice_intent.core.models import SendEventResponse
from appservice_intent.core.settings import RequestLimitSettings, settings
from appservice_intent.core.types import EventType
from appservice_intent.matrix.errors import M_UNKNOWN, MatrixRequestError

R = TypeVar("R")

CLIENT_API = "/_matrix/client/v3"


@runtime_checkable
class RemoteClient(Protocol):
    """Homeserver operations performed as one user."""

    user_id: str

    async def register(self, localpart: str) -> None: ...

    async def join_room(self, room_id_or_alias: str) -> str:
        """Join a room and return the room ID the server resolved it to."""
        ...

    async def invite_user(self, room_id: str, user_id: str) -> None: ...

    async def send_message_event(
        self, room_id: str, event_type: EventType, content: Dict[str, Any], timestamp: Optional[int] = None
    ) -> SendEventResponse: ...

    async def send_state_event(
        self,
        room_id: str,
        event_type: EventType,
        state_key: str,
        content: Dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> SendEventResponse: ...

    async def state_event(self, room_id: str, event_type: EventType, state_key: str = "") -> Dict[str, Any]: ...

    async def redact_event(self, room_id: str, event_id: str, reason: Optional[str] = None) -> SendEventResponse: ...

    async def user_typing(self, room_id: str, typing: bool, timeout: int) -> None: ...

    async def set_display_name(self, display_name: str) -> None: ...

    async def set_avatar_url(self, avatar_url: str) -> None: ...


class RequestLimiter:
    def __init__(self, concurrency: int, intervals: Dict[str, float]) -> None:
        self._sem = asyncio.Semaphore(concurrency)
        self._intervals = intervals
        self._next_allowed: Dict[str, float] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _throttle(self, method: str) -> None:
        interval = self._intervals.get(method, self._intervals.get("default", 0))
        if interval <= 0:
            return
        lock = self._locks.get(method)
        if not lock:
            lock = asyncio.Lock()
            self._locks[method] = lock
        async with lock:
            now = asyncio.get_running_loop().time()
            next_allowed = self._next_allowed.get(method, 0.0)
            wait = next_allowed - now
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_allowed[method] = asyncio.get_running_loop().time() + interval

    async def run(self, method: str, fn: Callable[[], Awaitable[R]]) -> R:
        async with self._sem:
            await self._throttle(method)
            return await fn()

    @classmethod
    def from_settings(cls, limits: RequestLimitSettings) -> "RequestLimiter":
        intervals = {
            "default": limits.default_interval_seconds,
            "register": limits.register_interval_seconds,
            "join": limits.join_interval_seconds,
            "invite": limits.invite_interval_seconds,
            "message": limits.message_interval_seconds,
            "typing": limits.typing_interval_seconds,
        }
        return cls(limits.concurrency, intervals)


_txn_counter = itertools.count()


def _path(*segments: str) -> str:
    return "/" + "/".join(quote(s, safe="") for s in segments)


class MatrixHttpClient:
    """
    Client-server API client that acts as `user_id` by masquerading with the
    application service token.
    """

    def __init__(
        self,
        user_id: str,
        http: httpx.AsyncClient,
        base_url: Optional[str] = None,
        as_token: Optional[str] = None,
        limiter: Optional[RequestLimiter] = None,
    ) -> None:
        self.user_id = user_id
        self.http = http
        self.base_url = (base_url or settings.homeserver.url).rstrip("/")
        self.as_token = settings.homeserver.as_token if as_token is None else as_token
        self._limiter = limiter or RequestLimiter.from_settings(settings.limits)

    @staticmethod
    def _txn_id() -> str:
        return f"{int(time.time() * 1000)}.{next(_txn_counter)}"

    def _error_from(self, response: httpx.Response) -> MatrixRequestError:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        return MatrixRequestError(
            response.status_code,
            data.get("errcode", M_UNKNOWN),
            data.get("error") or response.reason_phrase,
        )

    async def _request(
        self,
        method: str,
        http_method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        masquerade: bool = True,
    ) -> Dict[str, Any]:
        query = dict(params or {})
        if masquerade:
            query["user_id"] = self.user_id

        async def _do() -> httpx.Response:
            return await self.http.request(
                http_method,
                f"{self.base_url}{CLIENT_API}{path}",
                json=json,
                params=query,
                headers={"Authorization": f"Bearer {self.as_token}"},
            )

        response = await self._limiter.run(method, _do)
        if response.status_code >= 400:
            err = self._error_from(response)
            logger.debug(f"{http_method} {path} as {self.user_id} failed: {err}")
            raise err
        if not response.content:
            return {}
        return response.json()

    async def register(self, localpart: str) -> None:
        logger.info(f"Registering {localpart}")
        await self._request(
            "register",
            "POST",
            "/register",
            json={"type": "m.login.application_service", "username": localpart},
            masquerade=False,
        )

    async def join_room(self, room_id_or_alias: str) -> str:
        data = await self._request("join", "POST", _path("join", room_id_or_alias), json={})
        return data["room_id"]

    async def invite_user(self, room_id: str, user_id: str) -> None:
        await self._request("invite", "POST", _path("rooms", room_id, "invite"), json={"user_id": user_id})

    async def send_message_event(
        self, room_id: str, event_type: EventType, content: Dict[str, Any], timestamp: Optional[int] = None
    ) -> SendEventResponse:
        params = {"ts": timestamp} if timestamp is not None else None
        data = await self._request(
            "message",
            "PUT",
            _path("rooms", room_id, "send", event_type.type, self._txn_id()),
            json=content,
            params=params,
        )
        return SendEventResponse.model_validate(data)

    async def send_state_event(
        self,
        room_id: str,
        event_type: EventType,
        state_key: str,
        content: Dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> SendEventResponse:
        params = {"ts": timestamp} if timestamp is not None else None
        data = await self._request(
            "state",
            "PUT",
            _path("rooms", room_id, "state", event_type.type, state_key),
            json=content,
            params=params,
        )
        return SendEventResponse.model_validate(data)

    async def state_event(self, room_id: str, event_type: EventType, state_key: str = "") -> Dict[str, Any]:
        return await self._request("state", "GET", _path("rooms", room_id, "state", event_type.type, state_key))

    async def redact_event(self, room_id: str, event_id: str, reason: Optional[str] = None) -> SendEventResponse:
        body = {"reason": reason} if reason else {}
        data = await self._request(
            "message",
            "PUT",
            _path("rooms", room_id, "redact", event_id, self._txn_id()),
            json=body,
        )
        return SendEventResponse.model_validate(data)

    async def user_typing(self, room_id: str, typing: bool, timeout: int) -> None:
        body: Dict[str, Any] = {"typing": typing}
        if typing:
            body["timeout"] = timeout
        await self._request("typing", "PUT", _path("rooms", room_id, "typing", self.user_id), json=body)

    async def set_display_name(self, display_name: str) -> None:
        await self._request(
            "profile", "PUT", _path("profile", self.user_id, "displayname"), json={"displayname": display_name}
        )

    async def set_avatar_url(self, avatar_url: str) -> None:
        await self._request(
            "profile", "PUT", _path("profile", self.user_id, "avatar_url"), json={"avatar_url": avatar_url}
        )
