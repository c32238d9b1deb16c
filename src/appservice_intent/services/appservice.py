from typing import Any, Dict, Optional

import httpx
from loguru import logger

from appservice_intent.core.settings import Settings, settings as default_settings
from appservice_intent.matrix.client import MatrixHttpClient, RequestLimiter
from appservice_intent.services.intent import IntentAPI
from appservice_intent.store.base import StateStore, update_state
from appservice_intent.store.flatfile import FlatFileStateStore
from appservice_intent.store.memory import MemoryStateStore
from appservice_intent.utils.normalize import make_user_id, normalize_localpart


def build_state_store(settings: Settings) -> StateStore:
    if settings.state_store.path is None:
        return MemoryStateStore()
    return FlatFileStateStore(settings.state_store.path)


class AppService:
    """Owns the state store and HTTP connection pool shared by every intent."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[StateStore] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.store = store if store is not None else build_state_store(self.settings)
        self.http = http or httpx.AsyncClient(timeout=self.settings.homeserver.timeout_seconds)
        self.domain = self.settings.homeserver.domain
        self.bot_user_id = make_user_id(self.settings.bot.localpart, self.domain)
        self._limiter = RequestLimiter.from_settings(self.settings.limits)
        self._intents: Dict[str, IntentAPI] = {}

    async def stop(self) -> None:
        await self.http.aclose()
        logger.info("Homeserver HTTP client closed")

    def client(self, user_id: str) -> MatrixHttpClient:
        return MatrixHttpClient(
            user_id,
            self.http,
            base_url=self.settings.homeserver.url,
            as_token=self.settings.homeserver.as_token,
            limiter=self._limiter,
        )

    def intent(self, localpart: str) -> IntentAPI:
        normalized = normalize_localpart(localpart)
        if not normalized:
            raise ValueError(f"Invalid localpart: {localpart!r}")
        user_id = make_user_id(normalized, self.domain)
        intent = self._intents.get(user_id)
        if intent is None:
            # The bot can't invite itself.
            bot = None if user_id == self.bot_user_id else self.client(self.bot_user_id)
            intent = IntentAPI(normalized, user_id, self.client(user_id), self.store, bot=bot)
            self._intents[user_id] = intent
        return intent

    def bot_intent(self) -> IntentAPI:
        return self.intent(self.settings.bot.localpart)

    def update_state(self, event: Dict[str, Any]) -> bool:
        return update_state(self.store, event)
