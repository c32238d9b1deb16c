from typing import Any, Dict, Optional
from loguru import logger

from appservice_intent.core.models import PowerLevels, SendEventResponse
from appservice_intent.core.types import (
    EVENT_MESSAGE,
    STATE_POWER_LEVELS,
    STATE_ROOM_AVATAR,
    STATE_ROOM_NAME,
    STATE_TOPIC,
    EventType,
    Membership,
    MessageType,
)
from appservice_intent.matrix.client import RemoteClient
from appservice_intent.matrix.errors import M_FORBIDDEN, M_USER_IN_USE, has_errcode
from appservice_intent.store.base import StateStore

NOT_TYPING_TIMEOUT = -1


class IntentAPI:
    """
    Acts as one puppet user. Every call that needs the user to exist or to be
    in a room checks the state store first and only talks to the homeserver
    when the store can't confirm it.
    """

    def __init__(
        self,
        localpart: str,
        user_id: str,
        client: RemoteClient,
        store: StateStore,
        bot: Optional[RemoteClient] = None,
    ) -> None:
        self.localpart = localpart
        self.user_id = user_id
        self.client = client
        self.store = store
        self.bot = bot

    async def register(self) -> None:
        await self.client.register(self.localpart)

    async def ensure_registered(self) -> None:
        if self.store.is_registered(self.user_id):
            return

        try:
            await self.register()
        except Exception as e:
            if not has_errcode(e, M_USER_IN_USE):
                raise
            logger.debug(f"{self.user_id} was already registered")
        self.store.mark_registered(self.user_id)

    async def ensure_joined(self, room_id: str) -> None:
        if self.store.is_in_room(room_id, self.user_id):
            return

        await self.ensure_registered()

        try:
            resolved_room_id = await self.client.join_room(room_id)
        except Exception as e:
            if not has_errcode(e, M_FORBIDDEN) or self.bot is None:
                raise
            logger.info(f"Join of {room_id} forbidden for {self.user_id}, inviting with bot")
            try:
                await self.bot.invite_user(room_id, self.user_id)
            except Exception as invite_err:
                logger.warning(f"Bot failed to invite {self.user_id} to {room_id}: {invite_err}")
                raise e
            resolved_room_id = await self.client.join_room(room_id)

        self.store.set_membership(resolved_room_id, self.user_id, Membership.JOIN)

    async def ensure_invited(self, room_id: str, user_id: str) -> None:
        if self.store.is_invited(room_id, user_id):
            return
        await self.client.invite_user(room_id, user_id)

    async def send_message_event(self, room_id: str, event_type: EventType, content: Dict[str, Any]) -> SendEventResponse:
        await self.ensure_joined(room_id)
        return await self.client.send_message_event(room_id, event_type, content)

    async def send_massaged_message_event(
        self, room_id: str, event_type: EventType, content: Dict[str, Any], timestamp: int
    ) -> SendEventResponse:
        await self.ensure_joined(room_id)
        return await self.client.send_message_event(room_id, event_type, content, timestamp=timestamp)

    async def send_state_event(
        self, room_id: str, event_type: EventType, state_key: str, content: Dict[str, Any]
    ) -> SendEventResponse:
        await self.ensure_joined(room_id)
        return await self.client.send_state_event(room_id, event_type, state_key, content)

    async def send_massaged_state_event(
        self, room_id: str, event_type: EventType, state_key: str, content: Dict[str, Any], timestamp: int
    ) -> SendEventResponse:
        await self.ensure_joined(room_id)
        return await self.client.send_state_event(room_id, event_type, state_key, content, timestamp=timestamp)

    async def state_event(self, room_id: str, event_type: EventType, state_key: str = "") -> Dict[str, Any]:
        await self.ensure_joined(room_id)
        return await self.client.state_event(room_id, event_type, state_key)

    async def power_levels(self, room_id: str) -> PowerLevels:
        levels = self.store.get_power_levels(room_id)
        if levels is not None:
            return levels
        content = await self.state_event(room_id, STATE_POWER_LEVELS)
        levels = PowerLevels.model_validate(content)
        self.store.set_power_levels(room_id, levels)
        return levels

    async def set_power_levels(self, room_id: str, levels: PowerLevels) -> SendEventResponse:
        resp = await self.send_state_event(room_id, STATE_POWER_LEVELS, "", levels.to_content())
        self.store.set_power_levels(room_id, levels)
        return resp

    async def set_power_level(self, room_id: str, user_id: str, level: int) -> Optional[SendEventResponse]:
        """
        Returns None without contacting the homeserver when `user_id` is
        already at `level`.
        """
        levels = await self.power_levels(room_id)
        if levels.get_user_level(user_id) == level:
            return None
        levels.set_user_level(user_id, level)
        return await self.set_power_levels(room_id, levels)

    async def user_typing(self, room_id: str, typing: bool, timeout: int) -> None:
        if self.store.is_typing(room_id, self.user_id) == typing:
            return
        await self.ensure_joined(room_id)
        await self.client.user_typing(room_id, typing, timeout)
        self.store.set_typing(room_id, self.user_id, timeout if typing else NOT_TYPING_TIMEOUT)

    async def _send_msgtype(self, room_id: str, msgtype: MessageType, body: str, url: Optional[str] = None) -> SendEventResponse:
        content: Dict[str, Any] = {"msgtype": msgtype.value, "body": body}
        if url is not None:
            content["url"] = url
        return await self.send_message_event(room_id, EVENT_MESSAGE, content)

    async def send_text(self, room_id: str, text: str) -> SendEventResponse:
        return await self._send_msgtype(room_id, MessageType.TEXT, text)

    async def send_notice(self, room_id: str, text: str) -> SendEventResponse:
        return await self._send_msgtype(room_id, MessageType.NOTICE, text)

    async def send_image(self, room_id: str, body: str, url: str) -> SendEventResponse:
        return await self._send_msgtype(room_id, MessageType.IMAGE, body, url)

    async def send_video(self, room_id: str, body: str, url: str) -> SendEventResponse:
        return await self._send_msgtype(room_id, MessageType.VIDEO, body, url)

    async def redact_event(self, room_id: str, event_id: str, reason: Optional[str] = None) -> SendEventResponse:
        await self.ensure_joined(room_id)
        return await self.client.redact_event(room_id, event_id, reason)

    async def set_room_name(self, room_id: str, name: str) -> SendEventResponse:
        return await self.send_state_event(room_id, STATE_ROOM_NAME, "", {"name": name})

    async def set_room_avatar(self, room_id: str, avatar_url: str) -> SendEventResponse:
        return await self.send_state_event(room_id, STATE_ROOM_AVATAR, "", {"url": avatar_url})

    async def set_room_topic(self, room_id: str, topic: str) -> SendEventResponse:
        return await self.send_state_event(room_id, STATE_TOPIC, "", {"topic": topic})

    async def set_display_name(self, display_name: str) -> None:
        await self.ensure_registered()
        await self.client.set_display_name(display_name)

    async def set_avatar_url(self, avatar_url: str) -> None:
        await self.ensure_registered()
        await self.client.set_avatar_url(avatar_url)
