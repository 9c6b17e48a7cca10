# relayq/collaborators/store.py
"""
Persistent store interface.

Lookups raise `RecordNotFound` when the record does not exist; every other
exception is an operational failure of the backend.
"""

from __future__ import annotations

from typing import Protocol

from relayq.core.models.domain import (
    GagMeme,
    Mail,
    SecretMessageNode,
    SecretMessagingSession,
    SiakadProfilePicture,
    Subscription,
    SubscriptionChannel,
    SubscriptionType,
    TelegramUser,
)


class Store(Protocol):
    # ----- users -----

    async def create_user(self, user: TelegramUser) -> None: ...

    async def find_user_by_id(self, user_id: int) -> TelegramUser: ...

    async def activate_user(self, user_id: int) -> None: ...

    # ----- sessions -----

    async def create_session(self, session: SecretMessagingSession) -> None: ...

    async def find_session_by_id(self, session_id: str) -> SecretMessagingSession: ...

    async def find_session_by_users(
        self, sender_id: int, target_id: int
    ) -> SecretMessagingSession:
        """Most recent session from `sender_id` to `target_id`."""
        ...

    async def block_session_by_id(self, session_id: str) -> None: ...

    # ----- message nodes -----

    async def create_message_node(self, node: SecretMessageNode) -> None:
        """
        Append a node. A node whose id already exists is accepted as a replay;
        a `previous_node_id` that does not exist yet raises RecordNotFound.
        """
        ...

    async def find_message_node_by_id(self, node_id: int) -> SecretMessageNode: ...

    # ----- mail -----

    async def update_mail(self, mail: Mail) -> None: ...

    # ----- siakad -----

    async def find_profile_picture(self, npm: str) -> SiakadProfilePicture: ...

    async def create_profile_picture(self, picture: SiakadProfilePicture) -> None: ...

    # ----- memes and subscriptions -----

    async def find_random_meme(self) -> GagMeme: ...

    async def find_subscriptions(
        self,
        type: SubscriptionType,
        channel: SubscriptionChannel,
        limit: int,
        offset: int,
    ) -> list[Subscription]: ...
