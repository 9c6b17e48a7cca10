# relayq/collaborators/store_sql.py
"""SQLAlchemy (async) implementation of the Store interface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from relayq.core.errors import RecordNotFound
from relayq.core.logging import get_logger
from relayq.core.models.domain import (
    GagMeme,
    GagMemeType,
    Mail,
    SecretMessageNode,
    SecretMessagingSession,
    SiakadProfilePicture,
    Subscription,
    SubscriptionChannel,
    SubscriptionType,
    TelegramUser,
)
from relayq.core.types.status import MailStatus

logger = get_logger('store')


class StoreBase(DeclarativeBase):
    """Declarative base for the application tables (separate from the task table)"""

    pass


class TelegramUserRow(StoreBase):
    __tablename__ = 'telegram_users'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    is_bot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    username: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    language_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    is_premium: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SessionRow(StoreBase):
    __tablename__ = 'secret_messaging_sessions'
    __table_args__ = (
        Index('idx_secret_messaging_sessions_users', 'sender_id', 'target_id'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    sender_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    target_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class MessageNodeRow(StoreBase):
    __tablename__ = 'secret_message_nodes'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey('secret_messaging_sessions.id'), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default='')
    previous_node_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey('secret_message_nodes.id'), nullable=True
    )


class MailRow(StoreBase):
    __tablename__ = 'mails'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    to: Mapped[str] = mapped_column('to', Text, nullable=False)
    cc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    bcc: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    html_content: Mapped[str] = mapped_column(Text, nullable=False)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[MailStatus] = mapped_column(
        SQLAlchemyEnum(MailStatus, native_enum=False), nullable=False
    )
    metadata_: Mapped[Optional[str]] = mapped_column('metadata', Text, nullable=True)


class ProfilePictureRow(StoreBase):
    __tablename__ = 'siakad_profile_pictures'

    npm: Mapped[str] = mapped_column(String(32), primary_key=True)
    image_path: Mapped[str] = mapped_column(Text, nullable=False)
    mimetype: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class GagMemeRow(StoreBase):
    __tablename__ = 'gag_memes'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_url: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[GagMemeType] = mapped_column(
        SQLAlchemyEnum(GagMemeType, native_enum=False), nullable=False
    )
    media_url: Mapped[str] = mapped_column(Text, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)


class SubscriptionRow(StoreBase):
    __tablename__ = 'subscriptions'
    __table_args__ = (Index('idx_subscriptions_type_channel', 'type', 'channel'),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[SubscriptionType] = mapped_column(
        SQLAlchemyEnum(SubscriptionType, native_enum=False), nullable=False
    )
    channel: Mapped[SubscriptionChannel] = mapped_column(
        SQLAlchemyEnum(SubscriptionChannel, native_enum=False), nullable=False
    )
    user_reference_id: Mapped[str] = mapped_column(Text, nullable=False)


class SqlStore:
    """Store backed by a SQLAlchemy async engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs: Any) -> SqlStore:
        return cls(create_async_engine(database_url, **engine_kwargs))

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(StoreBase.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    async def _get(self, model: type[Any], key: Any, entity: str) -> Any:
        async with self.session_factory() as session:
            row = await session.get(model, key)
        if row is None:
            raise RecordNotFound(entity, key)
        return row

    # ----- users -----

    async def create_user(self, user: TelegramUser) -> None:
        async with self.session_factory() as session:
            session.add(TelegramUserRow(**user.model_dump()))
            await session.commit()

    async def find_user_by_id(self, user_id: int) -> TelegramUser:
        row = await self._get(TelegramUserRow, user_id, 'telegram user')
        return TelegramUser.model_validate(row, from_attributes=True)

    async def activate_user(self, user_id: int) -> None:
        async with self.session_factory() as session:
            result = await session.execute(
                update(TelegramUserRow)
                .where(TelegramUserRow.id == user_id)
                .values(is_active=True)
            )
            await session.commit()
        if result.rowcount == 0:
            raise RecordNotFound('telegram user', user_id)

    # ----- sessions -----

    async def create_session(self, session: SecretMessagingSession) -> None:
        async with self.session_factory() as db:
            db.add(SessionRow(**session.model_dump()))
            await db.commit()

    async def find_session_by_id(self, session_id: str) -> SecretMessagingSession:
        row = await self._get(SessionRow, session_id, 'secret messaging session')
        return SecretMessagingSession.model_validate(row, from_attributes=True)

    async def find_session_by_users(
        self, sender_id: int, target_id: int
    ) -> SecretMessagingSession:
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(SessionRow)
                    .where(
                        SessionRow.sender_id == sender_id,
                        SessionRow.target_id == target_id,
                    )
                    .order_by(SessionRow.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
        if row is None:
            raise RecordNotFound('secret messaging session', (sender_id, target_id))
        return SecretMessagingSession.model_validate(row, from_attributes=True)

    async def block_session_by_id(self, session_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(SessionRow)
                .where(SessionRow.id == session_id)
                .values(is_blocked=True)
            )
            await session.commit()

    # ----- message nodes -----

    async def create_message_node(self, node: SecretMessageNode) -> None:
        async with self.session_factory() as session:
            if await session.get(MessageNodeRow, node.id) is not None:
                logger.info(f'Message node {node.id} already stored, skipping')
                return
            if (
                node.previous_node_id is not None
                and await session.get(MessageNodeRow, node.previous_node_id) is None
            ):
                raise RecordNotFound('secret message node', node.previous_node_id)
            session.add(MessageNodeRow(**node.model_dump()))
            await session.commit()

    async def find_message_node_by_id(self, node_id: int) -> SecretMessageNode:
        row = await self._get(MessageNodeRow, node_id, 'secret message node')
        return SecretMessageNode.model_validate(row, from_attributes=True)

    # ----- mail -----

    async def update_mail(self, mail: Mail) -> None:
        values = mail.model_dump(exclude={'id', 'metadata'})
        values['metadata_'] = mail.metadata
        async with self.session_factory() as session:
            result = await session.execute(
                update(MailRow).where(MailRow.id == mail.id).values(**values)
            )
            await session.commit()
        if result.rowcount == 0:
            raise RecordNotFound('mail', mail.id)

    # ----- siakad -----

    async def find_profile_picture(self, npm: str) -> SiakadProfilePicture:
        row = await self._get(ProfilePictureRow, npm, 'siakad profile picture')
        return SiakadProfilePicture.model_validate(row, from_attributes=True)

    async def create_profile_picture(self, picture: SiakadProfilePicture) -> None:
        async with self.session_factory() as session:
            session.add(ProfilePictureRow(**picture.model_dump()))
            await session.commit()

    # ----- memes and subscriptions -----

    async def find_random_meme(self) -> GagMeme:
        async with self.session_factory() as session:
            row = (
                await session.execute(
                    select(GagMemeRow).order_by(func.random()).limit(1)
                )
            ).scalar_one_or_none()
        if row is None:
            raise RecordNotFound('gag meme', 'random')
        return GagMeme.model_validate(row, from_attributes=True)

    async def find_subscriptions(
        self,
        type: SubscriptionType,
        channel: SubscriptionChannel,
        limit: int,
        offset: int,
    ) -> list[Subscription]:
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(SubscriptionRow)
                    .where(SubscriptionRow.type == type, SubscriptionRow.channel == channel)
                    .order_by(SubscriptionRow.id)
                    .limit(limit)
                    .offset(offset)
                )
            ).scalars()
            return [Subscription.model_validate(row, from_attributes=True) for row in rows]
