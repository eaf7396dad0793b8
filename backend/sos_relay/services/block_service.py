"""Block-list management for senders."""

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.errors import ConflictError, NotFoundError, StorageError, ValidationError
from sos_relay.models.base import utcnow
from sos_relay.models.block import BlockedSender

logger = structlog.get_logger(__name__)


class BlockService:
    """Create, remove and list block entries."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def block(self, sender_id: str, reason: str | None, blocked_by: str) -> BlockedSender:
        """
        Block a sender from raising alerts.

        An existing entry with ``blocked=False`` is re-used.

        Raises:
            ValidationError: If sender_id is blank
            ConflictError: If the sender is already blocked
        """
        sender_id = (sender_id or "").strip()
        if not sender_id:
            raise ValidationError("sender_id is required")

        try:
            entry = await self.db.get(BlockedSender, sender_id)
            if entry is not None and entry.blocked:
                raise ConflictError("User is already blocked")

            if entry is None:
                entry = BlockedSender(sender_id=sender_id)
                self.db.add(entry)
            entry.blocked = True
            entry.reason = reason or "No reason provided"
            entry.blocked_by = blocked_by
            entry.blocked_at = utcnow()

            await self.db.commit()
        except IntegrityError as e:
            # A concurrent block inserted the row between our read and commit
            await self.db.rollback()
            logger.warning("block_sender_conflict", sender_id=sender_id, error=str(e))
            raise ConflictError("User is already blocked") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("block_sender_failed", sender_id=sender_id, error=str(e))
            raise StorageError("Failed to block user") from e

        logger.info("sender_blocked", sender_id=sender_id, blocked_by=blocked_by)
        return entry

    async def unblock(self, sender_id: str, unblocked_by: str) -> None:
        """
        Remove a sender's block entry.

        Raises:
            ValidationError: If sender_id is blank
            NotFoundError: If the sender is not currently blocked
        """
        sender_id = (sender_id or "").strip()
        if not sender_id:
            raise ValidationError("sender_id is required")

        try:
            entry = await self.db.get(BlockedSender, sender_id)
            if entry is None or not entry.blocked:
                raise NotFoundError("User is not blocked")

            await self.db.delete(entry)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("unblock_sender_failed", sender_id=sender_id, error=str(e))
            raise StorageError("Failed to unblock user") from e

        logger.info("sender_unblocked", sender_id=sender_id, unblocked_by=unblocked_by)

    async def list_blocked(self) -> list[BlockedSender]:
        """All block entries, most recently blocked first."""
        try:
            result = await self.db.execute(
                select(BlockedSender).where(BlockedSender.blocked == True).order_by(BlockedSender.blocked_at.desc())  # noqa: E712
            )
        except SQLAlchemyError as e:
            logger.error("blocked_listing_failed", error=str(e))
            raise StorageError("Failed to list blocked users") from e
        return list(result.scalars().all())

    async def blocked_sender_ids(self, sender_ids: list[str]) -> set[str]:
        """Subset of the given senders that are currently blocked."""
        if not sender_ids:
            return set()
        result = await self.db.execute(
            select(BlockedSender.sender_id).where(
                BlockedSender.sender_id.in_(sender_ids),
                BlockedSender.blocked == True,  # noqa: E712
            )
        )
        return set(result.scalars().all())
