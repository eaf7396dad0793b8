"""Tests for BlockService."""

from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay.core.errors import ConflictError, NotFoundError, StorageError, ValidationError
from sos_relay.models import BlockedSender
from sos_relay.services.block_service import BlockService
from tests.helpers.factories import SUPERADMIN_EMAIL, make_block


@pytest.fixture
def block_service(db_session: AsyncSession) -> BlockService:
    return BlockService(db_session)


class TestBlock:
    async def test_block_new_sender(self, block_service: BlockService, db_session: AsyncSession) -> None:
        entry = await block_service.block("sender-a", "prank calls", blocked_by=SUPERADMIN_EMAIL)

        assert entry.blocked is True
        assert entry.reason == "prank calls"
        assert entry.blocked_by == SUPERADMIN_EMAIL
        assert entry.blocked_at is not None
        assert await db_session.get(BlockedSender, "sender-a") is entry

    async def test_reason_defaults(self, block_service: BlockService) -> None:
        entry = await block_service.block("sender-a", None, blocked_by="cli")

        assert entry.reason == "No reason provided"

    async def test_sender_id_is_stripped(self, block_service: BlockService) -> None:
        entry = await block_service.block("  sender-a ", "x", blocked_by="cli")

        assert entry.sender_id == "sender-a"

    async def test_already_blocked_conflicts(self, block_service: BlockService, db_session: AsyncSession) -> None:
        await make_block(db_session, "sender-a")

        with pytest.raises(ConflictError, match="User is already blocked"):
            await block_service.block("sender-a", "again", blocked_by="cli")

    async def test_concurrent_insert_conflicts(self, block_service: BlockService, db_session: AsyncSession) -> None:
        # Another writer inserts the row after our read saw nothing
        await db_session.execute(
            text(
                "INSERT INTO blocked_senders (sender_id, blocked, reason, blocked_by, blocked_at) "
                "VALUES ('sender-a', 1, 'other admin', 'cli', '2026-01-01 00:00:00')"
            )
        )

        with (
            patch.object(db_session, "get", AsyncMock(return_value=None)),
            pytest.raises(ConflictError, match="User is already blocked"),
        ):
            await block_service.block("sender-a", "again", blocked_by="cli")

        # Rolled back, so the session still accepts writes
        entry = await block_service.block("sender-b", None, blocked_by="cli")
        assert entry.blocked is True

    async def test_inactive_entry_is_reused(self, block_service: BlockService, db_session: AsyncSession) -> None:
        await make_block(db_session, "sender-a", blocked=False)

        entry = await block_service.block("sender-a", "relapse", blocked_by="cli")

        assert entry.blocked is True
        assert entry.reason == "relapse"

    async def test_blank_sender_rejected(self, block_service: BlockService) -> None:
        with pytest.raises(ValidationError):
            await block_service.block("   ", None, blocked_by="cli")

    async def test_storage_failure(self, block_service: BlockService, db_session: AsyncSession) -> None:
        with (
            patch.object(db_session, "commit", AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception()))),
            patch.object(db_session, "rollback", AsyncMock()),
            pytest.raises(StorageError, match="Failed to block user"),
        ):
            await block_service.block("sender-a", None, blocked_by="cli")


class TestUnblock:
    async def test_unblock_removes_entry(self, block_service: BlockService, db_session: AsyncSession) -> None:
        await make_block(db_session, "sender-a")

        await block_service.unblock("sender-a", unblocked_by="cli")

        assert await block_service.list_blocked() == []

    async def test_unblock_unknown_sender(self, block_service: BlockService) -> None:
        with pytest.raises(NotFoundError, match="User is not blocked"):
            await block_service.unblock("sender-a", unblocked_by="cli")

    async def test_unblock_inactive_entry(self, block_service: BlockService, db_session: AsyncSession) -> None:
        await make_block(db_session, "sender-a", blocked=False)

        with pytest.raises(NotFoundError):
            await block_service.unblock("sender-a", unblocked_by="cli")


class TestListing:
    async def test_list_blocked_skips_inactive_entries(
        self, block_service: BlockService, db_session: AsyncSession
    ) -> None:
        await make_block(db_session, "sender-a")
        await make_block(db_session, "sender-b", blocked=False)

        entries = await block_service.list_blocked()

        assert [e.sender_id for e in entries] == ["sender-a"]

    async def test_blocked_sender_ids(self, block_service: BlockService, db_session: AsyncSession) -> None:
        await make_block(db_session, "sender-a")
        await make_block(db_session, "sender-b", blocked=False)

        assert await block_service.blocked_sender_ids(["sender-a", "sender-b", "sender-c"]) == {"sender-a"}
        assert await block_service.blocked_sender_ids([]) == set()
