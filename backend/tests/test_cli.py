"""Tests for the operator CLI.

Command handlers run against the in-memory database; ``main`` is tested with
the session factory and handlers mocked, since it owns its own event loop.
"""

import argparse
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sos_relay import cli
from sos_relay.celery.tasks import EXPIRY_LOCK_KEY
from sos_relay.cli import (
    build_parser,
    cmd_block_sender,
    cmd_expire_alerts,
    cmd_list_admins,
    cmd_list_alerts,
    cmd_unblock_sender,
    main,
)
from sos_relay.core.errors import ConflictError
from sos_relay.models import AdminAccount, BlockedSender, SosAlert
from tests.helpers.factories import ADMIN_EMAIL, make_alert, make_block
from tests.helpers.fake_redis import FakeRedis


async def test_cmd_expire_alerts(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    await make_alert(db_session, "sender-stale", age=timedelta(hours=2))

    exit_code = await cmd_expire_alerts(argparse.Namespace(threshold=60, no_lock=True), db_session)

    assert exit_code == 0
    assert "Expired 1 alert(s)" in capsys.readouterr().out
    result = await db_session.execute(
        select(SosAlert).where(SosAlert.sender_id == "sender-stale").execution_options(populate_existing=True)
    )
    assert result.scalar_one().active is False


async def test_cmd_expire_alerts_nothing_stale(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = await cmd_expire_alerts(argparse.Namespace(threshold=None, no_lock=True), db_session)

    assert exit_code == 0
    assert "No stale alerts" in capsys.readouterr().out


async def test_cmd_expire_alerts_zero_threshold(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    await make_alert(db_session, "sender-fresh", age=timedelta(seconds=5))

    exit_code = await cmd_expire_alerts(argparse.Namespace(threshold=0, no_lock=True), db_session)

    assert exit_code == 0
    assert "idle for more than 0 min" in capsys.readouterr().out


async def test_cmd_expire_alerts_takes_sweep_lock(
    db_session: AsyncSession, capsys: pytest.CaptureFixture[str]
) -> None:
    await make_alert(db_session, "sender-stale", age=timedelta(hours=2))
    fake_redis = FakeRedis()

    with patch.object(cli.redis.asyncio, "from_url", return_value=fake_redis):
        exit_code = await cmd_expire_alerts(argparse.Namespace(threshold=60, no_lock=False), db_session)

    assert exit_code == 0
    assert "Expired 1 alert(s)" in capsys.readouterr().out
    assert fake_redis.ttls[EXPIRY_LOCK_KEY] is not None
    assert EXPIRY_LOCK_KEY not in fake_redis.store
    assert fake_redis.closed is True


async def test_cmd_expire_alerts_lock_held(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    await make_alert(db_session, "sender-stale", age=timedelta(hours=2))
    fake_redis = FakeRedis()
    fake_redis.store[EXPIRY_LOCK_KEY] = "worker-token"

    with patch.object(cli.redis.asyncio, "from_url", return_value=fake_redis):
        exit_code = await cmd_expire_alerts(argparse.Namespace(threshold=60, no_lock=False), db_session)

    assert exit_code == 1
    assert "Another expiry sweep is running" in capsys.readouterr().err
    assert fake_redis.store[EXPIRY_LOCK_KEY] == "worker-token"
    assert fake_redis.closed is True
    alert = await db_session.get(SosAlert, "sender-stale")
    assert alert is not None
    assert alert.active is True


async def test_cmd_block_sender(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    args = argparse.Namespace(sender_id="sender-a", reason="abuse", by="cli")

    exit_code = await cmd_block_sender(args, db_session)

    assert exit_code == 0
    assert "Blocked sender-a (abuse)" in capsys.readouterr().out
    entry = await db_session.get(BlockedSender, "sender-a")
    assert entry is not None
    assert entry.blocked_by == "cli"


async def test_cmd_block_sender_twice_raises(db_session: AsyncSession) -> None:
    await make_block(db_session, "sender-a")

    with pytest.raises(ConflictError):
        await cmd_block_sender(argparse.Namespace(sender_id="sender-a", reason=None, by="cli"), db_session)


async def test_cmd_unblock_sender(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    await make_block(db_session, "sender-a")

    exit_code = await cmd_unblock_sender(argparse.Namespace(sender_id="sender-a", by="cli"), db_session)

    assert exit_code == 0
    assert "Unblocked sender-a" in capsys.readouterr().out


async def test_cmd_list_alerts(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    await make_alert(db_session, "sender-live")
    await make_alert(db_session, "sender-done", active=False)

    exit_code = await cmd_list_alerts(argparse.Namespace(active=True), db_session)

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "Found 1 alert(s)" in output
    assert "sender-live" in output
    assert "sender-done" not in output


async def test_cmd_list_alerts_empty(db_session: AsyncSession, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = await cmd_list_alerts(argparse.Namespace(active=None), db_session)

    assert exit_code == 0
    assert "No alerts found" in capsys.readouterr().out


async def test_cmd_list_admins(
    db_session: AsyncSession, udupi_admin: AdminAccount, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = await cmd_list_admins(argparse.Namespace(), db_session)

    output = capsys.readouterr().out
    assert exit_code == 0
    assert ADMIN_EMAIL in output
    assert "udupi" in output


class TestParser:
    def test_list_alerts_state_flags(self) -> None:
        parser = build_parser()

        assert parser.parse_args(["list-alerts"]).active is None
        assert parser.parse_args(["list-alerts", "--active"]).active is True
        assert parser.parse_args(["list-alerts", "--inactive"]).active is False

    def test_block_sender_defaults(self) -> None:
        args = build_parser().parse_args(["block-sender", "sender-a"])

        assert args.sender_id == "sender-a"
        assert args.reason is None
        assert args.by == "cli"

    def test_expire_threshold(self) -> None:
        assert build_parser().parse_args(["expire-alerts", "--threshold", "15"]).threshold == 15

    def test_expire_lock_flag(self) -> None:
        parser = build_parser()

        assert parser.parse_args(["expire-alerts"]).no_lock is False
        assert parser.parse_args(["expire-alerts", "--no-lock"]).no_lock is True


class TestMain:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_dispatches_to_handler(self) -> None:
        handler = AsyncMock(return_value=0)

        with (
            patch.object(cli, "get_session_factory", return_value=MagicMock()),
            patch.dict(cli.COMMAND_HANDLERS, {"list-admins": handler}),
        ):
            assert main(["list-admins"]) == 0

        handler.assert_awaited_once()

    def test_relay_errors_become_exit_code_1(self, capsys: pytest.CaptureFixture[str]) -> None:
        handler = AsyncMock(side_effect=ConflictError("User is already blocked"))

        with (
            patch.object(cli, "get_session_factory", return_value=MagicMock()),
            patch.dict(cli.COMMAND_HANDLERS, {"block-sender": handler}),
        ):
            assert main(["block-sender", "sender-a"]) == 1

        assert "User is already blocked" in capsys.readouterr().err
