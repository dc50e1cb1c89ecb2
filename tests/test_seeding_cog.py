"""
tests/test_seeding_cog.py — Seeding Slash Commands & Embeds
============================================================
Calls the command callbacks directly with mocked interactions.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest
from discord import app_commands

from conftest import run_async
from seedcall.bot.cogs.seeding import Seeding
from seedcall.engine.rewards import RewardSpec, TierRewards
from seedcall.services import participant_service, session_service
from seedcall.services.embeds import build_session_embed, build_teardown_embed
from seedcall.services.errors import SessionStillActiveError, TeardownResult
from seedcall.services.session_service import SessionRequest

ADMIN_ROLE = 555


def _make_bot(engine=None):
    bot = MagicMock()
    bot.cfg = SimpleNamespace(admin_role_id=ADMIN_ROLE)
    bot.engine = engine
    bot.orchestrator = MagicMock()
    bot.orchestrator.get_active_session = AsyncMock(return_value=None)
    bot.orchestrator.close_session = AsyncMock()
    bot.orchestrator.cancel_session = AsyncMock()
    bot.orchestrator.active_session = None
    return bot


def _make_interaction(bot, role_ids=(ADMIN_ROLE,)):
    interaction = MagicMock()
    interaction.client = bot
    interaction.user = SimpleNamespace(id=42, roles=[SimpleNamespace(id=r) for r in role_ids])
    interaction.response.send_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.response.is_done.return_value = False
    interaction.followup.send = AsyncMock()
    return interaction


def _session_row(engine):
    return session_service.create_session(
        engine,
        SessionRequest(
            target_node_id="server2",
            player_threshold=50,
            rewards=TierRewards(
                switch=RewardSpec(1, "days"),
                playtime=RewardSpec(2, "hours"),
                playtime_threshold_minutes=30,
            ),
        ),
        source_node_ids=["server1", "server3"],
        target_node_name="Server 2",
        started_by_name="drew",
    )


# ===========================================================================
# Admin check
# ===========================================================================
class TestIsAdmin:
    def test_role_required(self):
        bot = _make_bot()
        predicate = Seeding.seeding_status.checks[0]
        assert run_async(predicate(_make_interaction(bot))) is True
        assert run_async(predicate(_make_interaction(bot, role_ids=(1, 2)))) is False


# ===========================================================================
# Commands
# ===========================================================================
class TestCommands:
    def test_status_idle(self):
        bot = _make_bot()
        cog = Seeding(bot)
        interaction = _make_interaction(bot)

        run_async(Seeding.seeding_status.callback(cog, interaction))
        embed = interaction.response.send_message.await_args.kwargs["embed"]
        assert embed.title.endswith("No active seeding session")

    def test_status_with_session(self, db_engine):
        row = _session_row(db_engine)
        participant_service.enroll_seeder(db_engine, row.id, "765")
        bot = _make_bot(db_engine)
        bot.orchestrator.get_active_session.return_value = row
        cog = Seeding(bot)
        interaction = _make_interaction(bot)

        run_async(Seeding.seeding_status.callback(cog, interaction))
        embed = interaction.response.send_message.await_args.kwargs["embed"]
        fields = {f.name: f.value for f in embed.fields}
        assert "Server 2" in embed.title
        assert fields["Participants"].startswith("1 total · 1 on target")
        assert fields["Source nodes"] == "server1, server3"
        assert "+2hr after 30min" in fields["Rewards"]

    def test_close_without_session(self):
        bot = _make_bot()
        interaction = _make_interaction(bot)
        run_async(Seeding.seeding_close.callback(Seeding(bot), interaction))
        assert "no active seeding session" in interaction.response.send_message.await_args.args[0]
        bot.orchestrator.close_session.assert_not_awaited()

    def test_close_defers_then_reports(self):
        bot = _make_bot()
        bot.orchestrator.active_session = SimpleNamespace(id=5)
        bot.orchestrator.close_session.return_value = TeardownResult(True, "Session 5 closed", 5, 3)
        interaction = _make_interaction(bot)

        run_async(Seeding.seeding_close.callback(Seeding(bot), interaction))
        interaction.response.defer.assert_awaited_once()
        bot.orchestrator.close_session.assert_awaited_once_with(5, "manual")
        embed = interaction.followup.send.await_args.kwargs["embed"]
        assert "3 completion reward(s)" in embed.description

    def test_cancel_passes_actor_and_reason(self):
        bot = _make_bot()
        bot.orchestrator.active_session = SimpleNamespace(id=5)
        bot.orchestrator.cancel_session.return_value = TeardownResult(True, "cancelled", 5)
        interaction = _make_interaction(bot)

        run_async(Seeding.seeding_cancel.callback(Seeding(bot), interaction, "restart"))
        bot.orchestrator.cancel_session.assert_awaited_once_with(5, "42", "restart")


# ===========================================================================
# Error handler
# ===========================================================================
class TestErrorHandler:
    def test_check_failure(self):
        bot = _make_bot()
        interaction = _make_interaction(bot)
        run_async(Seeding(bot).cog_app_command_error(interaction, app_commands.CheckFailure()))
        assert "Admin role" in interaction.response.send_message.await_args.args[0]

    def test_seeding_error_after_defer(self):
        bot = _make_bot()
        interaction = _make_interaction(bot)
        interaction.response.is_done.return_value = True
        error = app_commands.CommandInvokeError(MagicMock(), SessionStillActiveError(5))
        run_async(Seeding(bot).cog_app_command_error(interaction, error))
        assert "still active" in interaction.followup.send.await_args.args[0]

    def test_other_errors_propagate(self):
        bot = _make_bot()
        interaction = _make_interaction(bot)
        error = app_commands.CommandInvokeError(MagicMock(), KeyError("x"))
        with pytest.raises(app_commands.CommandInvokeError):
            run_async(Seeding(bot).cog_app_command_error(interaction, error))


class TestEmbeds:
    def test_teardown_not_performed(self):
        embed = build_teardown_embed(TeardownResult(False, "Session 1 is already completed", 1))
        assert embed.description == "Session 1 is already completed"
        assert embed.color == discord.Color.orange()

    def test_test_mode_title(self, db_engine):
        row = _session_row(db_engine)
        row.metadata_ = {"test_mode": True}
        assert build_session_embed(row).title.startswith("[TEST]")
