"""Tests for FastAPI REST endpoints with mocked game_manager."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, patch

# Disable rate limiting before importing the app module
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")

import pytest
from httpx import ASGITransport, AsyncClient

from kcpoker.errors import IllegalAction, InvalidPassword, NotYourTurn, PhaseMismatch, TableNotFound
from kcpoker.models import BotDifficulty, GameType, TableMode

# We need to patch the lifespan so it doesn't start background tasks or the store
import contextlib


@contextlib.asynccontextmanager
async def _noop_lifespan(app):
    yield


# Patch lifespan BEFORE importing app
with patch("kcpoker.main.lifespan", _noop_lifespan):
    from kcpoker.main import app as fastapi_app


PATCH_GM = "kcpoker.main.game_manager"


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test")


# ---------------------------------------------------------------------------
# Lobby
# ---------------------------------------------------------------------------


class TestCreateTableEndpoint:
    @pytest.fixture(autouse=True)
    def _mock(self):
        with patch(f"{PATCH_GM}.create_table", new_callable=AsyncMock) as m:
            self.create_table = m
            yield

    async def test_create_table_success(self):
        self.create_table.return_value = "ABC234"

        async with _client() as client:
            resp = await client.post(
                "/api/tables",
                json={
                    "uid": "u1",
                    "display_name": "Alice",
                    "game_type": "holdem",
                    "min_bet": 100,
                    "password": "pw",
                },
            )

        assert resp.status_code == 200
        assert resp.json() == {"table_id": "ABC234"}
        uid, name, config, password = self.create_table.call_args.args
        assert (uid, name, password) == ("u1", "Alice", "pw")
        assert config.game_type == GameType.HOLDEM
        assert config.min_bet == 100
        assert config.table_mode == TableMode.CASH_GAME

    async def test_sit_and_go_settings_pass_through(self):
        self.create_table.return_value = "SNG234"

        async with _client() as client:
            resp = await client.post(
                "/api/tables",
                json={
                    "uid": "u1",
                    "display_name": "Alice",
                    "table_mode": "sit_and_go",
                    "tournament": {"total_seats": 3, "buy_in": 500},
                },
            )

        assert resp.status_code == 200
        config = self.create_table.call_args.args[2]
        assert config.tournament.total_seats == 3
        assert config.tournament.buy_in == 500

    async def test_create_table_validation_error(self):
        """Missing required fields should return 422."""
        async with _client() as client:
            resp = await client.post("/api/tables", json={})
        assert resp.status_code == 422

    async def test_display_name_too_short(self):
        async with _client() as client:
            resp = await client.post("/api/tables", json={"uid": "u1", "display_name": " A "})
        assert resp.status_code == 422
        self.create_table.assert_not_called()


class TestGetTableEndpoint:
    async def test_get_table_success(self):
        with patch(f"{PATCH_GM}.get_table_view", new_callable=AsyncMock) as m:
            m.return_value = {"table_id": "ABC234", "phase": "IDLE", "my_seat": 0}
            async with _client() as client:
                resp = await client.get("/api/tables/abc234", params={"uid": "u1"})

        assert resp.status_code == 200
        assert resp.json()["phase"] == "IDLE"
        m.assert_awaited_once_with("ABC234", "u1")

    async def test_get_table_not_found(self):
        with patch(f"{PATCH_GM}.get_table_view", new_callable=AsyncMock) as m:
            m.side_effect = TableNotFound("Table NOPE22 not found")
            async with _client() as client:
                resp = await client.get("/api/tables/NOPE22")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Table NOPE22 not found"


class TestJoinEndpoint:
    async def test_join_success(self):
        with patch(f"{PATCH_GM}.join_table", new_callable=AsyncMock) as m:
            m.return_value = "player"
            async with _client() as client:
                resp = await client.post(
                    "/api/tables/abc234/join", json={"uid": "u2", "display_name": "Bob"}
                )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        m.assert_awaited_once_with("ABC234", "u2", "Bob", None)

    async def test_join_wrong_password(self):
        with patch(f"{PATCH_GM}.join_table", new_callable=AsyncMock) as m:
            m.side_effect = InvalidPassword("Wrong table password")
            async with _client() as client:
                resp = await client.post(
                    "/api/tables/ABC234/join",
                    json={"uid": "u2", "display_name": "Bob", "password": "nope"},
                )
        assert resp.status_code == 403


class TestSeatEndpoints:
    @pytest.mark.parametrize(
        "path, fn, body, expected_args",
        [
            ("sit", "join_as_player", {"uid": "u1"}, ("ABC234", "u1")),
            ("buy_in", "buy_in", {"uid": "u1", "amount": 500}, ("ABC234", "u1", 500)),
            ("leave", "leave_table", {"uid": "u1"}, ("ABC234", "u1")),
            ("sit_out", "request_sit_out", {"uid": "u1"}, ("ABC234", "u1")),
            ("sit_out/cancel", "cancel_sit_out", {"uid": "u1"}, ("ABC234", "u1")),
            ("bots", "add_bot", {"uid": "u1", "difficulty": "hard"}, ("ABC234", "u1", BotDifficulty.HARD)),
            ("bots/kick", "kick_bot", {"uid": "u1", "bot_uid": "bot_1_x"}, ("ABC234", "u1", "bot_1_x")),
            ("reveal", "reveal_hand", {"uid": "u1"}, ("ABC234", "u1")),
            ("chat", "send_chat", {"uid": "u1", "text": "gl"}, ("ABC234", "u1", "gl")),
        ],
    )
    async def test_forwards_to_game_manager(self, path, fn, body, expected_args):
        with patch(f"{PATCH_GM}.{fn}", new_callable=AsyncMock) as m:
            async with _client() as client:
                resp = await client.post(f"/api/tables/abc234/{path}", json=body)

        assert resp.status_code == 200
        m.assert_awaited_once_with(*expected_args)

    async def test_zero_buy_in_rejected(self):
        async with _client() as client:
            resp = await client.post("/api/tables/ABC234/buy_in", json={"uid": "u1", "amount": 0})
        assert resp.status_code == 422

    async def test_add_bot_not_creator(self):
        with patch(f"{PATCH_GM}.add_bot", new_callable=AsyncMock) as m:
            m.side_effect = IllegalAction("Only the table creator can add bots")
            async with _client() as client:
                resp = await client.post("/api/tables/ABC234/bots", json={"uid": "u2"})
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Gameplay
# ---------------------------------------------------------------------------


class TestGameplayEndpoints:
    @pytest.fixture(autouse=True)
    def _mock_bots(self):
        with patch(f"{PATCH_GM}.run_bot_turns", new_callable=AsyncMock) as m:
            self.run_bot_turns = m
            yield

    async def test_action_then_bots_play(self):
        with patch(f"{PATCH_GM}.perform_action", new_callable=AsyncMock) as m:
            async with _client() as client:
                resp = await client.post(
                    "/api/tables/abc234/action",
                    json={"uid": "u1", "action": "RAISE", "amount": 120},
                )

        assert resp.status_code == 200
        m.assert_awaited_once_with("ABC234", "u1", "RAISE", 120)
        self.run_bot_turns.assert_awaited_once_with("ABC234")

    async def test_action_out_of_turn(self):
        with patch(f"{PATCH_GM}.perform_action", new_callable=AsyncMock) as m:
            m.side_effect = NotYourTurn("It is not your turn")
            async with _client() as client:
                resp = await client.post(
                    "/api/tables/ABC234/action", json={"uid": "u2", "action": "CALL"}
                )

        assert resp.status_code == 403
        assert resp.json()["detail"] == "It is not your turn"
        self.run_bot_turns.assert_not_awaited()

    async def test_draw(self):
        with patch(f"{PATCH_GM}.submit_draw", new_callable=AsyncMock) as m:
            async with _client() as client:
                resp = await client.post(
                    "/api/tables/ABC234/draw", json={"uid": "u1", "discard_indices": [0, 3]}
                )

        assert resp.status_code == 200
        m.assert_awaited_once_with("ABC234", "u1", [0, 3])

    async def test_draw_too_many_indices(self):
        async with _client() as client:
            resp = await client.post(
                "/api/tables/ABC234/draw", json={"uid": "u1", "discard_indices": [0, 1, 2, 3, 4, 0]}
            )
        assert resp.status_code == 422

    async def test_deal_wrong_phase(self):
        with patch(f"{PATCH_GM}.deal", new_callable=AsyncMock) as m:
            m.side_effect = PhaseMismatch("Cannot deal during BETTING_1")
            async with _client() as client:
                resp = await client.post("/api/tables/ABC234/deal", json={"uid": "u1"})
        assert resp.status_code == 409

    async def test_next_hand(self):
        with patch(f"{PATCH_GM}.start_next_hand", new_callable=AsyncMock) as m:
            async with _client() as client:
                resp = await client.post("/api/tables/ABC234/next_hand", json={"uid": "u1"})
        assert resp.status_code == 200
        m.assert_awaited_once_with("ABC234", "u1")
        self.run_bot_turns.assert_awaited_once()

    async def test_timeout_not_due(self):
        with patch(f"{PATCH_GM}.request_timeout", new_callable=AsyncMock) as m:
            m.return_value = False
            async with _client() as client:
                resp = await client.post("/api/tables/ABC234/timeout")
        assert resp.status_code == 200
        self.run_bot_turns.assert_not_awaited()

    async def test_timeout_applied(self):
        with patch(f"{PATCH_GM}.request_timeout", new_callable=AsyncMock) as m:
            m.return_value = True
            async with _client() as client:
                resp = await client.post("/api/tables/ABC234/timeout")
        assert resp.status_code == 200
        self.run_bot_turns.assert_awaited_once_with("ABC234")

    async def test_bot_failure_does_not_fail_request(self):
        self.run_bot_turns.side_effect = RuntimeError("bot crashed")
        with patch(f"{PATCH_GM}.deal", new_callable=AsyncMock):
            async with _client() as client:
                resp = await client.post("/api/tables/ABC234/deal", json={"uid": "u1"})
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------


class TestWalletEndpoint:
    async def test_balance(self):
        with patch(f"{PATCH_GM}.get_wallet", new_callable=AsyncMock) as m:
            m.return_value = 10000
            async with _client() as client:
                resp = await client.get("/api/wallets/u1")
        assert resp.status_code == 200
        assert resp.json() == {"uid": "u1", "balance": 10000}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class TestAdminEndpoints:
    async def test_not_configured(self):
        with patch("kcpoker.main.ADMIN_PASSWORD", ""):
            async with _client() as client:
                resp = await client.post("/api/admin/cleanup")
        assert resp.status_code == 503

    async def test_wrong_password(self):
        with patch("kcpoker.main.ADMIN_PASSWORD", "secret"):
            async with _client() as client:
                resp = await client.post(
                    "/api/admin/cleanup", headers={"Authorization": "Bearer wrong"}
                )
        assert resp.status_code == 401

    async def test_cleanup(self):
        result = {"deleted": ["ABC234"], "failed": []}
        with patch("kcpoker.main.ADMIN_PASSWORD", "secret"), patch(
            "kcpoker.main.cleanup_stale_tables", new_callable=AsyncMock
        ) as m:
            m.return_value = result
            async with _client() as client:
                resp = await client.post(
                    "/api/admin/cleanup", headers={"Authorization": "Bearer secret"}
                )
        assert resp.status_code == 200
        assert resp.json() == result

    async def test_teardown_missing_table(self):
        with patch("kcpoker.main.ADMIN_PASSWORD", "secret"), patch(
            f"{PATCH_GM}.teardown_table", new_callable=AsyncMock
        ) as m:
            m.return_value = False
            async with _client() as client:
                resp = await client.delete(
                    "/api/admin/tables/abc234", headers={"Authorization": "Bearer secret"}
                )
        assert resp.status_code == 404
        m.assert_awaited_once_with("ABC234")

    async def test_teardown(self):
        with patch("kcpoker.main.ADMIN_PASSWORD", "secret"), patch(
            f"{PATCH_GM}.teardown_table", new_callable=AsyncMock
        ) as m:
            m.return_value = True
            async with _client() as client:
                resp = await client.delete(
                    "/api/admin/tables/ABC234", headers={"Authorization": "Bearer secret"}
                )
        assert resp.status_code == 200
