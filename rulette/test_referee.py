"""
Tests for referee rotation.

Run with: pytest test_referee.py -v
"""

from unittest.mock import AsyncMock

import pytest

from cards import Card, CardType, create_referee_card
from constants import REFEREE_CARD_NAME
from models.state import Player, PlayerStatus, Session
from referee import RefereeRotation, coerce_referee_card, resolve_player_id


class FixedRandom:
    """Random source that always returns the same value."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


def active(player_id: str, key: str = "uid") -> dict:
    return {key: player_id, "status": "active", "displayName": player_id.title()}


@pytest.fixture
def gateway():
    gw = AsyncMock()
    gw.fetch_active_players.return_value = [
        active("alice"),
        {"uid": "bob", "status": "inactive"},
        active("cara"),
    ]
    return gw


@pytest.fixture
def sessions():
    return {"s1": Session("s1", host_id="alice", players=["alice", "bob", "cara"])}


@pytest.fixture
def players():
    return {pid: Player(pid, pid.title()) for pid in ("alice", "bob", "cara")}


def make_rotation(sessions, players, gateway, value=0.0):
    return RefereeRotation(sessions, players, gateway, rng=FixedRandom(value))


# =============================================================================
# Selection Tests
# =============================================================================

class TestSelection:

    @pytest.mark.asyncio
    async def test_zero_picks_first_active_player(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway, 0.0)

        referee_id = await rotation.assign_referee_card("s1")

        assert referee_id == "alice"
        assert sessions["s1"].referee == "alice"

    @pytest.mark.asyncio
    async def test_inactive_players_skipped(self, sessions, players, gateway):
        # Two active players; 0.6 * 2 -> index 1
        rotation = make_rotation(sessions, players, gateway, 0.6)
        assert await rotation.assign_referee_card("s1") == "cara"

    @pytest.mark.asyncio
    async def test_always_refetches_players(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)
        await rotation.assign_referee_card("s1")
        await rotation.assign_referee_card("s1")
        assert gateway.fetch_active_players.await_count == 2

    @pytest.mark.asyncio
    async def test_unknown_session(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)
        assert await rotation.assign_referee_card("nope") is None
        gateway.fetch_active_players.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_active_players(self, sessions, players, gateway):
        gateway.fetch_active_players.return_value = [{"uid": "bob", "status": "inactive"}]
        sessions["s1"].referee = "bob"
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1") is None
        assert sessions["s1"].referee == "bob"
        gateway.persist_referee_card.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_failure(self, sessions, players, gateway):
        gateway.fetch_active_players.side_effect = RuntimeError("store down")
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1") is None
        assert sessions["s1"].referee is None

    @pytest.mark.asyncio
    async def test_without_gateway_uses_local_players(self, sessions, players):
        players["alice"].status = PlayerStatus.INACTIVE
        rotation = make_rotation(sessions, players, None, 0.0)

        assert await rotation.assign_referee_card("s1") == "bob"
        assert len(players["bob"].rule_cards) == 1

    @pytest.mark.asyncio
    async def test_player_without_id(self, sessions, players, gateway):
        gateway.fetch_active_players.return_value = [{"status": "active", "displayName": "?"}]
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1") is None
        assert sessions["s1"].referee is None

    @pytest.mark.asyncio
    async def test_player_without_id_keeps_previous_referee(self, sessions, players, gateway):
        previous = create_referee_card(owner="cara")
        players["cara"].rule_cards.append(previous)
        sessions["s1"].referee = "cara"
        gateway.fetch_active_players.return_value = [{"status": "active"}]
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1") is None
        assert players["cara"].rule_cards == [previous]


class TestResolvePlayerId:

    @pytest.mark.parametrize("key", ["uid", "id", "playerId", "userId"])
    def test_each_field(self, key):
        assert resolve_player_id({key: "alice"}) == "alice"

    def test_uid_wins(self):
        assert resolve_player_id({"userId": "u", "id": "i", "uid": "x"}) == "x"

    def test_none(self):
        assert resolve_player_id({"name": "alice"}) is None


# =============================================================================
# Referee Card Tests
# =============================================================================

class TestRefereeCard:

    @pytest.mark.asyncio
    async def test_default_card_created(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)

        await rotation.assign_referee_card("s1")

        [card] = players["alice"].rule_cards
        assert card.type == CardType.REFEREE
        assert card.name == REFEREE_CARD_NAME
        assert card.owner == "alice"
        assert sessions["s1"].referee_card is card

    @pytest.mark.asyncio
    async def test_record_coerced_to_card(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)
        record = {"id": "ref-1", "type": "referee", "name": REFEREE_CARD_NAME, "frontText": "Judge"}

        await rotation.assign_referee_card("s1", record)

        card = players["alice"].rule_cards[0]
        assert isinstance(card, Card)
        assert card.id == "ref-1"

    @pytest.mark.asyncio
    async def test_record_without_type_is_referee_card(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1", {"name": REFEREE_CARD_NAME}) == "alice"

        [card] = players["alice"].rule_cards
        assert card.type == CardType.REFEREE
        assert card.owner == "alice"

    @pytest.mark.asyncio
    async def test_unreadable_card_changes_nothing(self, sessions, players, gateway):
        previous = create_referee_card(owner="cara")
        players["cara"].rule_cards.append(previous)
        sessions["s1"].referee = "cara"
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1", {"type": "joker"}) is None

        assert players["cara"].rule_cards == [previous]
        assert previous.owner == "cara"
        assert sessions["s1"].referee == "cara"
        gateway.fetch_active_players.assert_not_awaited()

    def test_coerce_default_card(self):
        assert coerce_referee_card(None).type == CardType.REFEREE

    @pytest.mark.asyncio
    async def test_not_added_twice(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)
        card = create_referee_card()
        players["alice"].rule_cards.append(card)

        await rotation.assign_referee_card("s1", card)

        assert players["alice"].rule_cards == [card]

    @pytest.mark.asyncio
    async def test_previous_referee_loses_card(self, sessions, players, gateway):
        card = create_referee_card(owner="cara")
        players["cara"].rule_cards.append(card)
        players["cara"].rule_cards.append(Card(type=CardType.RULE, front_text="Keep me", id="r1"))
        sessions["s1"].referee = "cara"
        rotation = make_rotation(sessions, players, gateway, 0.0)

        await rotation.assign_referee_card("s1", card)

        assert [c.id for c in players["cara"].rule_cards] == ["r1"]
        assert players["alice"].rule_cards == [card]
        assert card.owner == "alice"

    @pytest.mark.asyncio
    async def test_previous_referee_card_matched_by_name(self, sessions, players, gateway):
        named = Card(type=CardType.RULE, front_text="x", name=REFEREE_CARD_NAME, id="named")
        players["cara"].rule_cards.append(named)
        sessions["s1"].referee = "cara"
        rotation = make_rotation(sessions, players, gateway)

        await rotation.assign_referee_card("s1")

        assert players["cara"].rule_cards == []

    @pytest.mark.asyncio
    async def test_previous_referee_without_card(self, sessions, players, gateway):
        sessions["s1"].referee = "cara"
        rotation = make_rotation(sessions, players, gateway)
        assert await rotation.assign_referee_card("s1") == "alice"

    @pytest.mark.asyncio
    async def test_unknown_local_player_registered(self, sessions, players, gateway):
        gateway.fetch_active_players.return_value = [active("dave", key="playerId")]
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1") == "dave"

        assert players["dave"].display_name == "Dave"
        assert "dave" in sessions["s1"].players
        assert len(players["dave"].rule_cards) == 1


# =============================================================================
# Persistence Tests
# =============================================================================

class TestPersistence:

    @pytest.mark.asyncio
    async def test_persists_referee_and_rule_cards(self, sessions, players, gateway):
        rotation = make_rotation(sessions, players, gateway)

        await rotation.assign_referee_card("s1")

        gateway.persist_referee_card.assert_awaited_once_with("s1", "alice")
        args = gateway.persist_rule_cards.await_args.args
        assert args[0] == "alice"
        assert args[1] == players["alice"].rule_cards

    @pytest.mark.asyncio
    async def test_persist_failure_keeps_assignment(self, sessions, players, gateway):
        gateway.persist_referee_card.side_effect = RuntimeError("store down")
        rotation = make_rotation(sessions, players, gateway)

        assert await rotation.assign_referee_card("s1") == "alice"
        assert sessions["s1"].referee == "alice"
