"""
Test suite for the GameManager facade.

Covers session and player lifecycle, and the end-to-end card flows that
cross module boundaries:
- Drawing and activating each card kind
- Discarding and replacement draws
- Referee assignment through the facade
- Local-first behavior when the durable store fails

Run with: pytest test_game.py -v
"""

import random
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from cards import Card, CardType
from deck import CardManager
from effects import ActionContext
from errors import ErrorCode, NotFoundError
from game import GameManager
from models.results import RestrictionCheck
from models.state import PlayerStatus, SessionStatus


def rule(card_id: str, front: str = "Rule", back: str = None) -> dict:
    record = {"id": card_id, "type": "rule", "frontText": front}
    if back:
        record["backText"] = back
    return record


@pytest.fixture
def gateway():
    gw = AsyncMock()
    gw.fetch_active_players.return_value = []
    return gw


@pytest.fixture
def decks():
    return {
        "deckType1": [rule("r1", "No pointing", "Always point"), rule("r2", "Whisper")],
        "deckType2": [{"id": "p1", "type": "prompt", "frontText": "Sing"}],
        "deckType3": [{"id": "m1", "type": "modifier", "frontText": "Double"}],
        "deckType4": [{"id": "c1", "type": "clone", "frontText": "Copy a rule"}],
        "deckType5": [{"id": "f1", "type": "flip", "frontText": "Flip a rule"}],
        "deckType6": [{"id": "w1", "type": "swap", "frontText": "Take a card"}],
    }


@pytest.fixture
def manager(decks, gateway):
    rng = random.Random(0)
    return GameManager(CardManager(decks, rng=rng), gateway=gateway, rng=rng)


@pytest_asyncio.fixture
async def session(manager):
    session = await manager.create_session("alice", "Alice")
    await manager.add_player(session.session_id, "bob", "Bob")
    return session


# =============================================================================
# Session Lifecycle Tests
# =============================================================================

class TestSessions:

    @pytest.mark.asyncio
    async def test_create_session(self, manager, gateway):
        session = await manager.create_session("alice", "Alice")

        assert session.session_id.startswith("sess-")
        assert session.host_id == "alice"
        assert session.status == SessionStatus.LOBBY
        assert session.players == ["alice"]
        assert manager.get_session(session.session_id) is session
        assert manager.get_player("alice").display_name == "Alice"
        gateway.save_session.assert_awaited_once()
        gateway.save_player.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_add_player_unknown_session(self, manager):
        with pytest.raises(NotFoundError) as exc_info:
            await manager.add_player("missing", "bob", "Bob")
        assert exc_info.value.code == ErrorCode.SESSION_NOT_FOUND

    @pytest.mark.asyncio
    async def test_add_player_twice_keeps_one_entry(self, manager):
        session = await manager.create_session("alice", "Alice")
        first = await manager.add_player(session.session_id, "bob", "Bob")
        second = await manager.add_player(session.session_id, "bob", "Bob")
        assert first is second
        assert session.players == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_track_player_status(self, manager, gateway):
        session = await manager.create_session("alice", "Alice")

        assert await manager.track_player_status(session.session_id, "alice", "inactive")

        assert manager.get_player("alice").status == PlayerStatus.INACTIVE
        gateway.update_player_status.assert_awaited_once_with("alice", "inactive")

    @pytest.mark.asyncio
    async def test_track_unknown_player(self, manager):
        assert await manager.track_player_status("s1", "ghost", "active") is False

    @pytest.mark.asyncio
    async def test_rejoin_reactivates(self, manager):
        session = await manager.create_session("alice", "Alice")
        await manager.track_player_status(session.session_id, "alice", PlayerStatus.INACTIVE)
        await manager.add_player(session.session_id, "alice", "Alice")
        assert manager.get_player("alice").is_active

    @pytest.mark.asyncio
    async def test_works_without_gateway(self, decks):
        manager = GameManager(CardManager(decks))
        session = await manager.create_session("alice", "Alice")
        result = await manager.draw_card(session.session_id, "deckType3", "alice")
        assert result.success


# =============================================================================
# Hand Tests
# =============================================================================

class TestAssignPlayerHand:

    @pytest.mark.asyncio
    async def test_records_become_owned_cards(self, manager, session, gateway):
        ok = await manager.assign_player_hand(
            session.session_id, "bob", [rule("h1"), Card(type=CardType.PROMPT, front_text="x")]
        )

        assert ok
        hand = manager.get_player("bob").hand
        assert all(isinstance(c, Card) for c in hand)
        assert all(c.owner == "bob" for c in hand)
        _, kwargs = gateway.persist_hand.await_args
        assert kwargs["version"] == manager.get_player("bob").hand_version

    @pytest.mark.asyncio
    async def test_unknown_player(self, manager, session):
        assert await manager.assign_player_hand(session.session_id, "ghost", []) is False


# =============================================================================
# Draw Flow Tests
# =============================================================================

class TestDrawCard:

    @pytest.mark.asyncio
    async def test_rule_draw(self, manager, session):
        result = await manager.draw_card(session.session_id, "deckType1", "alice")

        assert result.success
        alice = manager.get_player("alice")
        assert result.get("drawn_card") in alice.rule_cards
        assert manager.card_manager.remaining("deckType1") == 1

    @pytest.mark.asyncio
    async def test_prompt_draw(self, manager, session):
        await manager.draw_card(session.session_id, "deckType2", "bob")
        assert manager.get_active_prompt(session.session_id).player_id == "bob"
        assert manager.clear_prompt(session.session_id) is not None

    @pytest.mark.asyncio
    async def test_clone_flow(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "bob")
        context = ActionContext(target_player_id="bob", target_card_id="m1")

        result = await manager.draw_card(session.session_id, "deckType4", "alice", context)

        assert result.success
        clone = result.get("card")
        assert clone.source_card_id == "m1"
        assert clone in manager.get_player("alice").rule_cards
        assert manager.card_manager.discarded("deckType4") == 1

    @pytest.mark.asyncio
    async def test_clone_without_selection_keeps_card_in_deck(self, manager, session):
        cards = manager.card_manager

        result = await manager.draw_card(session.session_id, "deckType4", "alice")

        assert result.error == ErrorCode.MISSING_SELECTION
        assert cards.remaining("deckType4") == 1
        assert cards.discarded("deckType4") == 0
        assert manager.get_player("alice").hand == []

    @pytest.mark.asyncio
    async def test_flip_missing_target_returns_card_to_deck(self, manager, session):
        context = ActionContext(target_card_id="ghost")

        result = await manager.draw_card(session.session_id, "deckType5", "alice", context)

        assert result.error == ErrorCode.CARD_NOT_FOUND
        assert manager.card_manager.remaining("deckType5") == 1
        assert result.get("drawn_card").owner is None

    @pytest.mark.asyncio
    async def test_flip_flow(self, manager, session):
        manager.card_manager.decks["deckType1"] = [Card.from_record(rule("r1", "Front", "Back"))]
        await manager.draw_card(session.session_id, "deckType1", "alice")
        context = ActionContext(target_card_id="r1")

        result = await manager.draw_card(session.session_id, "deckType5", "alice", context)

        assert result.success
        assert result.get("effect")["text"] == "Back"

    @pytest.mark.asyncio
    async def test_swap_flow(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "bob")
        context = ActionContext(target_player_id="bob", target_card_id="m1")

        result = await manager.draw_card(session.session_id, "deckType6", "alice", context)

        assert result.success
        assert [c.id for c in manager.get_player("alice").hand] == ["m1"]
        assert manager.get_player("bob").hand == []

    @pytest.mark.asyncio
    async def test_restricted_draw(self, manager, session):
        context = ActionContext(restricted_decks=["deckType1"])
        result = await manager.draw_card(session.session_id, "deckType1", "alice", context)
        assert result.error == ErrorCode.DRAW_RESTRICTED
        assert result.user_message == "Drawing from this deck is currently restricted."

    @pytest.mark.asyncio
    async def test_restriction_evaluator(self, decks, gateway):
        calls = []

        def evaluator(session_id, player_id, action, details):
            calls.append((session_id, player_id, action, details["deck_type"]))
            return RestrictionCheck(allowed=details["deck_type"] != "deckType1")

        manager = GameManager(CardManager(decks), gateway, restriction_evaluator=evaluator)
        session = await manager.create_session("alice", "Alice")

        blocked = manager.can_draw_card(session.session_id, "deckType1", "alice")
        allowed = manager.can_draw_card(session.session_id, "deckType2", "alice")

        assert blocked.can_draw is False
        assert allowed.can_draw is True
        assert calls[0] == (session.session_id, "alice", "draw", "deckType1")

    @pytest.mark.asyncio
    async def test_safe_draw(self, manager, session):
        result = manager.safe_draw(session.session_id, "deckType6", "alice")
        assert result.success
        assert result.get("card").id == "w1"


# =============================================================================
# Discard / Replacement Tests
# =============================================================================

class TestDiscardAndReplace:

    @pytest.mark.asyncio
    async def test_discard_player_card(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "alice")

        result = await manager.discard_player_card(session.session_id, "alice", "m1")

        assert result.success
        assert result.get("deck_type") == "deckType3"
        assert manager.card_manager.discarded("deckType3") == 1
        assert manager.get_player("alice").rule_cards == []

    @pytest.mark.asyncio
    async def test_discarding_clone_does_not_reach_pile(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "bob")
        cloned = await manager.clone_card(session.session_id, "alice", "bob", "m1")

        result = await manager.discard_player_card(
            session.session_id, "alice", cloned.get("card").id
        )

        assert result.success
        assert result.get("deck_type") is None
        assert manager.card_manager.discarded("deckType3") == 0

    @pytest.mark.asyncio
    async def test_replace_card(self, manager, session):
        await manager.draw_card(session.session_id, "deckType1", "alice")
        drawn_id = manager.get_player("alice").hand[0].id

        result = await manager.replace_card(session.session_id, "alice", drawn_id)

        assert result.success
        assert result.get("discarded_card").id == drawn_id
        replacement = result.get("card")
        assert replacement.id != drawn_id
        assert replacement in manager.get_player("alice").hand
        assert replacement.owner == "alice"

    @pytest.mark.asyncio
    async def test_replace_from_empty_deck(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "alice")

        result = await manager.replace_card(session.session_id, "alice", "m1")

        assert result.error == ErrorCode.DECK_EMPTY
        assert result.get("discarded_card").id == "m1"

    @pytest.mark.asyncio
    async def test_discard_unknown_card(self, manager, session):
        result = await manager.discard_player_card(session.session_id, "alice", "ghost")
        assert result.error == ErrorCode.CARD_NOT_FOUND


# =============================================================================
# Ownership Through The Facade
# =============================================================================

class TestOwnership:

    @pytest.mark.asyncio
    async def test_transfer_and_owned_cards(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "alice")

        result = await manager.transfer_card(session.session_id, "alice", "bob", "m1", "callout")

        assert result.success
        assert [c.id for c in manager.get_player_owned_cards("bob")] == ["m1"]

    @pytest.mark.asyncio
    async def test_exchange(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "alice")
        await manager.draw_card(session.session_id, "deckType1", "bob")
        bob_card = manager.get_player("bob").rule_cards[0]

        result = await manager.exchange_cards(
            session.session_id, "alice", "bob", "m1", bob_card.id
        )

        assert result.success
        assert bob_card.owner == "alice"

    @pytest.mark.asyncio
    async def test_remove(self, manager, session):
        await manager.draw_card(session.session_id, "deckType3", "alice")
        result = await manager.remove_card_from_player(session.session_id, "alice", "m1")
        assert result.success
        again = await manager.remove_card_from_player(session.session_id, "alice", "m1")
        assert again.error == ErrorCode.CARD_ALREADY_REMOVED

    def test_assign_card_ownership(self, manager):
        cards = [Card(type=CardType.RULE, front_text="x")]
        assert manager.assign_card_ownership("alice", cards)
        assert cards[0].owner == "alice"


# =============================================================================
# Referee Tests
# =============================================================================

class TestReferee:

    @pytest.mark.asyncio
    async def test_assign_referee(self, manager, session, gateway):
        gateway.fetch_active_players.return_value = [
            {"id": "alice", "status": "active"},
            {"id": "bob", "status": "active"},
        ]

        referee_id = await manager.assign_referee_card(session.session_id)

        assert referee_id in {"alice", "bob"}
        assert session.referee == referee_id
        assert any(c.type == CardType.REFEREE for c in manager.get_player(referee_id).rule_cards)

    @pytest.mark.asyncio
    async def test_no_active_players(self, manager, session):
        assert await manager.assign_referee_card(session.session_id) is None
        assert session.referee is None


# =============================================================================
# Prompt Judgment Tests
# =============================================================================

class TestJudgePrompt:

    @pytest_asyncio.fixture
    async def prompted(self, manager, session):
        session.referee = "bob"
        await manager.draw_card(session.session_id, "deckType2", "alice")
        return session

    @pytest.mark.asyncio
    async def test_referee_passes_prompt(self, manager, prompted):
        result = await manager.judge_prompt(prompted.session_id, "bob", True)

        assert result.success
        assert result.get("player_id") == "alice"
        assert result.get("judgment") == "successful"
        prompt = result.get("prompt")
        assert prompt["status"] == "completed"
        assert prompt["refereeJudgment"] == "successful"
        assert prompt["endTime"] >= prompt["startTime"]
        assert manager.get_active_prompt(prompted.session_id) is None

    @pytest.mark.asyncio
    async def test_referee_fails_prompt(self, manager, prompted):
        result = await manager.judge_prompt(prompted.session_id, "bob", False)

        assert result.get("judgment") == "unsuccessful"
        assert result.get("prompt")["status"] == "failed"

    @pytest.mark.asyncio
    async def test_only_referee_may_judge(self, manager, prompted):
        result = await manager.judge_prompt(prompted.session_id, "alice", True)

        assert result.error == ErrorCode.NOT_REFEREE
        challenge = manager.get_active_prompt(prompted.session_id)
        assert challenge.status == "active"
        assert challenge.end_time is None

    @pytest.mark.asyncio
    async def test_judged_once(self, manager, prompted):
        await manager.judge_prompt(prompted.session_id, "bob", True)
        again = await manager.judge_prompt(prompted.session_id, "bob", True)
        assert again.error == ErrorCode.PROMPT_NOT_FOUND

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        result = await manager.judge_prompt("missing", "bob", True)
        assert result.error == ErrorCode.SESSION_NOT_FOUND


# =============================================================================
# Local-First Tests
# =============================================================================

class TestStoreFailures:

    @pytest.mark.asyncio
    async def test_store_failures_never_fail_actions(self, decks):
        gateway = AsyncMock()
        for name in ("save_session", "save_player", "persist_hand",
                     "persist_rule_cards", "broadcast_rule_card_update"):
            getattr(gateway, name).side_effect = RuntimeError("store down")
        manager = GameManager(CardManager(decks), gateway)

        session = await manager.create_session("alice", "Alice")
        await manager.add_player(session.session_id, "bob", "Bob")
        drawn = await manager.draw_card(session.session_id, "deckType3", "alice")
        moved = await manager.transfer_card(session.session_id, "alice", "bob", "m1")

        assert drawn.success
        assert moved.success
        assert [c.id for c in manager.get_player("bob").hand] == ["m1"]
