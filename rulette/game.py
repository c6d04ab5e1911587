"""
Game session manager for Rulette.

GameManager is the single authoritative in-memory instance for the sessions
it hosts. It owns the session and player tables and wires together:

    CardManager           - decks and discard piles (deck.py)
    OwnershipLedger       - clone / transfer / swap / removal (ledger.py)
    CardEffectDispatcher  - applying drawn cards (effects.py)
    RefereeRotation       - choosing the referee (referee.py)

Every operation mutates local state first and then calls the persistence
gateway. A failed durable write is logged; the local mutation stands.

Card actions for one session are expected to arrive one at a time from the
caller's event loop; nothing here locks.
"""

import random
import uuid
from pathlib import Path
from typing import Optional, Union

from cards import Card, load_card_definitions
from config import config
from constants import DECK_TYPE_BY_CARD_TYPE
from deck import CardManager
from effects import ActionContext, CardEffectDispatcher, RestrictionEvaluator
from errors import CardError, ErrorCode, NotFoundError
from ledger import OwnershipLedger
from logging_config import get_logger
from models.results import ActionResult, DrawCheck
from models.state import CardLocation, Player, PlayerStatus, PromptChallenge, Session
from referee import RefereeRotation
from stores.gateway import PersistenceGateway, persist_safely

logger = get_logger(__name__)


def generate_session_id() -> str:
    return f"sess-{uuid.uuid4().hex[:7]}"


class GameManager:
    """
    Sessions, players and every card action on them.

    Attributes:
        sessions: Session id -> Session.
        players: Player id -> Player (all sessions).
        card_manager: Decks shared by the hosted sessions.
        gateway: Durable store, or None to run purely in memory.
    """

    def __init__(
        self,
        card_manager: Optional[CardManager] = None,
        gateway: Optional[PersistenceGateway] = None,
        rng: Optional[random.Random] = None,
        restriction_evaluator: Optional[RestrictionEvaluator] = None,
    ):
        """
        Args:
            card_manager: Decks to draw from. Empty decks if omitted.
            gateway: Durable store (StateCache in production).
            rng: Random source for referee selection.
            restriction_evaluator: Hook that can veto draws.
        """
        self.sessions: dict[str, Session] = {}
        self.players: dict[str, Player] = {}
        self.card_manager = card_manager or CardManager({})
        self.gateway = gateway

        self.ledger = OwnershipLedger(self.players, gateway)
        self.dispatcher = CardEffectDispatcher(
            self.card_manager,
            self.ledger,
            self.players,
            gateway,
            restriction_evaluator=restriction_evaluator,
        )
        self.referee = RefereeRotation(self.sessions, self.players, gateway, rng)

    @classmethod
    def from_card_file(
        cls,
        path: Optional[Union[str, Path]] = None,
        gateway: Optional[PersistenceGateway] = None,
        rng: Optional[random.Random] = None,
    ) -> "GameManager":
        """
        Build a GameManager with decks loaded from the cards CSV.

        Args:
            path: CSV path. Defaults to CARDS_CSV_PATH from config.
            gateway: Durable store.
            rng: Random source for shuffling and referee selection.
        """
        decks = load_card_definitions(path or config.CARDS_CSV_PATH)
        return cls(CardManager(decks, rng=rng), gateway=gateway, rng=rng)

    # -------------------------------------------------------------------------
    # Sessions and players
    # -------------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def get_player(self, player_id: str) -> Optional[Player]:
        return self.players.get(player_id)

    def _require_session(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found",
                code=ErrorCode.SESSION_NOT_FOUND,
                details={"session_id": session_id},
            )
        return session

    async def create_session(self, host_id: str, host_display_name: str) -> Session:
        """
        Create a session in the lobby state with the host as first player.

        Returns:
            The new Session.
        """
        session = Session(session_id=generate_session_id(), host_id=host_id)
        self.sessions[session.session_id] = session
        await persist_safely(self.gateway, "save_session", session.to_dict())

        await self.add_player(session.session_id, host_id, host_display_name)
        logger.with_context(session_id=session.session_id, player_id=host_id).info(
            f"Session {session.session_id} created by {host_display_name}"
        )
        return session

    async def add_player(self, session_id: str, player_id: str, display_name: str) -> Player:
        """
        Join a player to a session.

        A player already known locally is reused (and marked active).

        Raises:
            NotFoundError: SESSION_NOT_FOUND if the session is unknown.
        """
        session = self._require_session(session_id)

        player = self.players.get(player_id)
        if player is None:
            player = Player(player_id=player_id, display_name=display_name)
            self.players[player_id] = player
        else:
            player.status = PlayerStatus.ACTIVE
        session.add_player(player_id)

        await persist_safely(self.gateway, "save_player", session_id, player.to_dict())
        logger.with_context(session_id=session_id, player_id=player_id).info(
            f"Player {display_name} joined"
        )
        return player

    async def track_player_status(
        self,
        session_id: str,
        player_id: str,
        status: Union[PlayerStatus, str],
    ) -> bool:
        """
        Update a player's presence.

        Returns:
            False if the player is not known locally.
        """
        player = self.players.get(player_id)
        log = logger.with_context(session_id=session_id, player_id=player_id)
        if player is None:
            log.warning(f"Player {player_id} not found locally")
            return False

        player.status = PlayerStatus(status)
        await persist_safely(self.gateway, "update_player_status", player_id, player.status.value)
        log.info(f"Player status updated to {player.status.value}")
        return True

    async def assign_player_hand(self, session_id: str, player_id: str, cards: list) -> bool:
        """
        Replace a player's hand.

        Args:
            cards: Cards or stored card records.

        Returns:
            False if the player is not known locally.
        """
        player = self.players.get(player_id)
        if player is None:
            logger.with_context(session_id=session_id).warning(
                f"Player {player_id} not found locally"
            )
            return False

        player.hand = [Card.from_record(card) for card in cards]
        self.ledger.assign_card_ownership(player_id, player.hand)
        player.bump_version()
        await persist_safely(
            self.gateway, "persist_hand",
            session_id, player_id, player.hand, version=player.hand_version,
        )
        return True

    # -------------------------------------------------------------------------
    # Drawing
    # -------------------------------------------------------------------------

    def can_draw_card(
        self,
        session_id: str,
        deck_type: str,
        player_id: str,
        context: Optional[ActionContext] = None,
    ) -> DrawCheck:
        return self.dispatcher.can_draw_card(deck_type, player_id, context, session_id)

    def safe_draw(
        self,
        session_id: str,
        deck_type: str,
        player_id: str,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        return self.dispatcher.safe_draw(deck_type, player_id, context, session_id)

    async def draw_card(
        self,
        session_id: str,
        deck_type: str,
        player_id: str,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        """
        Draw a card for a player and apply its effect.

        Returns:
            ActionResult from the card's effect (see CardEffectDispatcher).
        """
        result = await self.dispatcher.draw_and_activate(session_id, deck_type, player_id, context)
        log = logger.with_context(session_id=session_id, player_id=player_id, deck_type=deck_type)
        if result.success:
            log.info(f"Drew and applied {result.get('drawn_card')}")
        else:
            log.info(f"Draw from {deck_type} did not apply: {result.error.value}")
        return result

    async def apply_card_effect(
        self,
        session_id: str,
        player_id: str,
        card: Union[Card, dict],
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        return await self.dispatcher.apply_card_effect(session_id, player_id, card, context)

    async def activate_drawn_card(
        self,
        session_id: str,
        deck_type: str,
        player_id: str,
        card: Card,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        return await self.dispatcher.activate_drawn_card(
            session_id, deck_type, player_id, card, context
        )

    async def discard_player_card(
        self,
        session_id: str,
        player_id: str,
        card_id: str,
    ) -> ActionResult:
        """
        Take a card out of play and put it on its deck's discard pile.

        The discard pile is chosen from the card's type. Clones are not
        discarded; they stop existing.

        Returns:
            ActionResult with card and deck_type (None for clones and
            referee cards).
        """
        player = self.players.get(player_id)
        if player is None:
            return ActionResult.fail(ErrorCode.PLAYER_NOT_FOUND, f"Player {player_id} not found")

        card, _ = player.find_card(card_id)
        if card is None:
            return ActionResult.fail(ErrorCode.CARD_NOT_FOUND, f"Card {card_id} not found")

        removed = await self.ledger.remove_card_from_player(session_id, player_id, card_id)
        if not removed.success:
            return removed

        deck_type = None if card.is_clone else DECK_TYPE_BY_CARD_TYPE.get(card.type.value)
        if deck_type is not None:
            try:
                self.card_manager.discard(deck_type, card)
            except CardError as e:
                return ActionResult.from_error(e, card=card)
        return ActionResult.ok(card=card, deck_type=deck_type)

    async def replace_card(
        self,
        session_id: str,
        player_id: str,
        card_id: str,
    ) -> ActionResult:
        """
        Discard a card from a player's hand and draw a replacement of the
        same kind into the hand.

        The replacement avoids handing the player the card they were given
        last time (see CardManager.draw_replacement_card).

        Returns:
            ActionResult with card (the replacement) and discarded_card.
        """
        discarded = await self.discard_player_card(session_id, player_id, card_id)
        if not discarded.success:
            return discarded

        deck_type = discarded.get("deck_type")
        if deck_type is None:
            return ActionResult.fail(
                ErrorCode.INVALID_DECK_TYPE,
                f"Card {card_id} has no deck to draw a replacement from",
                discarded_card=discarded.get("card"),
            )

        try:
            card = self.card_manager.draw_replacement_card(deck_type, player_id)
        except CardError as e:
            return ActionResult.from_error(e, discarded_card=discarded.get("card"))

        player = self.players[player_id]
        card.set_owner(player_id)
        player.add_card(card, CardLocation.HAND)
        await persist_safely(
            self.gateway, "persist_hand",
            session_id, player_id, player.hand, version=player.hand_version,
        )
        return ActionResult.ok(card=card, discarded_card=discarded.get("card"), deck_type=deck_type)

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def assign_card_ownership(self, player_id: str, cards) -> bool:
        return self.ledger.assign_card_ownership(player_id, cards)

    def get_player_owned_cards(self, player_id: str) -> list[Card]:
        return self.ledger.get_player_owned_cards(player_id)

    async def clone_card(
        self, session_id: str, player_id: str, target_player_id: str, target_card_id: str
    ) -> ActionResult:
        return await self.ledger.clone_card(session_id, player_id, target_player_id, target_card_id)

    async def transfer_card(
        self,
        session_id: str,
        from_player_id: str,
        to_player_id: str,
        card_id: str,
        reason: str = "",
        context: Optional[dict] = None,
    ) -> ActionResult:
        return await self.ledger.transfer_card(
            session_id, from_player_id, to_player_id, card_id, reason, context
        )

    async def swap_card(
        self, session_id: str, receiving_player_id: str, original_player_id: str, card_id: str
    ) -> ActionResult:
        return await self.ledger.swap_card(
            session_id, receiving_player_id, original_player_id, card_id
        )

    async def exchange_cards(
        self,
        session_id: str,
        give_player_id: str,
        receive_player_id: str,
        give_card_id: str,
        receive_card_id: str,
    ) -> ActionResult:
        return await self.ledger.exchange_cards(
            session_id, give_player_id, receive_player_id, give_card_id, receive_card_id
        )

    async def remove_card_from_player(
        self, session_id: str, player_id: str, card_id: str
    ) -> ActionResult:
        return await self.ledger.remove_card_from_player(session_id, player_id, card_id)

    # -------------------------------------------------------------------------
    # Referee and prompts
    # -------------------------------------------------------------------------

    async def assign_referee_card(
        self,
        session_id: str,
        referee_card: Union[Card, dict, None] = None,
    ) -> Optional[str]:
        return await self.referee.assign_referee_card(session_id, referee_card)

    def get_active_prompt(self, session_id: str) -> Optional[PromptChallenge]:
        return self.dispatcher.get_active_prompt(session_id)

    def clear_prompt(self, session_id: str) -> Optional[PromptChallenge]:
        return self.dispatcher.clear_prompt(session_id)

    async def judge_prompt(self, session_id: str, referee_id: str, successful: bool) -> ActionResult:
        """
        Close a session's prompt challenge with the referee's ruling.

        Only the session's current referee may judge. The judged challenge
        is removed from the active prompts.

        Returns:
            ActionResult with player_id, judgment and the closed prompt.
        """
        session = self.sessions.get(session_id)
        if session is None:
            return ActionResult.fail(ErrorCode.SESSION_NOT_FOUND, f"Session {session_id} not found")

        log = logger.with_context(session_id=session_id, player_id=referee_id)
        if session.referee != referee_id:
            log.warning(f"{referee_id} tried to judge a prompt but is not the referee")
            return ActionResult.fail(
                ErrorCode.NOT_REFEREE, f"Player {referee_id} is not the referee of {session_id}"
            )

        challenge = self.dispatcher.clear_prompt(session_id)
        if challenge is None:
            return ActionResult.fail(
                ErrorCode.PROMPT_NOT_FOUND, f"No prompt waiting in session {session_id}"
            )

        challenge.resolve(successful)
        log.info(f"Prompt for {challenge.player_id} judged {challenge.referee_judgment}")
        return ActionResult.ok(
            player_id=challenge.player_id,
            judgment=challenge.referee_judgment,
            prompt=challenge.to_dict(),
        )
