"""
Card effect dispatch for Rulette.

When a player draws a card, its effect is applied according to its type:

    rule / modifier  -> becomes an active rule on the player
    prompt           -> starts a prompt challenge for the referee to judge
    clone            -> copies another player's card (OwnershipLedger)
    flip             -> flips a card to its other side
    swap             -> takes a card from another player (OwnershipLedger)

Selections that used to live in UI globals (which player, which card) are
passed in explicitly through an ActionContext.

Cards taken from a deck by draw_and_activate() are settled afterwards:
back under the deck when the effect fails, onto the discard pile when they
are spent action cards, otherwise kept by the player.

Drawing is gated by can_draw_card(): deck validity, deck exhaustion, an
optional injected restriction evaluator, and a legacy list of restricted
decks carried on the context.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Union

from cards import Card, CardType
from constants import PROMPT_TIME_LIMIT_MS
from deck import CardManager
from errors import CardError, ErrorCode
from ledger import OwnershipLedger
from models.results import ActionResult, DrawCheck, RestrictionCheck
from models.state import CardLocation, Player, PromptChallenge
from stores.gateway import PersistenceGateway, persist_safely

logger = logging.getLogger(__name__)

# Action cards are used up by their effect and go on a discard pile
SPENT_CARD_TYPES = frozenset({CardType.PROMPT, CardType.CLONE, CardType.FLIP, CardType.SWAP})


@dataclass
class ActionContext:
    """
    Explicit selections and game state for one player action.

    Attributes:
        target_player_id: Player chosen for a clone/swap, if any.
        target_card_id: Card chosen for a clone/swap/flip, if any.
        restricted_decks: Deck types currently off limits (legacy rules).
        reason: Free-form reason recorded on transfers.
        extra: Anything else the restriction evaluator should see.
    """

    target_player_id: Optional[str] = None
    target_card_id: Optional[str] = None
    restricted_decks: list[str] = field(default_factory=list)
    reason: str = ""
    extra: dict = field(default_factory=dict)


# (session_id, player_id, action, details) -> RestrictionCheck
RestrictionEvaluator = Callable[[str, str, str, dict], RestrictionCheck]

EffectHandler = Callable[[str, Player, Card, ActionContext], Awaitable[ActionResult]]


class CardEffectDispatcher:
    """
    Applies drawn cards to players.

    Attributes:
        card_manager: Decks to draw from.
        ledger: Ownership operations used by clone and swap cards.
        players: Player id -> Player, shared with the GameManager.
        gateway: Durable store, or None to run purely in memory.
        restriction_evaluator: Optional hook that can veto a draw.
        active_prompts: Session id -> the prompt challenge in progress.
    """

    def __init__(
        self,
        card_manager: CardManager,
        ledger: OwnershipLedger,
        players: dict[str, Player],
        gateway: Optional[PersistenceGateway] = None,
        restriction_evaluator: Optional[RestrictionEvaluator] = None,
        prompt_time_limit_ms: int = PROMPT_TIME_LIMIT_MS,
    ):
        self.card_manager = card_manager
        self.ledger = ledger
        self.players = players
        self.gateway = gateway
        self.restriction_evaluator = restriction_evaluator
        self.prompt_time_limit_ms = prompt_time_limit_ms
        self.active_prompts: dict[str, PromptChallenge] = {}

        self._handlers: dict[CardType, EffectHandler] = {
            CardType.RULE: self._handle_rule,
            CardType.MODIFIER: self._handle_modifier,
            CardType.PROMPT: self._handle_prompt,
            CardType.CLONE: self._handle_clone,
            CardType.FLIP: self._handle_flip,
            CardType.SWAP: self._handle_swap,
        }

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def apply_card_effect(
        self,
        session_id: str,
        player_id: str,
        card: Union[Card, dict],
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        """
        Apply a card's effect for a player.

        Args:
            session_id: Session the action happens in.
            player_id: Player the card was drawn for.
            card: The card (or a stored record of it).
            context: Selections for clone/swap/flip cards.

        Returns:
            ActionResult with the card and an effect descriptor on success.
        """
        context = context or ActionContext()

        try:
            card = Card.from_record(card)
        except ValueError:
            raw_type = card.get("type") if isinstance(card, dict) else None
            return ActionResult.fail(ErrorCode.UNKNOWN_CARD_TYPE, f"Unknown card type: {raw_type}")

        handler = self._handlers.get(card.type)
        if handler is None:
            logger.warning(f"No effect for card type {card.type.value} ({card.id})")
            return ActionResult.fail(
                ErrorCode.UNKNOWN_CARD_TYPE, f"Unknown card type: {card.type.value}"
            )

        player = self.players.get(player_id)
        if player is None:
            return ActionResult.fail(ErrorCode.PLAYER_NOT_FOUND, f"Player {player_id} not found")

        logger.debug(f"Applying {card.type.value} card {card.id} for {player_id}")
        return await handler(session_id, player, card, context)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    async def _activate_rule(
        self,
        session_id: str,
        player: Player,
        card: Card,
        effect_type: str,
        missing_text: ErrorCode,
    ) -> ActionResult:
        """Shared path for rule and modifier cards."""
        text = card.get_current_rule()
        if not text:
            return ActionResult.fail(missing_text, f"Card {card.id} has no text on its active side")

        card.set_owner(player.player_id)
        player.add_card(card, CardLocation.RULE_CARDS)
        player.add_card(card, CardLocation.HAND)

        await persist_safely(
            self.gateway, "broadcast_rule_card_update",
            session_id, player.player_id, card, version=player.hand_version,
        )
        await persist_safely(
            self.gateway, "persist_rule_cards",
            player.player_id, player.rule_cards, version=player.hand_version,
        )

        logger.info(f"{effect_type} for {player.player_id}: {text}")
        return ActionResult.ok(card=card, effect={
            "type": effect_type,
            "card_id": card.id,
            "text": text,
            "player_id": player.player_id,
        })

    async def _handle_rule(self, session_id, player, card, context) -> ActionResult:
        return await self._activate_rule(
            session_id, player, card, "rule_activated", ErrorCode.NO_RULE_TEXT
        )

    async def _handle_modifier(self, session_id, player, card, context) -> ActionResult:
        return await self._activate_rule(
            session_id, player, card, "modifier_applied", ErrorCode.NO_MODIFIER_TEXT
        )

    async def _handle_prompt(self, session_id, player, card, context) -> ActionResult:
        # Prompt challenges are transient; the referee judges them out of band.
        challenge = PromptChallenge(
            session_id=session_id,
            player_id=player.player_id,
            prompt_card=card,
            time_limit=self.prompt_time_limit_ms,
        )
        self.active_prompts[session_id] = challenge
        logger.info(f"Prompt challenge started for {player.player_id} in {session_id}")

        return ActionResult.ok(card=card, prompt=challenge.to_dict(), effect={
            "type": "prompt_started",
            "card_id": card.id,
            "text": card.question or card.get_current_text(),
            "player_id": player.player_id,
        })

    async def _handle_clone(self, session_id, player, card, context) -> ActionResult:
        if not context.target_player_id or not context.target_card_id:
            return ActionResult.fail(
                ErrorCode.MISSING_SELECTION, "Clone needs a target player and card"
            )
        return await self.ledger.clone_card(
            session_id, player.player_id, context.target_player_id, context.target_card_id
        )

    async def _handle_flip(self, session_id, player, card, context) -> ActionResult:
        if context.target_card_id:
            target = player.find_in_rule_cards(context.target_card_id)
            location = CardLocation.RULE_CARDS
            if target is None:
                target = player.find_in_hand(context.target_card_id)
                location = CardLocation.HAND
            if target is None:
                return ActionResult.fail(
                    ErrorCode.CARD_NOT_FOUND,
                    f"Card {context.target_card_id} not found for {player.player_id}",
                )
        else:
            target = card
            location = CardLocation.RULE_CARDS if player.find_in_rule_cards(card.id) else None

        if not target.flip():
            return ActionResult.fail(ErrorCode.FLIP_FAILED, f"Card {target.id} cannot be flipped")

        player.bump_version()
        if location == CardLocation.RULE_CARDS:
            await persist_safely(
                self.gateway, "persist_rule_cards",
                player.player_id, player.rule_cards, version=player.hand_version,
            )

        return ActionResult.ok(card=target, effect={
            "type": "card_flipped",
            "card_id": target.id,
            "text": target.get_current_text(),
            "side": target.current_side.value,
            "player_id": player.player_id,
        })

    async def _handle_swap(self, session_id, player, card, context) -> ActionResult:
        if not context.target_player_id or not context.target_card_id:
            return ActionResult.fail(
                ErrorCode.MISSING_SELECTION, "Swap needs a target player and card"
            )
        return await self.ledger.swap_card(
            session_id, player.player_id, context.target_player_id, context.target_card_id
        )

    # -------------------------------------------------------------------------
    # Prompts
    # -------------------------------------------------------------------------

    def get_active_prompt(self, session_id: str) -> Optional[PromptChallenge]:
        return self.active_prompts.get(session_id)

    def clear_prompt(self, session_id: str) -> Optional[PromptChallenge]:
        """Drop a session's prompt challenge, returning it if there was one."""
        return self.active_prompts.pop(session_id, None)

    # -------------------------------------------------------------------------
    # Draw gating
    # -------------------------------------------------------------------------

    def can_draw_card(
        self,
        deck_type: Optional[str],
        player_id: str,
        context: Optional[ActionContext] = None,
        session_id: Optional[str] = None,
    ) -> DrawCheck:
        """
        Check whether a player may draw from a deck right now.

        Args:
            deck_type: Deck the player wants to draw from.
            player_id: Player drawing.
            context: Carries the legacy restricted_decks list.
            session_id: Needed for the restriction evaluator to run.

        Returns:
            DrawCheck; can_draw is False with a reason and error code when
            the draw is not allowed.
        """
        context = context or ActionContext()

        if not deck_type:
            return DrawCheck(False, "Invalid deck type", error=ErrorCode.INVALID_DECK_TYPE)

        if not self.card_manager.has_deck(deck_type):
            return DrawCheck(
                False, f'Deck "{deck_type}" does not exist', error=ErrorCode.DECK_NOT_FOUND
            )

        if self.card_manager.is_exhausted(deck_type):
            return DrawCheck(
                False, f'No cards available in "{deck_type}" deck', error=ErrorCode.DECK_EMPTY
            )

        if self.restriction_evaluator is not None and session_id:
            check = self.restriction_evaluator(
                session_id, player_id, "draw", {"deck_type": deck_type, **context.extra}
            )
            if not check.allowed:
                return DrawCheck(
                    False,
                    check.reason or f'Drawing from "{deck_type}" deck is restricted by active rules',
                    restrictions=list(check.restrictions),
                    error=ErrorCode.DRAW_RESTRICTED,
                )

        if deck_type in context.restricted_decks:
            return DrawCheck(
                False,
                f'Drawing from "{deck_type}" deck is currently restricted by game rules',
                error=ErrorCode.DRAW_RESTRICTED,
            )

        return DrawCheck(True)

    def safe_draw(
        self,
        deck_type: str,
        player_id: str,
        context: Optional[ActionContext] = None,
        session_id: Optional[str] = None,
    ) -> ActionResult:
        """
        Check, then draw, without applying the card's effect.

        Returns:
            ActionResult with card and deck_type.
        """
        check = self.can_draw_card(deck_type, player_id, context, session_id)
        if not check.can_draw:
            return ActionResult.fail(check.error, check.reason, restrictions=check.restrictions)

        try:
            card = self.card_manager.draw(deck_type)
        except CardError as e:
            logger.warning(f"Draw from {deck_type} failed for {player_id}: {e}")
            return ActionResult.from_error(e)

        card.set_owner(player_id)
        return ActionResult.ok(card=card, deck_type=deck_type)

    async def activate_drawn_card(
        self,
        session_id: str,
        deck_type: str,
        player_id: str,
        card: Card,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        """
        Apply a card fresh out of deck_type, then settle it.

        Use after safe_draw() when the selections depend on the drawn card.

        Returns:
            The effect's ActionResult, with drawn_card, deck_type and
            settled_to added.
        """
        result = await self.apply_card_effect(session_id, player_id, card, context)
        result.data["drawn_card"] = card
        result.data["deck_type"] = deck_type
        result.data["settled_to"] = self.settle_drawn_card(deck_type, card, result)
        return result

    def settle_drawn_card(self, deck_type: str, card: Card, result: ActionResult) -> Optional[str]:
        """
        Put a drawn card where it belongs once its effect has run.

        A card whose effect failed goes back under its deck. Spent action
        cards go on the deck's discard pile. Rule and modifier cards stay
        with the player.

        Returns:
            "deck", "discard", or None when a player now holds the card.
        """
        if not result.success:
            self.card_manager.put_back(deck_type, card)
            logger.info(f"Returned {card.id} to {deck_type} after {result.error.value}")
            return "deck"

        if card.type in SPENT_CARD_TYPES:
            self.card_manager.discard(deck_type, card)
            return "discard"
        return None

    async def draw_and_activate(
        self,
        session_id: str,
        deck_type: str,
        player_id: str,
        context: Optional[ActionContext] = None,
    ) -> ActionResult:
        """
        Check, draw, then apply the drawn card's effect.

        Short-circuits with the restriction reason when the draw is not
        allowed. The drawn card always ends up in exactly one place: back in
        the deck, on the discard pile, or with a player.

        Returns:
            The effect's ActionResult, with drawn_card, deck_type and
            settled_to added.
        """
        drawn = self.safe_draw(deck_type, player_id, context, session_id)
        if not drawn.success:
            return drawn

        return await self.activate_drawn_card(
            session_id, deck_type, player_id, drawn.get("card"), context
        )
