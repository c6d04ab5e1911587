"""
Card ownership and cross-player transfers.

The ledger moves cards between players and keeps ownership consistent:
a non-clone card has exactly one owner at a time, and every clone is
tracked back to its source so removing the source also removes its clones.

All mutations happen on the in-memory Player objects first. Persistence is
issued afterwards through the gateway and is best-effort: a failed write is
logged and the operation still succeeds.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from cards import Card
from constants import REMOVED_CARD_MEMORY
from errors import ErrorCode
from models.events import card_transferred
from models.results import ActionResult
from models.state import CardLocation, Player
from stores.gateway import PersistenceGateway, persist_safely

logger = logging.getLogger(__name__)


@dataclass
class CloneRef:
    """Back-reference from a source card to one of its clones."""

    owner_id: str
    clone_id: str


class OwnershipLedger:
    """
    Assigns, transfers and removes cards between players.

    Attributes:
        players: Player id -> Player, shared with the GameManager.
        gateway: Durable store, or None to run purely in memory.
        clone_map: Source card id -> clones made from it.
        removed_memory: How many removed card ids are remembered.
    """

    def __init__(
        self,
        players: dict[str, Player],
        gateway: Optional[PersistenceGateway] = None,
        removed_memory: int = REMOVED_CARD_MEMORY,
    ):
        self.players = players
        self.gateway = gateway
        self.clone_map: dict[str, list[CloneRef]] = {}
        self.removed_memory = removed_memory
        self._removed_card_ids: OrderedDict[str, None] = OrderedDict()

    # -------------------------------------------------------------------------
    # Persistence helpers
    # -------------------------------------------------------------------------

    async def _persist_hand(self, session_id: str, player: Player) -> bool:
        return await persist_safely(
            self.gateway, "persist_hand",
            session_id, player.player_id, player.hand, version=player.hand_version,
        )

    async def _persist_rule_cards(self, player: Player) -> bool:
        return await persist_safely(
            self.gateway, "persist_rule_cards",
            player.player_id, player.rule_cards, version=player.hand_version,
        )

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    def assign_card_ownership(self, player_id: str, cards) -> bool:
        """
        Set the owner of every card in a list.

        Entries that are not Cards are skipped.

        Returns:
            False if cards is not a list, True otherwise.
        """
        if not isinstance(cards, list):
            logger.warning(f"Cannot assign ownership to {player_id}: expected a list of cards")
            return False

        for card in cards:
            if isinstance(card, Card):
                card.set_owner(player_id)
            else:
                logger.debug(f"Skipping non-card entry while assigning to {player_id}")
        return True

    def get_player_owned_cards(self, player_id: str) -> list[Card]:
        """
        Return a player's hand, correcting any card whose owner is wrong.

        Returns:
            The player's hand (the live list), or [] for unknown players.
        """
        player = self.players.get(player_id)
        if player is None:
            return []

        for card in player.hand:
            if card.owner != player_id:
                logger.warning(f"Correcting owner of {card.id}: {card.owner} -> {player_id}")
                card.set_owner(player_id)
        return player.hand

    # -------------------------------------------------------------------------
    # Clone
    # -------------------------------------------------------------------------

    async def clone_card(
        self,
        session_id: str,
        player_id: str,
        target_player_id: str,
        target_card_id: str,
    ) -> ActionResult:
        """
        Give a player a clone of another player's card.

        The target card is looked up in the target player's hand, then rule
        cards. The clone goes into the requester's hand and rule cards.

        Args:
            session_id: Session the players are in.
            player_id: Player requesting (and receiving) the clone.
            target_player_id: Player whose card is cloned.
            target_card_id: Card to clone.

        Returns:
            ActionResult with card (the clone) and source_card_id.
        """
        requester = self.players.get(player_id)
        if requester is None:
            return ActionResult.fail(ErrorCode.PLAYER_NOT_FOUND, f"Player {player_id} not found")

        target = self.players.get(target_player_id)
        if target is None:
            return ActionResult.fail(
                ErrorCode.TARGET_NOT_FOUND, f"Target player {target_player_id} not found"
            )

        source, _ = target.find_card(target_card_id)
        if source is None:
            return ActionResult.fail(
                ErrorCode.CARD_NOT_FOUND,
                f"Card {target_card_id} not found for player {target_player_id}",
            )

        clone = source.make_clone(player_id)
        if source.owner is None:
            clone.source_owner_id = target_player_id
        requester.add_card(clone, CardLocation.HAND)
        requester.add_card(clone, CardLocation.RULE_CARDS)
        self.clone_map.setdefault(source.id, []).append(
            CloneRef(owner_id=player_id, clone_id=clone.id)
        )
        logger.info(f"Player {player_id} cloned {source.id} from {target_player_id} as {clone.id}")

        await self._persist_hand(session_id, requester)
        await self._persist_rule_cards(requester)

        return ActionResult.ok(card=clone, source_card_id=source.id, effect={
            "type": "card_cloned",
            "card_id": clone.id,
            "source_card_id": source.id,
            "player_id": player_id,
        })

    # -------------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------------

    async def transfer_card(
        self,
        session_id: str,
        from_player_id: str,
        to_player_id: str,
        card_id: str,
        reason: str = "",
        context: Optional[dict] = None,
    ) -> ActionResult:
        """
        Move a card from one player's hand to another's.

        Only the giving player's hand is searched. If the card is also one
        of the giver's active rules it stops being one. Both hands are
        persisted; a failed write does not fail the transfer.

        Returns:
            ActionResult with card and transfer (a card_transferred event).
        """
        giver = self.players.get(from_player_id)
        if giver is None:
            return ActionResult.fail(
                ErrorCode.FROM_PLAYER_NOT_FOUND, f"Player {from_player_id} not found"
            )
        receiver = self.players.get(to_player_id)
        if receiver is None:
            return ActionResult.fail(
                ErrorCode.TO_PLAYER_NOT_FOUND, f"Player {to_player_id} not found"
            )

        card = giver.remove_card(card_id, CardLocation.HAND)
        if card is None:
            return ActionResult.fail(
                ErrorCode.CARD_NOT_FOUND, f"Card {card_id} not in {from_player_id}'s hand"
            )

        # An active rule card is also in rule_cards; it goes with the hand copy
        from_rule_cards = giver.remove_card(card_id, CardLocation.RULE_CARDS) is not None
        card.set_owner(to_player_id)
        receiver.add_card(card, CardLocation.HAND)
        transfer = card_transferred(session_id, from_player_id, to_player_id, card, reason, context)
        logger.info(f"Transferred {card.id} from {from_player_id} to {to_player_id} ({reason})")

        await self._persist_hand(session_id, giver)
        await self._persist_hand(session_id, receiver)
        if from_rule_cards:
            await self._persist_rule_cards(giver)

        return ActionResult.ok(card=card, transfer=transfer.to_dict())

    async def swap_card(
        self,
        session_id: str,
        receiving_player_id: str,
        original_player_id: str,
        card_id: str,
    ) -> ActionResult:
        """
        Take a single card from another player.

        The card is looked up in the original player's hand, then rule cards,
        and leaves both. It always lands in the receiving player's hand,
        never in their rule cards.

        Returns:
            ActionResult with card and from_location.
        """
        receiver = self.players.get(receiving_player_id)
        if receiver is None:
            return ActionResult.fail(
                ErrorCode.TO_PLAYER_NOT_FOUND, f"Player {receiving_player_id} not found"
            )
        original = self.players.get(original_player_id)
        if original is None:
            return ActionResult.fail(
                ErrorCode.FROM_PLAYER_NOT_FOUND, f"Player {original_player_id} not found"
            )

        card, location = original.find_card(card_id)
        if card is None:
            return ActionResult.fail(
                ErrorCode.CARD_NOT_FOUND, f"Card {card_id} not found for {original_player_id}"
            )

        from_rule_cards = CardLocation.RULE_CARDS in self._take_from_player(original, card_id)
        card.set_owner(receiving_player_id)
        receiver.add_card(card, CardLocation.HAND)
        logger.info(
            f"Swapped {card.id} from {original_player_id} ({location.value}) "
            f"to {receiving_player_id}"
        )

        await self._persist_hand(session_id, original)
        await self._persist_hand(session_id, receiver)
        if from_rule_cards:
            await self._persist_rule_cards(original)

        return ActionResult.ok(card=card, from_location=location.value, effect={
            "type": "card_swapped",
            "card_id": card.id,
            "from_player_id": original_player_id,
            "to_player_id": receiving_player_id,
        })

    async def exchange_cards(
        self,
        session_id: str,
        give_player_id: str,
        receive_player_id: str,
        give_card_id: str,
        receive_card_id: str,
    ) -> ActionResult:
        """
        Trade one card each between two players.

        Each card keeps its kind of location: a card taken from a hand goes
        into the other player's hand, a card taken from rule cards goes into
        the other player's rule cards, and an active rule held in both goes
        into both. Nothing moves unless both cards exist.

        Returns:
            ActionResult with given_card, received_card and their locations.
        """
        giver = self.players.get(give_player_id)
        if giver is None:
            return ActionResult.fail(
                ErrorCode.FROM_PLAYER_NOT_FOUND, f"Player {give_player_id} not found"
            )
        receiver = self.players.get(receive_player_id)
        if receiver is None:
            return ActionResult.fail(
                ErrorCode.TO_PLAYER_NOT_FOUND, f"Player {receive_player_id} not found"
            )

        give_card, give_location = giver.find_card(give_card_id)
        receive_card, receive_location = receiver.find_card(receive_card_id)
        if give_card is None or receive_card is None:
            missing = give_card_id if give_card is None else receive_card_id
            return ActionResult.fail(ErrorCode.CARD_NOT_FOUND, f"Card {missing} not found")

        given_to = self._take_from_player(giver, give_card_id)
        received_to = self._take_from_player(receiver, receive_card_id)

        give_card.set_owner(receive_player_id)
        receive_card.set_owner(give_player_id)
        for location in given_to:
            receiver.add_card(give_card, location)
        for location in received_to:
            giver.add_card(receive_card, location)
        logger.info(
            f"Exchanged {give_card.id} ({give_player_id}) for {receive_card.id} ({receive_player_id})"
        )

        for player in (giver, receiver):
            await self._persist_hand(session_id, player)
            await self._persist_rule_cards(player)

        return ActionResult.ok(
            given_card=give_card,
            received_card=receive_card,
            given_location=give_location.value,
            received_location=receive_location.value,
        )

    # -------------------------------------------------------------------------
    # Removal
    # -------------------------------------------------------------------------

    def _drop_from_player(self, player: Player, card_id: str) -> bool:
        """Remove a card id from both of a player's collections."""
        return bool(self._take_from_player(player, card_id))

    def _take_from_player(self, player: Player, card_id: str) -> list[CardLocation]:
        """Remove a card id from a player, returning where it was held."""
        return [
            location for location in CardLocation
            if player.remove_card(card_id, location) is not None
        ]

    def _remember_removed(self, card_id: str) -> None:
        self._removed_card_ids[card_id] = None
        self._removed_card_ids.move_to_end(card_id)
        while len(self._removed_card_ids) > self.removed_memory:
            self._removed_card_ids.popitem(last=False)

    def _prune_clone_ref(self, source_card_id: str, clone_id: str) -> None:
        refs = self.clone_map.get(source_card_id)
        if refs is None:
            return
        refs[:] = [ref for ref in refs if ref.clone_id != clone_id]
        if not refs:
            del self.clone_map[source_card_id]

    async def remove_card_from_player(
        self,
        session_id: str,
        player_id: str,
        card_id: str,
    ) -> ActionResult:
        """
        Permanently remove a card from a player.

        The card is removed from the hand and rule cards. Clones of it, and
        clones made from those clones, are removed from their owners. If it
        is itself a clone, its entry in the clone map is pruned.

        Returns:
            ActionResult with card and removed_clone_ids.
        """
        player = self.players.get(player_id)
        if player is None:
            return ActionResult.fail(ErrorCode.PLAYER_NOT_FOUND, f"Player {player_id} not found")

        card, _ = player.find_card(card_id)
        if card is None:
            if card_id in self._removed_card_ids:
                return ActionResult.fail(
                    ErrorCode.CARD_ALREADY_REMOVED, f"Card {card_id} was already removed"
                )
            return ActionResult.fail(
                ErrorCode.CARD_NOT_FOUND, f"Card {card_id} not found for {player_id}"
            )

        self._drop_from_player(player, card_id)
        self._remember_removed(card_id)
        touched = {player_id: player}

        # Clones of clones go too
        removed_clone_ids = []
        pending = [card_id]
        while pending:
            for ref in self.clone_map.pop(pending.pop(), []):
                owner = self.players.get(ref.owner_id)
                if owner is not None and self._drop_from_player(owner, ref.clone_id):
                    touched[owner.player_id] = owner
                self._remember_removed(ref.clone_id)
                removed_clone_ids.append(ref.clone_id)
                pending.append(ref.clone_id)

        if card.is_clone and card.source_card_id:
            self._prune_clone_ref(card.source_card_id, card.id)

        logger.info(
            f"Removed {card_id} from {player_id}"
            + (f" and {len(removed_clone_ids)} clone(s)" if removed_clone_ids else "")
        )

        for touched_player in touched.values():
            await self._persist_hand(session_id, touched_player)
            await self._persist_rule_cards(touched_player)

        return ActionResult.ok(card=card, removed_clone_ids=removed_clone_ids)
