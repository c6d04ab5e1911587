"""
Rulette Simulation Runner

Plays scripted sessions against the engine to exercise every card type and
report how decks, effects and errors behave over many turns.
Sessions run in memory unless --redis is given, in which case every write
is mirrored to the StateCache at REDIS_URL.

Usage:
    python simulate.py [num_sessions] [num_players] [--redis]
    python simulate.py detail [num_players] [--redis]

Examples:
    python simulate.py 10        # Run 10 sessions with 4 players each
    python simulate.py 50 2      # Run 50 sessions with 2 players each
    python simulate.py detail 3  # One session, every turn printed
"""

import asyncio
import random
import sys
from typing import Optional

from cards import Card, CardType
from config import config
from effects import ActionContext
from game import GameManager
from logging_config import log_context, setup_logging
from models.results import ActionResult
from stores.state_cache import StateCache

PLAYER_NAMES = ["Ada", "Bram", "Cleo", "Dev", "Esme", "Finn"]


class SimulationStats:
    """Track simulation statistics."""

    def __init__(self):
        self.sessions_played = 0
        self.total_turns = 0
        self.draws_by_deck: dict[str, int] = {}
        self.effects: dict[str, int] = {}
        self.errors: dict[str, int] = {}
        self.referee_turns: dict[str, int] = {}
        self.reshuffles = 0
        self.prompt_judgments: dict[str, int] = {}

    def record_turn(self, deck_type: str, result: ActionResult, card_type: Optional[str] = None):
        self.total_turns += 1
        self.draws_by_deck[deck_type] = self.draws_by_deck.get(deck_type, 0) + 1
        if result.success:
            effect = result.get("effect") or {}
            name = effect.get("type") or f"{card_type or 'unknown'}_applied"
            self.effects[name] = self.effects.get(name, 0) + 1
        else:
            code = result.error.value if result.error else "unknown"
            self.errors[code] = self.errors.get(code, 0) + 1

    def record_judgment(self, result: ActionResult):
        key = result.get("judgment") if result.success else result.error.value
        self.prompt_judgments[key] = self.prompt_judgments.get(key, 0) + 1

    def record_referee(self, name: Optional[str]):
        key = name or "(none)"
        self.referee_turns[key] = self.referee_turns.get(key, 0) + 1

    def report(self) -> str:
        lines = [
            "=" * 50,
            "SIMULATION RESULTS",
            "=" * 50,
            f"Sessions played: {self.sessions_played}",
            f"Total turns: {self.total_turns}",
            f"Avg turns/session: {self.total_turns / max(1, self.sessions_played):.1f}",
            f"Discard reshuffles: {self.reshuffles}",
            "",
            "DRAWS BY DECK:",
        ]
        for deck_type, count in sorted(self.draws_by_deck.items()):
            lines.append(f"  {deck_type}: {count}")

        lines.append("")
        lines.append("EFFECTS APPLIED:")
        total = sum(self.effects.values())
        for name, count in sorted(self.effects.items(), key=lambda x: -x[1]):
            lines.append(f"  {name}: {count} ({count / max(1, total) * 100:.1f}%)")

        lines.append("")
        lines.append("ERRORS:")
        if not self.errors:
            lines.append("  none")
        for code, count in sorted(self.errors.items(), key=lambda x: -x[1]):
            lines.append(f"  {code}: {count}")

        lines.append("")
        lines.append("REFEREE ROUNDS:")
        for name, count in sorted(self.referee_turns.items()):
            lines.append(f"  {name}: {count}")

        lines.append("")
        lines.append("PROMPT JUDGMENTS:")
        if not self.prompt_judgments:
            lines.append("  none")
        for judgment, count in sorted(self.prompt_judgments.items()):
            lines.append(f"  {judgment}: {count}")

        return "\n".join(lines)


def choose_context(
    manager: GameManager,
    session_id: str,
    player_id: str,
    card: Card,
    rng: random.Random,
) -> ActionContext:
    """
    Pick the selections a player would make in the UI for a drawn card.

    Clone and swap target a random card held by another player; flip
    targets one of the player's own rule cards when there is one.
    """
    session = manager.get_session(session_id)

    if card.type in (CardType.CLONE, CardType.SWAP):
        candidates = [
            (pid, held.id)
            for pid in session.players
            if pid != player_id
            for held in manager.get_player(pid).hand
        ]
        if not candidates:
            return ActionContext()
        target_player_id, target_card_id = rng.choice(candidates)
        return ActionContext(
            target_player_id=target_player_id,
            target_card_id=target_card_id,
            reason=card.type.value,
        )

    if card.type == CardType.FLIP:
        flippable = [c for c in manager.get_player(player_id).rule_cards if c.can_flip()]
        if flippable:
            return ActionContext(target_card_id=rng.choice(flippable).id)

    return ActionContext()


async def play_turn(
    manager: GameManager,
    session_id: str,
    player_id: str,
    rng: random.Random,
    stats: SimulationStats,
) -> tuple[str, ActionResult]:
    """
    Spin the wheel, draw and apply one card.

    Returns:
        (deck type landed on, effect result).
    """
    card_manager = manager.card_manager
    deck_type = rng.choice(card_manager.get_deck_types())

    if card_manager.remaining(deck_type) == 0 and card_manager.reshuffle_discard(deck_type):
        stats.reshuffles += 1

    drawn = manager.safe_draw(session_id, deck_type, player_id)
    if not drawn.success:
        stats.record_turn(deck_type, drawn)
        return deck_type, drawn

    card = drawn.get("card")
    context = choose_context(manager, session_id, player_id, card, rng)
    result = await manager.activate_drawn_card(session_id, deck_type, player_id, card, context)

    if card.type == CardType.PROMPT and result.success:
        # Referee rules on the prompt straight away
        session = manager.get_session(session_id)
        if session.referee:
            judged = await manager.judge_prompt(session_id, session.referee, rng.random() < 0.5)
            stats.record_judgment(judged)
        else:
            manager.clear_prompt(session_id)

    stats.record_turn(deck_type, result, card.type.value)
    return deck_type, result


async def run_session(
    num_players: int,
    rounds: int,
    stats: SimulationStats,
    rng: random.Random,
    verbose: bool = False,
    gateway: Optional[StateCache] = None,
) -> GameManager:
    """Run a complete session. Returns the manager for inspection."""
    manager = GameManager.from_card_file(gateway=gateway, rng=rng)
    names = PLAYER_NAMES[:num_players]

    session = await manager.create_session("p0", names[0])
    for i, name in enumerate(names[1:], start=1):
        await manager.add_player(session.session_id, f"p{i}", name)

    for round_num in range(1, rounds + 1):
        if gateway is not None:
            await gateway.touch_session(session.session_id)
        referee_id = await manager.assign_referee_card(session.session_id)
        referee = manager.get_player(referee_id) if referee_id else None
        stats.record_referee(referee.display_name if referee else None)
        if verbose:
            print(f"\nRound {round_num} - referee: {referee.display_name if referee else 'none'}")

        for player_id in list(session.players):
            with log_context(session_id=session.session_id, player_id=player_id):
                deck_type, result = await play_turn(manager, session.session_id, player_id, rng, stats)
            if verbose:
                name = manager.get_player(player_id).display_name
                if result.success:
                    effect = result.get("effect") or {}
                    outcome = f"{effect.get('type')}: {effect.get('text') or effect.get('card_id')}"
                else:
                    outcome = f"{result.error.value} ({result.message})"
                print(f"  {name} spins {deck_type} -> {outcome}")

    stats.sessions_played += 1
    return manager


def print_hands(manager: GameManager, session_id: str):
    for player_id in manager.get_session(session_id).players:
        player = manager.get_player(player_id)
        rules = [c.get_current_rule() or c.display_name for c in player.rule_cards]
        print(f"  {player.display_name}: {len(player.hand)} cards in hand")
        for rule in rules:
            print(f"    - {rule}")


async def open_gateway(redis_url: Optional[str]) -> Optional[StateCache]:
    if not redis_url:
        return None
    return await StateCache.create(redis_url, ttl_hours=config.STATE_TTL_HOURS)


def run_simulation(
    num_sessions: int = 10,
    num_players: int = 4,
    rounds: int = 5,
    redis_url: Optional[str] = None,
):
    """Run multiple sessions and report statistics."""

    print(f"\nRunning {num_sessions} sessions with {num_players} players each...")
    if redis_url:
        print(f"Mirroring state to {redis_url}")
    print("=" * 50)

    stats = SimulationStats()
    rng = random.Random()

    async def run_all():
        gateway = await open_gateway(redis_url)
        try:
            for i in range(num_sessions):
                await run_session(num_players, rounds, stats, rng, gateway=gateway)
                print(f"Session {i + 1}/{num_sessions} done")
        finally:
            if gateway is not None:
                await gateway.close()

    asyncio.run(run_all())

    print("\n")
    print(stats.report())


def run_detailed_session(num_players: int = 4, rounds: int = 3, redis_url: Optional[str] = None):
    """Run a single session with detailed output."""

    print(f"\nRunning detailed session with {num_players} players...")
    print("=" * 50)

    stats = SimulationStats()
    rng = random.Random()

    async def run_one():
        gateway = await open_gateway(redis_url)
        try:
            return await run_session(num_players, rounds, stats, rng, verbose=True, gateway=gateway)
        finally:
            if gateway is not None:
                await gateway.close()

    manager = asyncio.run(run_one())
    session_id = next(iter(manager.sessions))

    print("\n" + "=" * 50)
    print("FINAL RULES")
    print("=" * 50)
    print_hands(manager, session_id)


if __name__ == "__main__":
    setup_logging(level=config.log_level, environment=config.ENVIRONMENT)

    args = [arg for arg in sys.argv[1:] if arg != "--redis"]
    redis_url = config.REDIS_URL if "--redis" in sys.argv else None

    if args and args[0] == "detail":
        num_players = int(args[1]) if len(args) > 1 else 4
        run_detailed_session(num_players, redis_url=redis_url)
    else:
        num_sessions = int(args[0]) if args else 10
        num_players = int(args[1]) if len(args) > 1 else 4
        run_simulation(num_sessions, num_players, redis_url=redis_url)
