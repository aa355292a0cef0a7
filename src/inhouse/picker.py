"""
Random player picker with a temporary exclusion list and pick history.
"""
import random
from datetime import datetime
from typing import List, Optional

from inhouse.errors import InsufficientPlayers, InvalidConfiguration
from inhouse.models import Player
from inhouse.rating import shuffled


class RandomPicker:
    def __init__(self, players, rng: Optional[random.Random] = None):
        self.players = [p if isinstance(p, Player) else Player.from_dict(p) for p in players]
        self.excluded = set()
        self.history = []
        self._rng = rng or random.Random()

    def available(self) -> List[Player]:
        return [p for p in self.players if p.id not in self.excluded]

    def exclude(self, player_id):
        player_id = str(player_id)
        if not any(p.id == player_id for p in self.players):
            raise InvalidConfiguration(f"Player {player_id} is not in the picker pool")
        self.excluded.add(player_id)

    def restore(self, player_id):
        self.excluded.discard(str(player_id))

    def restore_all(self):
        self.excluded.clear()

    def _record(self, players, mode):
        self.history.insert(0, {
            'players': [p.to_dict() for p in players],
            'mode': mode,
            'timestamp': datetime.now().isoformat(),
        })

    def pick(self) -> Player:
        pool = self.available()
        if not pool:
            raise InsufficientPlayers("No players available to pick from")
        player = pool[self._rng.randrange(len(pool))]
        self._record([player], 'single')
        return player

    def pick_many(self, count) -> List[Player]:
        if not isinstance(count, int) or count < 1:
            raise InvalidConfiguration(f"Pick count must be a positive integer, got {count!r}")
        pool = self.available()
        if count > len(pool):
            raise InsufficientPlayers(f"Cannot pick {count} players from a pool of {len(pool)}")
        picked = shuffled(pool, self._rng)[:count]
        self._record(picked, 'multiple')
        return picked

    def clear_history(self):
        self.history = []
