"""
Team balancing policies.

Every policy takes a pool of rated players and returns a freshly built
AllocationResult: ``team_count`` teams of at most ``team_size`` players plus
the reserved overflow. The input pool is never mutated.
"""
import logging
import math
import random
from enum import Enum
from typing import Dict, List, Optional, Tuple

from inhouse.errors import InsufficientPlayers, InvalidConfiguration, UnknownPolicy
from inhouse.models import AllocationResult, Player, Role, Team
from inhouse.rating import inferred_synergy, shuffled, sort_by_rating

logger = logging.getLogger(__name__)

SKILL_TIER_COUNT = 5


class Policy(Enum):
    RANDOM = 'random'
    HIGH_RANKED = 'highRanked'
    PERFECT_MMR = 'perfectMmr'
    HIGH_LOW_SHUFFLE = 'highLowShuffle'
    SKILL_GROUPING = 'skillGrouping'
    ROLE_BALANCED = 'roleBalanced'
    SYNERGY_OPTIMIZED = 'synergyOptimized'
    HYBRID_ADVANCED = 'hybridAdvanced'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for policy in cls:
            if value == policy.value or value == policy.name:
                return policy
        raise UnknownPolicy(f"Unknown balancing policy: {value}")


POLICY_LABELS = {
    Policy.RANDOM: 'Random Teams',
    Policy.HIGH_RANKED: 'High Ranked Balance',
    Policy.PERFECT_MMR: 'Perfect MMR Balance',
    Policy.HIGH_LOW_SHUFFLE: 'High/Low Shuffle',
    Policy.SKILL_GROUPING: 'Skill Tier Grouping',
    Policy.ROLE_BALANCED: 'Role-Balanced Teams',
    Policy.SYNERGY_OPTIMIZED: 'Synergy-Optimized Teams',
    Policy.HYBRID_ADVANCED: 'Hybrid Advanced (Roles + Synergy + MMR)',
}


class RoleRepository:
    """Looks up a player's preferred role."""

    def get(self, player_id):
        raise NotImplementedError


class SynergyRepository:
    """Looks up a recorded synergy score (0-1) for a pair of players."""

    def get(self, player_a, player_b):
        raise NotImplementedError


class InMemoryRoleRepository(RoleRepository):
    def __init__(self, roles=None):
        self._roles = {}
        for player_id, role in (roles or {}).items():
            self.set(player_id, role)

    def get(self, player_id):
        return self._roles.get(str(player_id))

    def set(self, player_id, role):
        parsed = Role.parse(role)
        if parsed is None:
            self._roles.pop(str(player_id), None)
        else:
            self._roles[str(player_id)] = parsed

    def to_dict(self):
        return dict(self._roles)


class InMemorySynergyRepository(SynergyRepository):
    def __init__(self, scores=None):
        self._scores = {}
        for (player_a, player_b), score in (scores or {}).items():
            self.set(player_a, player_b, score)

    @staticmethod
    def _key(player_a, player_b):
        return tuple(sorted((str(player_a), str(player_b))))

    def get(self, player_a, player_b):
        return self._scores.get(self._key(player_a, player_b))

    def set(self, player_a, player_b, score):
        self._scores[self._key(player_a, player_b)] = min(max(float(score), 0.0), 1.0)

    def to_list(self):
        return [{'a': a, 'b': b, 'score': score} for (a, b), score in sorted(self._scores.items())]


class BalancerSession:
    """Everything one balancing run needs, passed explicitly instead of shared state."""

    def __init__(self, players, policy=Policy.HIGH_RANKED, team_count=None, team_size=5,
                 role_repository=None, synergy_repository=None, fallback_policy=None,
                 require_full_teams=False, optimize_synergy=False):
        self.players = list(players)
        self.policy = policy
        self.team_size = team_size
        self.team_count = team_count if team_count is not None else (
            len(self.players) // team_size if team_size else 0)
        self.role_repository = role_repository
        self.synergy_repository = synergy_repository
        self.fallback_policy = fallback_policy
        self.require_full_teams = require_full_teams
        self.optimize_synergy = optimize_synergy

    def options(self):
        return {
            'role_repository': self.role_repository,
            'synergy_repository': self.synergy_repository,
            'fallback_policy': self.fallback_policy,
            'require_full_teams': self.require_full_teams,
            'optimize_synergy': self.optimize_synergy,
        }


class _Context:
    def __init__(self, options, rng):
        self.rng = rng
        self.role_repository = options.get('role_repository')
        self.synergy_repository = options.get('synergy_repository')
        self.optimize_synergy = bool(options.get('optimize_synergy', False))

    def role_of(self, player):
        if self.role_repository is not None:
            role = self.role_repository.get(player.id)
            if role:
                return Role.parse(role)
        return player.role

    def synergy(self, player_a, player_b):
        if player_a.id == player_b.id:
            return 1.0
        if self.synergy_repository is not None:
            score = self.synergy_repository.get(player_a.id, player_b.id)
            if score is not None:
                return score
        return inferred_synergy(player_a.rating, player_b.rating)


def snake_draft(ordered_players, team_count) -> List[List[Player]]:
    """Assign picks in snake order: 0..N-1, then N-1..0, and so on."""
    rosters = [[] for _ in range(team_count)]
    for pick, player in enumerate(ordered_players):
        draft_round, slot = divmod(pick, team_count)
        team_index = slot if draft_round % 2 == 0 else team_count - 1 - slot
        rosters[team_index].append(player)
    return rosters


def _sequential_fill(players, team_count, team_size):
    return [list(players[i * team_size:(i + 1) * team_size]) for i in range(team_count)]


def _first_open_team(rosters, start, team_size):
    """Index of the first non-full team at or after ``start`` (wrapping), else None."""
    team_count = len(rosters)
    for offset in range(team_count):
        index = (start + offset) % team_count
        if len(rosters[index]) < team_size:
            return index
    return None


def team_synergy(players, synergy) -> float:
    """Mean pairwise synergy of a roster; 0 for fewer than two players."""
    if len(players) < 2:
        return 0.0
    total = 0.0
    pairs = 0
    for i in range(len(players)):
        for j in range(i + 1, len(players)):
            total += synergy(players[i], players[j])
            pairs += 1
    return total / pairs


def synergy_matrix(players, ctx) -> Dict[Tuple[str, str], float]:
    return {(a.id, b.id): ctx.synergy(a, b) for a in players for b in players}


def _random_teams(players, team_count, team_size, ctx):
    needed = team_count * team_size
    pool = shuffled(players, ctx.rng)
    return _sequential_fill(pool[:needed], team_count, team_size), pool[needed:], {}


def _high_ranked_teams(players, team_count, team_size, ctx):
    needed = team_count * team_size
    ranked = sort_by_rating(players)
    selected = shuffled(ranked[:needed], ctx.rng)
    return snake_draft(selected, team_count), ranked[needed:], {}


def _perfect_mmr_teams(players, team_count, team_size, ctx):
    needed = team_count * team_size
    ranked = sort_by_rating(shuffled(players, ctx.rng))
    selected, reserved = ranked[:needed], ranked[needed:]

    rosters = [[] for _ in range(team_count)]
    totals = [0] * team_count
    remaining = iter(selected)
    exhausted = False
    for _ in range(team_size):
        for team_index in sorted(range(team_count), key=lambda i: (totals[i], i)):
            player = next(remaining, None)
            if player is None:
                exhausted = True
                break
            rosters[team_index].append(player)
            totals[team_index] += player.rating
        if exhausted:
            break
    return rosters, reserved, {}


def _select_high_low(players, team_count, needed, rng):
    """Keep the top and bottom bands, fill the rest from a shuffled middle."""
    ranked = sort_by_rating(players)
    if len(ranked) <= needed:
        return ranked, []
    if needed < team_count * 2:
        top_count = math.ceil(needed / 2)
        bottom_count = needed - top_count
        top = ranked[:top_count]
        bottom = ranked[len(ranked) - bottom_count:] if bottom_count else []
        middle = ranked[top_count:len(ranked) - bottom_count]
        return top + bottom, middle
    top = ranked[:team_count]
    bottom = ranked[-team_count:]
    middle = shuffled(ranked[team_count:-team_count], rng)
    middle_count = needed - team_count * 2
    return top + middle[:middle_count] + bottom, middle[middle_count:]


def _high_low_shuffle_teams(players, team_count, team_size, ctx):
    needed = team_count * team_size
    selected, reserved = _select_high_low(players, team_count, needed, ctx.rng)

    if len(selected) < team_count * 2:
        logger.debug("highLowShuffle: %d players selected, falling back to random fill", len(selected))
        return _sequential_fill(shuffled(selected, ctx.rng), team_count, team_size), reserved, {}

    ranked = sort_by_rating(selected)
    top = shuffled(ranked[:team_count], ctx.rng)
    bottom = shuffled(ranked[-team_count:], ctx.rng)
    middle = shuffled(ranked[team_count:-team_count], ctx.rng)

    rosters = [[] for _ in range(team_count)]
    for player, team_index in zip(top, shuffled(range(team_count), ctx.rng)):
        rosters[team_index].append(player)
    for player, team_index in zip(bottom, shuffled(range(team_count), ctx.rng)):
        rosters[team_index].append(player)

    order = shuffled(range(team_count), ctx.rng)
    for k, player in enumerate(middle):
        team_index = _first_open_team(rosters, order[k % team_count], team_size)
        if team_index is None:
            reserved.append(player)
        else:
            rosters[team_index].append(player)
    return rosters, reserved, {}


def _skill_grouping_teams(players, team_count, team_size, ctx):
    ranked = sort_by_rating(players)
    tier_size = math.ceil(len(ranked) / SKILL_TIER_COUNT) if ranked else 0
    rosters = [[] for _ in range(team_count)]
    reserved = []
    for tier_start in range(0, len(ranked), max(tier_size, 1)):
        tier = ranked[tier_start:tier_start + tier_size]
        for index, player in enumerate(tier):
            team_index = _first_open_team(rosters, index % team_count, team_size)
            if team_index is None:
                reserved.append(player)
            else:
                rosters[team_index].append(player)
    return rosters, reserved, {}


def _role_balanced_rosters(players, team_count, team_size, ctx):
    by_role = {role: [] for role in Role.ALL}
    unassigned = []
    for player in sort_by_rating(players):
        role = ctx.role_of(player)
        if role in by_role:
            by_role[role].append(player)
        else:
            unassigned.append(player)

    rosters = [[] for _ in range(team_count)]
    remaining = list(unassigned)
    for role in Role.CORE_ROLES + Role.SUPPORT_ROLES:
        role_players = by_role[role]
        for team_index, player in enumerate(role_players[:team_count]):
            if len(rosters[team_index]) < team_size:
                rosters[team_index].append(player)
            else:
                remaining.append(player)
        remaining.extend(role_players[team_count:])

    reserved = []
    for player in sort_by_rating(remaining):
        open_teams = [i for i in range(team_count) if len(rosters[i]) < team_size]
        if not open_teams:
            reserved.append(player)
            continue
        target = min(open_teams, key=lambda i: (len(rosters[i]), i))
        rosters[target].append(player)
    return rosters, reserved


def _role_balanced_teams(players, team_count, team_size, ctx):
    rosters, reserved = _role_balanced_rosters(players, team_count, team_size, ctx)
    return rosters, reserved, {}


def _synergy_optimized_teams(players, team_count, team_size, ctx):
    needed = team_count * team_size
    ranked = sort_by_rating(players)
    selected, reserved = ranked[:needed], ranked[needed:]
    matrix = synergy_matrix(selected, ctx)

    rosters = [[] for _ in range(team_count)]
    for player in selected:
        best_team = None
        best_score = -1.0
        for team_index, roster in enumerate(rosters):
            if len(roster) >= team_size:
                continue
            if roster:
                score = sum(matrix[(player.id, member.id)] for member in roster) / len(roster)
            else:
                score = 0.0
            if score > best_score:
                best_team, best_score = team_index, score
        rosters[best_team].append(player)

    def lookup(a, b):
        return matrix[(a.id, b.id)]

    return rosters, reserved, {'synergy': [team_synergy(r, lookup) for r in rosters]}


def _improve_synergy_by_swaps(rosters, ctx, max_passes=50):
    """Swap same-role players between teams while total synergy strictly improves."""
    swaps = 0
    for _ in range(max_passes):
        improved = False
        for i in range(len(rosters)):
            for j in range(i + 1, len(rosters)):
                for a_index, a in enumerate(rosters[i]):
                    for b_index, b in enumerate(rosters[j]):
                        if ctx.role_of(a) != ctx.role_of(b):
                            continue
                        before = team_synergy(rosters[i], ctx.synergy) + team_synergy(rosters[j], ctx.synergy)
                        team_i = rosters[i][:a_index] + [b] + rosters[i][a_index + 1:]
                        team_j = rosters[j][:b_index] + [a] + rosters[j][b_index + 1:]
                        after = team_synergy(team_i, ctx.synergy) + team_synergy(team_j, ctx.synergy)
                        if after > before + 1e-9:
                            rosters[i], rosters[j] = team_i, team_j
                            swaps += 1
                            improved = True
                            break
                    if improved:
                        break
                if improved:
                    break
            if improved:
                break
        if not improved:
            break
    return swaps


def _hybrid_advanced_teams(players, team_count, team_size, ctx):
    rosters, reserved = _role_balanced_rosters(players, team_count, team_size, ctx)
    metrics = {}
    if ctx.optimize_synergy:
        metrics['swaps'] = _improve_synergy_by_swaps(rosters, ctx)
    metrics['synergy'] = [team_synergy(r, ctx.synergy) for r in rosters]
    for number, score in enumerate(metrics['synergy'], start=1):
        logger.debug("Team %d synergy score: %.3f", number, score)
    return rosters, reserved, metrics


POLICY_FUNCTIONS = {
    Policy.RANDOM: _random_teams,
    Policy.HIGH_RANKED: _high_ranked_teams,
    Policy.PERFECT_MMR: _perfect_mmr_teams,
    Policy.HIGH_LOW_SHUFFLE: _high_low_shuffle_teams,
    Policy.SKILL_GROUPING: _skill_grouping_teams,
    Policy.ROLE_BALANCED: _role_balanced_teams,
    Policy.SYNERGY_OPTIMIZED: _synergy_optimized_teams,
    Policy.HYBRID_ADVANCED: _hybrid_advanced_teams,
}

_unhandled = set(Policy) - set(POLICY_FUNCTIONS)
if _unhandled:
    raise RuntimeError(f"Balancing policies without an implementation: {sorted(p.value for p in _unhandled)}")


def _resolve_policy(policy, fallback_policy):
    try:
        return Policy.parse(policy)
    except UnknownPolicy:
        if not fallback_policy:
            raise
        logger.warning("Unknown balancing policy %r, falling back to %s", policy, fallback_policy)
        return Policy.parse(fallback_policy)


def _as_player(entry):
    return entry if isinstance(entry, Player) else Player.from_dict(entry)


def allocate(players, policy, team_count, team_size, options=None,
             rng: Optional[random.Random] = None) -> AllocationResult:
    """
    Partition ``players`` into ``team_count`` teams of at most ``team_size``.

    Players that do not fit are returned in ``reserved``, highest rating
    first. ``options`` may carry ``role_repository``, ``synergy_repository``,
    ``fallback_policy``, ``require_full_teams`` and ``optimize_synergy``.
    """
    options = options or {}
    if not isinstance(team_count, int) or isinstance(team_count, bool) or team_count < 1:
        raise InvalidConfiguration(f"Team count must be a positive integer, got {team_count!r}")
    if not isinstance(team_size, int) or isinstance(team_size, bool) or team_size < 1:
        raise InvalidConfiguration(f"Team size must be a positive integer, got {team_size!r}")

    pool = [_as_player(p) for p in players]
    ids = [p.id for p in pool]
    if len(set(ids)) != len(ids):
        raise InvalidConfiguration("Player ids must be unique within a pool")
    if options.get('require_full_teams') and len(pool) < team_size * 2:
        raise InsufficientPlayers(
            f"Not enough players for {team_size}v{team_size} teams. Need at least {team_size * 2} players.")

    resolved = _resolve_policy(policy, options.get('fallback_policy'))
    ctx = _Context(options, rng or random.Random())
    rosters, reserved, metrics = POLICY_FUNCTIONS[resolved](pool, team_count, team_size, ctx)

    teams = [Team(f"Team {number}", roster) for number, roster in enumerate(rosters, start=1)]
    result = AllocationResult(teams, sort_by_rating(reserved), resolved.value, metrics)
    logger.debug("Allocated %d players into %d teams using %s (%d reserved): %s",
                 len(pool), len(teams), resolved.value, len(result.reserved),
                 [t.total_rating for t in teams])
    return result


def allocate_session(session: BalancerSession, rng: Optional[random.Random] = None) -> AllocationResult:
    return allocate(session.players, session.policy, session.team_count, session.team_size,
                    session.options(), rng=rng)
