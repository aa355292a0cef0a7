"""
Unit tests for the team balancing policies.
"""
import pytest
import random
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from inhouse.balancing import (
    POLICY_FUNCTIONS,
    BalancerSession,
    InMemoryRoleRepository,
    InMemorySynergyRepository,
    Policy,
    allocate,
    allocate_session,
    snake_draft,
    team_synergy,
)
from inhouse.errors import InsufficientPlayers, InvalidConfiguration, UnknownPolicy
from inhouse.models import Player, Role
from inhouse.rating import inferred_synergy


ALL_POLICIES = [p.value for p in Policy]


def assert_partition(players, result):
    """Every input player is in exactly one team or the reserved list."""
    placed = [p.id for team in result.teams for p in team.players] + [p.id for p in result.reserved]
    assert sorted(placed) == sorted(p.id for p in players)
    assert len(placed) == len(set(placed))


class TestAllPolicies:
    """Partition, MMR conservation and size bounds for every policy."""

    @pytest.mark.parametrize('policy', ALL_POLICIES)
    def test_partition_complete(self, policy, player_pool, rng):
        result = allocate(player_pool, policy, 2, 5, rng=rng)
        assert_partition(player_pool, result)
        assert len(result.teams) == 2

    @pytest.mark.parametrize('policy', ALL_POLICIES)
    def test_team_size_bound(self, policy, player_pool, rng):
        result = allocate(player_pool, policy, 3, 3, rng=rng)
        assert all(len(team.players) <= 3 for team in result.teams)
        assert_partition(player_pool, result)

    @pytest.mark.parametrize('policy', ALL_POLICIES)
    def test_mmr_conservation(self, policy, role_players, rng):
        result = allocate(role_players, policy, 2, 5, rng=rng)
        for team in result.teams:
            assert team.total_rating == sum(p.rating for p in team.players)
            expected_avg = round(team.total_rating / len(team.players)) if team.players else 0
            assert team.average_rating == expected_avg

    @pytest.mark.parametrize('policy', ALL_POLICIES)
    def test_input_not_mutated(self, policy, player_pool, rng):
        before = list(player_pool)
        allocate(player_pool, policy, 2, 5, rng=rng)
        assert player_pool == before

    @pytest.mark.parametrize('policy', ALL_POLICIES)
    def test_reserved_sorted_by_rating(self, policy, player_pool, rng):
        result = allocate(player_pool, policy, 2, 4, rng=rng)
        ratings = [p.rating for p in result.reserved]
        assert ratings == sorted(ratings, reverse=True)

    def test_every_policy_has_an_implementation(self):
        assert set(POLICY_FUNCTIONS) == set(Policy)


class TestConfigurationErrors:
    def test_invalid_team_count(self, player_pool):
        with pytest.raises(InvalidConfiguration):
            allocate(player_pool, 'random', 0, 5)

    def test_invalid_team_size(self, player_pool):
        with pytest.raises(InvalidConfiguration):
            allocate(player_pool, 'random', 2, 0)

    def test_unknown_policy_fails_loudly(self, player_pool):
        with pytest.raises(UnknownPolicy):
            allocate(player_pool, 'mostFun', 2, 5)

    def test_unknown_policy_fallback(self, player_pool, rng):
        result = allocate(player_pool, 'mostFun', 2, 5, {'fallback_policy': 'random'}, rng=rng)
        assert result.policy == 'random'
        assert_partition(player_pool, result)

    def test_require_full_teams(self, eight_players):
        with pytest.raises(InsufficientPlayers):
            allocate(eight_players, 'random', 2, 5, {'require_full_teams': True})

    def test_duplicate_player_ids(self):
        players = [Player('1', 'A', 1000), Player('1', 'B', 2000)]
        with pytest.raises(InvalidConfiguration):
            allocate(players, 'random', 1, 2)

    def test_policy_enum_accepted(self, player_pool, rng):
        result = allocate(player_pool, Policy.PERFECT_MMR, 2, 5, rng=rng)
        assert result.policy == 'perfectMmr'

    def test_dict_records_accepted(self, rng):
        records = [{'id': str(i), 'name': f'P{i}', 'peakmmr': 1000 + i} for i in range(4)]
        result = allocate(records, 'highRanked', 2, 2, rng=rng)
        assert sum(len(t.players) for t in result.teams) == 4

    def test_infinite_rating_counts_as_zero(self, rng):
        records = [{'id': 'a', 'name': 'A', 'peakmmr': 'Infinity'}, {'id': 'b', 'name': 'B', 'peakmmr': 3000}]
        result = allocate(records, 'random', 1, 2, rng=rng)
        assert result.teams[0].total_rating == 3000


class TestRandomPolicy:
    def test_sequential_fill(self, player_pool, rng):
        result = allocate(player_pool, 'random', 2, 5, rng=rng)
        assert [len(t.players) for t in result.teams] == [5, 5]
        assert len(result.reserved) == 2

    def test_seeded_runs_are_reproducible(self, player_pool):
        first = allocate(player_pool, 'random', 2, 5, rng=random.Random(7))
        second = allocate(player_pool, 'random', 2, 5, rng=random.Random(7))
        assert [[p.id for p in t.players] for t in first.teams] == \
               [[p.id for p in t.players] for t in second.teams]


class TestHighRanked:
    def test_snake_draft_three_teams_two_rounds(self):
        """Round 0 goes 0,1,2 and round 1 comes back 2,1,0."""
        picks = ['a', 'b', 'c', 'd', 'e', 'f']
        assert snake_draft(picks, 3) == [['a', 'f'], ['b', 'e'], ['c', 'd']]

    def test_snake_draft_third_round_turns_again(self):
        picks = list(range(9))
        assert snake_draft(picks, 3) == [[0, 5, 6], [1, 4, 7], [2, 3, 8]]

    def test_lowest_rated_are_reserved(self, player_pool, rng):
        result = allocate(player_pool, 'highRanked', 2, 5, rng=rng)
        assert [p.id for p in result.reserved] == ['p11', 'p12']

    def test_ties_broken_by_name(self, rng):
        players = [Player('1', 'Beta', 3000), Player('2', 'Alpha', 3000), Player('3', 'Gamma', 1000)]
        result = allocate(players, 'highRanked', 1, 2, rng=rng)
        assert [p.name for p in result.reserved] == ['Gamma']
        tied = [Player('1', 'Beta', 3000), Player('2', 'Alpha', 3000)]
        result = allocate(tied, 'highRanked', 1, 1, rng=rng)
        assert result.teams[0].players[0].name == 'Alpha'


class TestPerfectMmr:
    def test_end_to_end_balanced(self, eight_players, rng):
        result = allocate(eight_players, 'perfectMmr', 2, 4, rng=rng)
        totals = [t.total_rating for t in result.teams]
        assert abs(totals[0] - totals[1]) <= 300
        assert len(result.reserved) == 0
        assert_partition(eight_players, result)

    def test_greedy_rounds(self, eight_players, rng):
        """Each round hands the next best player to the lowest-total team first."""
        result = allocate(eight_players, 'perfectMmr', 2, 4, rng=rng)
        assert [p.rating for p in result.teams[0].players] == [5000, 4400, 3000, 2700]
        assert [p.rating for p in result.teams[1].players] == [4800, 4600, 2900, 2800]

    def test_reserves_lowest(self, player_pool, rng):
        result = allocate(player_pool, 'perfectMmr', 2, 5, rng=rng)
        assert [p.id for p in result.reserved] == ['p11', 'p12']


class TestHighLowShuffle:
    def test_each_team_gets_one_top_and_one_bottom(self, player_pool, rng):
        result = allocate(player_pool, 'highLowShuffle', 2, 5, rng=rng)
        for team in result.teams:
            ids = {p.id for p in team.players}
            assert len(ids & {'p1', 'p2'}) == 1
            assert len(ids & {'p11', 'p12'}) == 1
            assert len(team.players) == 5

    def test_reserved_come_from_the_middle(self, player_pool, rng):
        result = allocate(player_pool, 'highLowShuffle', 2, 5, rng=rng)
        reserved_ids = {p.id for p in result.reserved}
        assert len(reserved_ids) == 2
        assert not reserved_ids & {'p1', 'p2', 'p11', 'p12'}

    def test_fallback_for_single_player_teams(self, player_pool, rng):
        result = allocate(player_pool[:6], 'highLowShuffle', 4, 1, rng=rng)
        assert all(len(t.players) == 1 for t in result.teams)
        assert_partition(player_pool[:6], result)
        assigned = {p.id for t in result.teams for p in t.players}
        assert {'p1', 'p6'} <= assigned

    def test_whole_pool_used_when_it_fits(self, eight_players, rng):
        result = allocate(eight_players, 'highLowShuffle', 2, 4, rng=rng)
        assert result.reserved == []


class TestSkillGrouping:
    def test_each_tier_split_across_teams(self, role_players, rng):
        result = allocate(role_players, 'skillGrouping', 2, 5, rng=rng)
        # Tiers of two: (r1, r2), (r3, r4), ... one of each per team
        assert [p.id for p in result.teams[0].players] == ['r1', 'r3', 'r5', 'r7', 'r9']
        assert [p.id for p in result.teams[1].players] == ['r2', 'r4', 'r6', 'r8', 'r10']

    def test_full_teams_are_skipped(self, player_pool, rng):
        result = allocate(player_pool, 'skillGrouping', 2, 5, rng=rng)
        assert [p.id for p in result.teams[0].players] == ['p1', 'p3', 'p4', 'p6', 'p7']
        assert [p.id for p in result.teams[1].players] == ['p2', 'p5', 'p8', 'p9', 'p10']
        assert [p.id for p in result.reserved] == ['p11', 'p12']


class TestRoleBalanced:
    def test_one_of_each_role_per_team(self, role_players, rng):
        result = allocate(role_players, 'roleBalanced', 2, 5, rng=rng)
        for team in result.teams:
            assert sorted(p.role for p in team.players) == sorted(Role.ALL)

    def test_best_core_goes_to_first_team(self, role_players, rng):
        result = allocate(role_players, 'roleBalanced', 2, 5, rng=rng)
        assert [p.id for p in result.teams[0].players] == ['r1', 'r2', 'r3', 'r5', 'r4']
        assert [p.id for p in result.teams[1].players] == ['r6', 'r7', 'r8', 'r10', 'r9']

    def test_roles_from_repository(self, rng):
        players = [Player(str(i), f'P{i}', 5000 - i * 100) for i in range(4)]
        roles = InMemoryRoleRepository({'0': 'carry', '1': 'carry', '2': 'mid', '3': 'mid'})
        result = allocate(players, 'roleBalanced', 2, 2, {'role_repository': roles}, rng=rng)
        for team in result.teams:
            assert sorted(roles.get(p.id) for p in team.players) == ['carry', 'mid']

    def test_unassigned_fill_smallest_team(self, rng):
        players = [Player('c', 'Carry', 6000, 'carry')] + \
                  [Player(str(i), f'Flex {i}', 4000 - i * 10) for i in range(3)]
        result = allocate(players, 'roleBalanced', 2, 2, rng=rng)
        assert [p.id for p in result.teams[0].players] == ['c', '1']
        assert [p.id for p in result.teams[1].players] == ['0', '2']

    def test_excess_players_reserved(self, role_players, rng):
        result = allocate(role_players, 'roleBalanced', 1, 5, rng=rng)
        assert len(result.teams[0].players) == 5
        assert len(result.reserved) == 5
        assert_partition(role_players, result)


class TestSynergyOptimized:
    def test_greedy_synergy_assignment(self, rng):
        players = [Player('a', 'A', 5000), Player('b', 'B', 4900),
                   Player('c', 'C', 4800), Player('d', 'D', 4700)]
        synergies = InMemorySynergyRepository({('a', 'b'): 0.5})
        result = allocate(players, 'synergyOptimized', 2, 2, {'synergy_repository': synergies}, rng=rng)
        assert [p.id for p in result.teams[0].players] == ['a', 'b']
        assert [p.id for p in result.teams[1].players] == ['c', 'd']
        assert result.metrics['synergy'][0] == 0.5
        assert abs(result.metrics['synergy'][1] - inferred_synergy(4800, 4700)) < 1e-9

    def test_reserves_lowest_rated(self, player_pool, rng):
        result = allocate(player_pool, 'synergyOptimized', 2, 5, rng=rng)
        assert [p.id for p in result.reserved] == ['p11', 'p12']

    def test_team_synergy_of_small_roster(self):
        assert team_synergy([Player('a', 'A', 1)], lambda a, b: 1.0) == 0.0


class TestHybridAdvanced:
    def test_metric_only_matches_role_balanced(self, role_players, rng):
        hybrid = allocate(role_players, 'hybridAdvanced', 2, 5, rng=rng)
        role = allocate(role_players, 'roleBalanced', 2, 5, rng=rng)
        assert [[p.id for p in t.players] for t in hybrid.teams] == \
               [[p.id for p in t.players] for t in role.teams]
        assert len(hybrid.metrics['synergy']) == 2
        assert 'swaps' not in hybrid.metrics

    def test_optimize_keeps_roles_and_improves_synergy(self, role_players, rng):
        synergies = InMemorySynergyRepository({('r1', 'r7'): 1.0, ('r1', 'r8'): 1.0, ('r1', 'r9'): 1.0,
                                               ('r1', 'r10'): 1.0})
        options = {'synergy_repository': synergies}
        plain = allocate(role_players, 'hybridAdvanced', 2, 5, options, rng=rng)
        optimized = allocate(role_players, 'hybridAdvanced', 2, 5,
                             dict(options, optimize_synergy=True), rng=rng)
        assert sum(optimized.metrics['synergy']) >= sum(plain.metrics['synergy'])
        assert optimized.metrics['swaps'] >= 1
        for team in optimized.teams:
            assert sorted(p.role for p in team.players) == sorted(Role.ALL)
        assert_partition(role_players, optimized)


class TestBalancerSession:
    def test_team_count_defaults_to_full_teams(self, player_pool):
        session = BalancerSession(player_pool, Policy.HIGH_RANKED, team_size=5)
        assert session.team_count == 2

    def test_allocate_session(self, player_pool, rng):
        session = BalancerSession(player_pool, 'perfectMmr', team_size=4)
        result = allocate_session(session, rng=rng)
        assert len(result.teams) == 3
        assert_partition(player_pool, result)
