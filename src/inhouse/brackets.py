"""
Tournament bracket generation and match progression.

Supports single elimination, Swiss rounds and round robin. A Tournament is
mutated in place by record_match_winner / undo_match_winner; every error is
raised before any state changes.
"""
import json
import logging
import math
import random
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from inhouse.errors import (
    InsufficientTeams,
    InvalidConfiguration,
    InvalidMatchState,
    InvalidWinner,
    MatchNotFound,
)
from inhouse.models import (
    FORMATS,
    ROUND_ROBIN,
    SINGLE_ELIMINATION,
    SWISS_ROUNDS,
    Match,
    MatchStatus,
    Player,
    Round,
    RoundStatus,
    Tournament,
    TournamentStatus,
    TournamentTeam,
)
from inhouse.rating import shuffled

logger = logging.getLogger(__name__)

EXPORT_FORMAT = 'tournament_bracket_v1'


def match_id(round_number: int, match_number: int) -> str:
    return f"match_r{round_number}_{match_number}"


def get_round_name(round_number: int, num_rounds: int) -> str:
    """Name of a single elimination round."""
    if round_number == num_rounds:
        return "Final"
    if round_number == num_rounds - 1:
        return "Semi-Final"
    return f"Round {round_number}"


def _pair_sequentially(teams, round_number, bye_wins=False) -> List[Match]:
    """Pair (0,1), (2,3), ...; a trailing team gets a bye it has already won."""
    matches = []
    for i in range(0, len(teams), 2):
        number = i // 2 + 1
        if i + 1 < len(teams):
            matches.append(Match(match_id(round_number, number), round_number,
                                 teams[i], teams[i + 1], status=MatchStatus.PENDING))
        else:
            matches.append(Match(match_id(round_number, number), round_number,
                                 teams[i], None, winner=teams[i], status=MatchStatus.BYE))
            if bye_wins:
                teams[i].wins += 1
    return matches


def _generate_single_elimination(tournament, seeded):
    num_rounds = FORMATS[SINGLE_ELIMINATION].max_rounds(len(seeded))
    first_round = _pair_sequentially(seeded, 1)
    tournament.rounds = [Round(1, get_round_name(1, num_rounds), first_round, RoundStatus.READY)]

    matches_in_round = len(first_round)
    for round_number in range(2, num_rounds + 1):
        # One match per pair of feeder matches; equals 2^(num_rounds - round)
        # unless that would leave a match with no feeder at all
        # (9 teams: 5/3/2/1, where 2^(num_rounds - round) gives 5/4/2/1).
        matches_in_round = math.ceil(matches_in_round / 2)
        matches = [Match(match_id(round_number, i + 1), round_number) for i in range(matches_in_round)]
        tournament.rounds.append(Round(round_number, get_round_name(round_number, num_rounds), matches))

    for position, match in enumerate(first_round):
        if match.status == MatchStatus.BYE:
            _advance_winner(tournament, 0, position, match.winner)


def _generate_swiss_rounds(tournament, seeded):
    num_rounds = FORMATS[SWISS_ROUNDS].max_rounds(len(seeded))
    tournament.rounds = [Round(1, "Round 1", _pair_sequentially(seeded, 1, bye_wins=True), RoundStatus.READY)]
    for round_number in range(2, num_rounds + 1):
        tournament.rounds.append(Round(round_number, f"Round {round_number}"))


def _generate_round_robin(tournament, seeded):
    """Circle method: fix the first slot, rotate the rest after every round."""
    slots = list(seeded)
    if len(slots) % 2:
        slots.append(None)
    num_rounds = len(slots) - 1
    tournament.rounds = []
    for round_number in range(1, num_rounds + 1):
        matches = []
        for i in range(len(slots) // 2):
            team1, team2 = slots[i], slots[len(slots) - 1 - i]
            number = len(matches) + 1
            if team1 is None or team2 is None:
                present = team1 if team1 is not None else team2
                matches.append(Match(match_id(round_number, number), round_number,
                                     present, None, winner=present, status=MatchStatus.BYE))
            else:
                status = MatchStatus.PENDING if round_number == 1 else MatchStatus.WAITING
                matches.append(Match(match_id(round_number, number), round_number, team1, team2, status=status))
        status = RoundStatus.READY if round_number == 1 else RoundStatus.WAITING
        tournament.rounds.append(Round(round_number, f"Round {round_number}", matches, status))
        slots.insert(1, slots.pop())


GENERATORS = {
    SINGLE_ELIMINATION: _generate_single_elimination,
    SWISS_ROUNDS: _generate_swiss_rounds,
    ROUND_ROBIN: _generate_round_robin,
}


def _build_rounds(tournament):
    """(Re)generate the bracket from ``tournament.seed_order`` with clean scores."""
    for team in tournament.teams:
        team.wins = 0
        team.losses = 0
        team.eliminated = False
    tournament.status = TournamentStatus.CREATED
    tournament.winner = None
    tournament.current_round = 0
    tournament.history = []
    seeded = [tournament.team_by_id(team_id) for team_id in tournament.seed_order]
    GENERATORS[tournament.format](tournament, seeded)
    _refresh_rounds(tournament)


def create_tournament(name, format, teams, rng: Optional[random.Random] = None, tournament_id=None,
                      description='', team_set_id=None, created_at=None) -> Tournament:
    """Build a tournament bracket; teams are shuffled once before pairing."""
    if format not in FORMATS:
        raise InvalidConfiguration(f"Unknown tournament format: {format}")
    tournament_teams = [TournamentTeam.from_team(team, index) for index, team in enumerate(teams)]
    team_ids = [team.id for team in tournament_teams]
    if len(set(team_ids)) != len(team_ids):
        raise InvalidConfiguration("Team ids must be unique within a tournament")
    min_teams = FORMATS[format].min_teams
    if len(tournament_teams) < min_teams:
        raise InsufficientTeams(f"Need at least {min_teams} teams for {FORMATS[format].name}")

    tournament = Tournament(
        tournament_id or f"tournament_{uuid.uuid4().hex[:12]}",
        name,
        format,
        tournament_teams,
        description=description,
        team_set_id=team_set_id,
        created_at=created_at or datetime.now().isoformat(),
    )
    tournament.seed_order = [team.id for team in shuffled(tournament_teams, rng)]
    _build_rounds(tournament)
    logger.info("Created %s tournament %s with %d teams and %d rounds",
                format, tournament.id, len(tournament_teams), len(tournament.rounds))
    return tournament


def _advance_winner(tournament, round_index, position, team):
    """Move a single elimination winner into its slot in the next round."""
    if round_index + 1 >= len(tournament.rounds):
        tournament.status = TournamentStatus.COMPLETED
        tournament.winner = team
        return

    next_position = position // 2
    next_match = tournament.rounds[round_index + 1].matches[next_position]
    if position % 2 == 0:
        next_match.team1 = team
    else:
        next_match.team2 = team

    has_sibling = (position ^ 1) < len(tournament.rounds[round_index].matches)
    if next_match.team1 is not None and next_match.team2 is not None:
        next_match.status = MatchStatus.PENDING
    elif not has_sibling:
        next_match.winner = team
        next_match.status = MatchStatus.BYE
        _advance_winner(tournament, round_index + 1, next_position, team)


def _refresh_rounds(tournament):
    """Completed rounds are closed, the first open one is ready, the rest wait."""
    current = None
    for index, rnd in enumerate(tournament.rounds):
        if rnd.is_complete:
            rnd.status = RoundStatus.COMPLETED
        elif current is None:
            current = index
            rnd.status = RoundStatus.READY
            for match in rnd.matches:
                if match.status == MatchStatus.WAITING and match.team1 is not None and match.team2 is not None:
                    match.status = MatchStatus.PENDING
        else:
            rnd.status = RoundStatus.WAITING
    tournament.current_round = current if current is not None else max(len(tournament.rounds) - 1, 0)


def _swiss_sort_key(team):
    return (-team.wins, team.losses, -team.average_rating, team.name)


def _played_pairs(tournament):
    pairs = set()
    for rnd in tournament.rounds:
        for match in rnd.matches:
            if match.team1 is not None and match.team2 is not None:
                pairs.add(frozenset((match.team1.id, match.team2.id)))
    return pairs


def _pair_without_rematches(ordered, played):
    """
    Pair teams in standings order so nobody meets a previous opponent.

    The top team takes its highest-ranked unplayed opponent and the rest is
    paired recursively; on a dead end the next opponent is tried. Returns
    None when no rematch-free pairing of the whole field exists.
    """
    if not ordered:
        return []
    team1, rest = ordered[0], ordered[1:]
    for i, team2 in enumerate(rest):
        if frozenset((team1.id, team2.id)) in played:
            continue
        tail = _pair_without_rematches(rest[:i] + rest[i + 1:], played)
        if tail is not None:
            return [(team1, team2)] + tail
    return None


def _pair_swiss_round(tournament, round_index):
    """Pair a Swiss round by standings, avoiding rematches where possible."""
    rnd = tournament.rounds[round_index]
    ordered = sorted(tournament.teams, key=_swiss_sort_key)
    played = _played_pairs(tournament)
    matches = []

    if len(ordered) % 2:
        had_bye = {m.team1.id for r in tournament.rounds for m in r.matches if m.status == MatchStatus.BYE}
        candidates = [t for t in reversed(ordered) if t.id not in had_bye] or list(reversed(ordered))
        bye_team = candidates[0]
        ordered.remove(bye_team)
    else:
        bye_team = None

    pairs = _pair_without_rematches(ordered, played)
    if pairs is None:
        logger.debug("No rematch-free pairing for Swiss round %d of tournament %s",
                     rnd.round_number, tournament.id)
        pairs = []
        while ordered:
            team1 = ordered.pop(0)
            opponent = next((i for i, t in enumerate(ordered) if frozenset((team1.id, t.id)) not in played), 0)
            pairs.append((team1, ordered.pop(opponent)))

    for team1, team2 in pairs:
        matches.append(Match(match_id(rnd.round_number, len(matches) + 1), rnd.round_number,
                             team1, team2, status=MatchStatus.PENDING))

    if bye_team is not None:
        bye_team.wins += 1
        matches.append(Match(match_id(rnd.round_number, len(matches) + 1), rnd.round_number,
                             bye_team, None, winner=bye_team, status=MatchStatus.BYE))
    rnd.matches = matches
    logger.debug("Paired Swiss round %d of tournament %s", rnd.round_number, tournament.id)


def _after_decision(tournament):
    if tournament.format == SWISS_ROUNDS:
        for index, rnd in enumerate(tournament.rounds):
            if rnd.is_complete:
                continue
            if not rnd.matches and index > 0 and tournament.rounds[index - 1].is_complete:
                _pair_swiss_round(tournament, index)
            break

    _refresh_rounds(tournament)

    if tournament.format != SINGLE_ELIMINATION and all(r.is_complete for r in tournament.rounds):
        tournament.status = TournamentStatus.COMPLETED
        tournament.winner = tournament.team_by_id(calculate_standings(tournament)[0]['id'])


def record_match_winner(tournament: Tournament, match_id, winning_team_id) -> Tournament:
    """Record the winner of a pending match and advance the bracket."""
    found = tournament.find_match(match_id)
    if found is None:
        raise MatchNotFound(f"Match {match_id} not found in tournament {tournament.id}")
    round_index, position, match = found
    if tournament.status == TournamentStatus.COMPLETED:
        raise InvalidMatchState(f"Tournament {tournament.id} is already completed")
    if match.status != MatchStatus.PENDING:
        raise InvalidMatchState(f"Match {match_id} is {match.status}, expected pending")

    winning_team_id = str(winning_team_id)
    if match.team1.id == winning_team_id:
        winner, loser = match.team1, match.team2
    elif match.team2.id == winning_team_id:
        winner, loser = match.team2, match.team1
    else:
        raise InvalidWinner(f"Team {winning_team_id} is not playing in match {match_id}")

    match.winner = winner
    match.status = MatchStatus.COMPLETED
    winner.wins += 1
    loser.losses += 1
    tournament.history.append([match_id, winner.id])
    if tournament.status == TournamentStatus.CREATED:
        tournament.status = TournamentStatus.IN_PROGRESS

    if tournament.format == SINGLE_ELIMINATION:
        loser.eliminated = True
        _advance_winner(tournament, round_index, position, winner)
    _after_decision(tournament)

    logger.info("Tournament %s: %s won %s", tournament.id, winner.name, match_id)
    return tournament


def _replay(tournament, history) -> Tournament:
    """Rebuild the bracket from its seed order and re-apply ``history``."""
    teams = [TournamentTeam(t.id, t.name, t.players) for t in tournament.teams]
    rebuilt = Tournament(tournament.id, tournament.name, tournament.format, teams,
                         seed_order=list(tournament.seed_order), description=tournament.description,
                         team_set_id=tournament.team_set_id, created_at=tournament.created_at)
    _build_rounds(rebuilt)
    for entry_match_id, entry_winner_id in history:
        try:
            record_match_winner(rebuilt, entry_match_id, entry_winner_id)
        except (MatchNotFound, InvalidMatchState, InvalidWinner) as e:
            raise InvalidMatchState(f"Later results depend on this match ({e.message})")
    return rebuilt


def _adopt(tournament, source):
    tournament.teams = source.teams
    tournament.rounds = source.rounds
    tournament.current_round = source.current_round
    tournament.status = source.status
    tournament.winner = source.winner
    tournament.history = source.history


def undo_match_winner(tournament: Tournament, match_id) -> Tournament:
    """Revert a completed match; refused when later results depend on it."""
    found = tournament.find_match(match_id)
    if found is None:
        raise MatchNotFound(f"Match {match_id} not found in tournament {tournament.id}")
    match = found[2]
    if match.status != MatchStatus.COMPLETED:
        raise InvalidMatchState(f"Match {match_id} is {match.status}, only completed matches can be undone")

    remaining = [entry for entry in tournament.history if entry[0] != match_id]
    _adopt(tournament, _replay(tournament, remaining))
    logger.info("Tournament %s: result of %s reverted", tournament.id, match_id)
    return tournament


def reshuffle_tournament(tournament: Tournament, rng: Optional[random.Random] = None) -> Tournament:
    """Redraw the bracket; only allowed before any result is recorded."""
    if tournament.history:
        raise InvalidMatchState("Cannot reshuffle when matches have recorded winners")
    tournament.seed_order = [team.id for team in shuffled(tournament.teams, rng)]
    _build_rounds(tournament)
    return tournament


def calculate_standings(tournament: Tournament) -> List[Dict]:
    ranked = sorted(tournament.teams, key=lambda t: (-(t.wins - t.losses), -t.average_rating, t.name))
    return [
        {
            'rank': rank,
            'id': team.id,
            'name': team.name,
            'wins': team.wins,
            'losses': team.losses,
            'averageRating': team.average_rating,
            'eliminated': team.eliminated,
        }
        for rank, team in enumerate(ranked, start=1)
    ]


def _team_ref(team):
    return team.id if team is not None else None


def tournament_to_dict(tournament: Tournament) -> Dict:
    return {
        'format': EXPORT_FORMAT,
        'tournament': {
            'id': tournament.id,
            'name': tournament.name,
            'description': tournament.description,
            'teamSetId': tournament.team_set_id,
            'format': tournament.format,
            'status': tournament.status,
            'currentRound': tournament.current_round,
            'createdAt': tournament.created_at,
            'winner': _team_ref(tournament.winner),
            'seedOrder': list(tournament.seed_order),
            'history': [list(entry) for entry in tournament.history],
            'teams': [
                {
                    'id': team.id,
                    'name': team.name,
                    'players': [p.to_dict() for p in team.players],
                    'totalRating': team.total_rating,
                    'averageRating': team.average_rating,
                    'wins': team.wins,
                    'losses': team.losses,
                    'eliminated': team.eliminated,
                }
                for team in tournament.teams
            ],
            'rounds': [
                {
                    'round': rnd.round_number,
                    'name': rnd.name,
                    'status': rnd.status,
                    'matches': [
                        {
                            'id': m.id,
                            'round': m.round,
                            'team1': _team_ref(m.team1),
                            'team2': _team_ref(m.team2),
                            'winner': _team_ref(m.winner),
                            'status': m.status,
                        }
                        for m in rnd.matches
                    ],
                }
                for rnd in tournament.rounds
            ],
        },
    }


def serialize(tournament: Tournament) -> str:
    return json.dumps(tournament_to_dict(tournament), indent=2)


def deserialize(blob) -> Tournament:
    """Rebuild a tournament from ``serialize`` output (string, bytes or parsed dict)."""
    try:
        data = json.loads(blob) if isinstance(blob, (str, bytes, bytearray)) else blob
        doc = data['tournament']
        teams = [
            TournamentTeam(
                t['id'], t['name'], [Player.from_dict(p) for p in t.get('players', [])],
                wins=t.get('wins', 0), losses=t.get('losses', 0), eliminated=t.get('eliminated', False),
            )
            for t in doc['teams']
        ]
        by_id = {team.id: team for team in teams}

        def resolve(team_id):
            if team_id is None:
                return None
            if team_id not in by_id:
                raise InvalidConfiguration(f"Bracket references unknown team {team_id}")
            return by_id[team_id]

        rounds = [
            Round(
                r['round'], r['name'],
                [Match(m['id'], m['round'], resolve(m['team1']), resolve(m['team2']),
                       resolve(m['winner']), m['status']) for m in r['matches']],
                r['status'],
            )
            for r in doc['rounds']
        ]
        if doc['format'] not in FORMATS:
            raise InvalidConfiguration(f"Unknown tournament format: {doc['format']}")
        return Tournament(
            doc['id'], doc['name'], doc['format'], teams, rounds,
            current_round=doc.get('currentRound', 0),
            status=doc.get('status', TournamentStatus.CREATED),
            winner=resolve(doc.get('winner')),
            seed_order=doc.get('seedOrder') or [team.id for team in teams],
            history=[list(entry) for entry in doc.get('history', [])],
            description=doc.get('description', ''),
            team_set_id=doc.get('teamSetId'),
            created_at=doc.get('createdAt'),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidConfiguration(f"Malformed tournament data: {e}")
