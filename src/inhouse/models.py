import math

from inhouse.errors import InvalidConfiguration
from inhouse.rating import average_rating, ensure_numeric_rating, total_rating


class Role:
    CARRY = 'carry'
    MID = 'mid'
    OFFLANE = 'offlane'
    SUPPORT = 'support'
    HARD_SUPPORT = 'hard_support'

    ALL = (CARRY, MID, OFFLANE, SUPPORT, HARD_SUPPORT)
    CORE_ROLES = (CARRY, MID, OFFLANE)
    SUPPORT_ROLES = (HARD_SUPPORT, SUPPORT)

    @classmethod
    def parse(cls, value):
        """Normalise a role name; unknown or empty values mean unassigned."""
        if not value:
            return None
        key = str(value).strip().replace('-', '_').replace(' ', '_')
        if key == 'hardSupport':
            key = cls.HARD_SUPPORT
        key = key.lower()
        return key if key in cls.ALL else None


class Player:
    def __init__(self, id, name, rating=0, role=None):
        if name is None or not str(name).strip():
            raise ValueError("Player name must not be empty")
        self.id = str(id)
        self.name = str(name)
        self.rating = ensure_numeric_rating(rating)
        self.role = Role.parse(role)

    @classmethod
    def from_dict(cls, data):
        """Build a player from any of the record shapes the admin tools use."""
        player_id = next((data[key] for key in ('id', 'dota2id', 'playerId', 'name')
                          if data.get(key) is not None), None)
        rating = data.get('rating', data.get('peakmmr', 0))
        return cls(player_id, data.get('name'), rating, data.get('role'))

    def with_role(self, role):
        return Player(self.id, self.name, self.rating, role)

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'rating': self.rating, 'role': self.role}

    def __eq__(self, other):
        if not isinstance(other, Player):
            return NotImplemented
        return (self.id, self.name, self.rating, self.role) == (other.id, other.name, other.rating, other.role)

    def __hash__(self):
        return hash(self.id)

    def __repr__(self):
        return f"Player(id={self.id}, name={self.name}, rating={self.rating}, role={self.role})"


class Team:
    def __init__(self, name, players=None):
        self.name = name
        self.players = list(players) if players else []

    @property
    def total_rating(self):
        return total_rating(self.players)

    @property
    def average_rating(self):
        return average_rating(self.players)

    def to_dict(self):
        return {
            'name': self.name,
            'players': [p.to_dict() for p in self.players],
            'totalRating': self.total_rating,
            'averageRating': self.average_rating,
        }

    def __repr__(self):
        return f"Team(name={self.name}, players={len(self.players)}, total_rating={self.total_rating})"


class AllocationResult:
    def __init__(self, teams, reserved, policy=None, metrics=None):
        self.teams = teams
        self.reserved = reserved
        self.policy = policy
        self.metrics = metrics if metrics else {}

    @property
    def assigned_players(self):
        return [p for team in self.teams for p in team.players]

    def to_dict(self):
        teams = []
        synergy = self.metrics.get('synergy')
        for index, team in enumerate(self.teams):
            team_data = team.to_dict()
            if synergy is not None:
                team_data['synergyScore'] = round(synergy[index], 3)
            teams.append(team_data)
        return {
            'policy': self.policy,
            'teams': teams,
            'reserved': [p.to_dict() for p in self.reserved],
        }

    def to_team_set(self, title, team_set_id=None):
        """Team set document as stored by the admin tools."""
        return {
            'teamSetId': team_set_id,
            'title': title,
            'totalTeams': len(self.teams),
            'totalPlayers': len(self.assigned_players),
            'teams': [
                {
                    'teamNumber': number,
                    'name': team.name,
                    'players': [
                        {'name': p.name, 'id': p.id, 'rating': p.rating, 'role': p.role}
                        for p in team.players
                    ],
                }
                for number, team in enumerate(self.teams, start=1)
            ],
        }

    def __repr__(self):
        return f"AllocationResult(policy={self.policy}, teams={len(self.teams)}, reserved={len(self.reserved)})"


class TournamentTeam:
    def __init__(self, id, name, players=None, wins=0, losses=0, eliminated=False):
        self.id = str(id)
        self.name = name
        self.players = list(players) if players else []
        self.wins = wins
        self.losses = losses
        self.eliminated = eliminated

    @classmethod
    def from_team(cls, team, index):
        """Wrap a Team, TournamentTeam or team-set dict; ids default to team_<n>."""
        if isinstance(team, TournamentTeam):
            return cls(team.id, team.name, team.players)
        if isinstance(team, Team):
            return cls(f"team_{index + 1}", team.name, team.players)
        try:
            players = [p if isinstance(p, Player) else Player.from_dict(p) for p in team.get('players') or []]
            team_id = team.get('id') or f"team_{team.get('teamNumber', index + 1)}"
        except (ValueError, AttributeError, TypeError) as e:
            raise InvalidConfiguration(f"Invalid team #{index + 1}: {e}")
        return cls(team_id, team.get('name') or f"Team {index + 1}", players)

    @property
    def total_rating(self):
        return total_rating(self.players)

    @property
    def average_rating(self):
        return average_rating(self.players)

    def __repr__(self):
        return f"TournamentTeam(id={self.id}, name={self.name}, wins={self.wins}, losses={self.losses})"


class MatchStatus:
    WAITING = 'waiting'
    PENDING = 'pending'
    COMPLETED = 'completed'
    BYE = 'bye'

    DECIDED = (COMPLETED, BYE)


class RoundStatus:
    WAITING = 'waiting'
    READY = 'ready'
    COMPLETED = 'completed'


class TournamentStatus:
    CREATED = 'created'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class Match:
    def __init__(self, id, round, team1=None, team2=None, winner=None, status=MatchStatus.WAITING):
        self.id = id
        self.round = round
        self.team1 = team1
        self.team2 = team2
        self.winner = winner
        self.status = status

    @property
    def is_decided(self):
        return self.status in MatchStatus.DECIDED

    @property
    def loser(self):
        if self.status != MatchStatus.COMPLETED or self.winner is None:
            return None
        return self.team2 if self.winner.id == self.team1.id else self.team1

    def involves(self, team_id):
        return any(t is not None and t.id == team_id for t in (self.team1, self.team2))

    def __repr__(self):
        team1 = self.team1.name if self.team1 else None
        team2 = self.team2.name if self.team2 else None
        return f"Match(id={self.id}, team1={team1}, team2={team2}, status={self.status})"


class Round:
    def __init__(self, round_number, name, matches=None, status=RoundStatus.WAITING):
        self.round_number = round_number
        self.name = name
        self.matches = matches if matches else []
        self.status = status

    @property
    def is_complete(self):
        return bool(self.matches) and all(m.is_decided for m in self.matches)

    def __repr__(self):
        return f"Round(round_number={self.round_number}, name={self.name}, matches={len(self.matches)}, status={self.status})"


class TournamentFormat:
    def __init__(self, key, name, description, min_teams, max_rounds):
        self.key = key
        self.name = name
        self.description = description
        self.min_teams = min_teams
        self.max_rounds = max_rounds

    def __repr__(self):
        return f"TournamentFormat(key={self.key}, min_teams={self.min_teams})"


SINGLE_ELIMINATION = 'single_elimination'
SWISS_ROUNDS = 'swiss_rounds'
ROUND_ROBIN = 'round_robin'

FORMATS = {
    SINGLE_ELIMINATION: TournamentFormat(
        SINGLE_ELIMINATION, 'Single Elimination', 'Teams are eliminated after one loss', 4,
        lambda teams: math.ceil(math.log2(teams)),
    ),
    SWISS_ROUNDS: TournamentFormat(
        SWISS_ROUNDS, 'Swiss Rounds', 'Teams play a fixed number of rounds', 6,
        lambda teams: min(math.ceil(math.log2(teams)) + 2, 8),
    ),
    ROUND_ROBIN: TournamentFormat(
        ROUND_ROBIN, 'Round Robin', 'Each team plays every other team once', 3,
        lambda teams: teams - 1,
    ),
}


class Tournament:
    def __init__(self, id, name, format, teams, rounds=None, current_round=0,
                 status=TournamentStatus.CREATED, winner=None, seed_order=None,
                 history=None, description='', team_set_id=None, created_at=None):
        self.id = id
        self.name = name
        self.format = format
        self.teams = teams
        self.rounds = rounds if rounds else []
        self.current_round = current_round
        self.status = status
        self.winner = winner
        # Team ids in post-shuffle order; the bracket is rebuilt from it on undo
        self.seed_order = seed_order if seed_order else []
        # (match_id, winner_id) pairs in the order results were recorded
        self.history = history if history else []
        self.description = description
        self.team_set_id = team_set_id
        self.created_at = created_at

    def team_by_id(self, team_id):
        for team in self.teams:
            if team.id == team_id:
                return team
        return None

    def find_match(self, match_id):
        """Return (round_index, position, match) or None."""
        for round_index, rnd in enumerate(self.rounds):
            for position, match in enumerate(rnd.matches):
                if match.id == match_id:
                    return round_index, position, match
        return None

    def __repr__(self):
        return f"Tournament(id={self.id}, name={self.name}, format={self.format}, status={self.status})"
