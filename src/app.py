"""
Flask REST layer for the inhouse admin: player pool, team balancing,
saved team sets, tournament brackets and the random picker.
"""
import os
import re
import json
import logging
import random
import uuid
import yaml
from datetime import datetime
from filelock import FileLock
from flask import Flask, request, jsonify, Response
from inhouse.balancing import (
    POLICY_LABELS,
    InMemoryRoleRepository,
    InMemorySynergyRepository,
    Policy,
    allocate,
)
from inhouse.brackets import (
    EXPORT_FORMAT,
    calculate_standings,
    create_tournament,
    deserialize,
    record_match_winner,
    reshuffle_tournament,
    serialize,
    tournament_to_dict,
    undo_match_winner,
)
from inhouse.errors import (
    InhouseError,
    InvalidConfiguration,
    InvalidMatchState,
    MatchNotFound,
)
from inhouse.models import FORMATS, Player, Role
from inhouse.picker import RandomPicker

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('INHOUSE_DATA_DIR', os.path.join(BASE_DIR, 'data'))

PLAYERS_FILE = os.path.join(DATA_DIR, 'players.yaml')
ROLES_FILE = os.path.join(DATA_DIR, 'roles.yaml')
SYNERGIES_FILE = os.path.join(DATA_DIR, 'synergies.yaml')
TEAM_SETS_FILE = os.path.join(DATA_DIR, 'team_sets.yaml')
TOURNAMENTS_DIR = os.path.join(DATA_DIR, 'tournaments')

DEFAULT_POLICY = os.environ.get('INHOUSE_DEFAULT_POLICY', Policy.HIGH_RANKED.value)
DEFAULT_TEAM_SIZE = int(os.environ.get('INHOUSE_TEAM_SIZE', '5'))
# Empty means an unknown policy name is rejected instead of replaced
POLICY_FALLBACK = os.environ.get('INHOUSE_POLICY_FALLBACK', '') or None
LOCK_TIMEOUT = 10

_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')

ERROR_STATUS = {
    MatchNotFound: 404,
    InvalidMatchState: 409,
}


def _data_lock() -> FileLock:
    """Lock serialising every write to the data directory."""
    os.makedirs(DATA_DIR, exist_ok=True)
    return FileLock(os.path.join(DATA_DIR, '.lock'), timeout=LOCK_TIMEOUT)


def _load_yaml(path, default):
    if not os.path.exists(path):
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        return data if data else default
    except (OSError, yaml.YAMLError) as e:
        app.logger.warning(f'Failed to parse {path}: {e}')
        return default


def _save_yaml(path, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def load_players() -> list:
    """Load the player pool as Player objects, skipping unusable records."""
    players = []
    for record in _load_yaml(PLAYERS_FILE, []):
        try:
            players.append(Player.from_dict(record))
        except (ValueError, AttributeError) as e:
            app.logger.warning(f'Skipping invalid player record {record!r}: {e}')
    return players


def save_players(players):
    _save_yaml(PLAYERS_FILE, [p.to_dict() for p in players])


def load_roles() -> InMemoryRoleRepository:
    return InMemoryRoleRepository(_load_yaml(ROLES_FILE, {}))


def save_roles(repository: InMemoryRoleRepository):
    _save_yaml(ROLES_FILE, repository.to_dict())


def load_synergies() -> InMemorySynergyRepository:
    repository = InMemorySynergyRepository()
    for entry in _load_yaml(SYNERGIES_FILE, []):
        try:
            repository.set(entry['a'], entry['b'], entry['score'])
        except (KeyError, TypeError, ValueError) as e:
            app.logger.warning(f'Skipping invalid synergy entry {entry!r}: {e}')
    return repository


def save_synergies(repository: InMemorySynergyRepository):
    _save_yaml(SYNERGIES_FILE, repository.to_list())


def load_team_sets() -> list:
    return _load_yaml(TEAM_SETS_FILE, [])


def save_team_sets(team_sets):
    _save_yaml(TEAM_SETS_FILE, team_sets)


def _tournament_path(tournament_id: str) -> str:
    if not _ID_PATTERN.match(tournament_id or ''):
        raise InvalidConfiguration('Invalid tournament identifier')
    return os.path.join(TOURNAMENTS_DIR, f'{tournament_id}.json')


def load_tournament(tournament_id):
    """Load a stored tournament, or None if it does not exist."""
    path = _tournament_path(tournament_id)
    if not os.path.exists(path):
        return None
    with open(path, 'r', encoding='utf-8') as f:
        return deserialize(f.read())


def save_tournament(tournament):
    path = _tournament_path(tournament.id)
    os.makedirs(TOURNAMENTS_DIR, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(serialize(tournament))


def list_tournaments() -> list:
    summaries = []
    if not os.path.isdir(TOURNAMENTS_DIR):
        return summaries
    for filename in sorted(os.listdir(TOURNAMENTS_DIR)):
        if not filename.endswith('.json'):
            continue
        try:
            tournament = load_tournament(filename[:-len('.json')])
        except InhouseError as e:
            app.logger.warning(f'Skipping unreadable tournament {filename}: {e.message}')
            continue
        summaries.append({
            'id': tournament.id,
            'name': tournament.name,
            'format': tournament.format,
            'status': tournament.status,
            'teams': len(tournament.teams),
            'createdAt': tournament.created_at,
        })
    return summaries


def _rng_from(data):
    seed = data.get('seed')
    return random.Random(seed) if seed is not None else None


def _not_found(what):
    return jsonify({'error': f'{what} not found'}), 404


@app.errorhandler(InhouseError)
def handle_inhouse_error(error):
    status = ERROR_STATUS.get(type(error), 400)
    app.logger.info(f'{type(error).__name__}: {error.message}')
    return jsonify({'error': error.message, 'type': type(error).__name__}), status


@app.route('/api/policies', methods=['GET'])
def api_policies():
    """List balancing policies and tournament formats."""
    return jsonify({
        'policies': [{'id': p.value, 'name': POLICY_LABELS[p]} for p in Policy],
        'formats': [
            {'id': key, 'name': fmt.name, 'description': fmt.description, 'minTeams': fmt.min_teams}
            for key, fmt in FORMATS.items()
        ],
        'roles': list(Role.ALL),
        'defaultPolicy': DEFAULT_POLICY,
        'defaultTeamSize': DEFAULT_TEAM_SIZE,
    })


@app.route('/api/players', methods=['GET'])
def api_list_players():
    roles = load_roles()
    players = []
    for player in load_players():
        data = player.to_dict()
        data['role'] = roles.get(player.id) or player.role
        players.append(data)
    return jsonify({'players': players})


@app.route('/api/players', methods=['POST'])
def api_add_players():
    """Add or update players; accepts one record or {'players': [...]}."""
    data = request.get_json(silent=True) or {}
    records = data.get('players') if isinstance(data.get('players'), list) else [data]
    try:
        incoming = [Player.from_dict(record) for record in records]
    except (ValueError, AttributeError) as e:
        return jsonify({'error': f'Invalid player: {e}'}), 400

    with _data_lock():
        players = {p.id: p for p in load_players()}
        for player in incoming:
            players[player.id] = player
        save_players(list(players.values()))
    app.logger.info(f'Saved {len(incoming)} player(s); pool size {len(players)}')
    return jsonify({'success': True, 'added': len(incoming), 'total': len(players)})


@app.route('/api/players/<player_id>', methods=['DELETE'])
def api_delete_player(player_id):
    with _data_lock():
        players = load_players()
        remaining = [p for p in players if p.id != player_id]
        if len(remaining) == len(players):
            return _not_found('Player')
        save_players(remaining)
    return jsonify({'success': True, 'total': len(remaining)})


@app.route('/api/roles', methods=['GET'])
def api_list_roles():
    return jsonify({'roles': load_roles().to_dict()})


@app.route('/api/roles', methods=['POST'])
def api_set_role():
    data = request.get_json(silent=True) or {}
    player_id = data.get('playerId')
    role = data.get('role')
    if not player_id:
        return jsonify({'error': 'Missing playerId'}), 400
    if role and Role.parse(role) is None:
        return jsonify({'error': f'Unknown role: {role}'}), 400
    with _data_lock():
        roles = load_roles()
        roles.set(player_id, role)
        save_roles(roles)
    return jsonify({'success': True, 'playerId': str(player_id), 'role': roles.get(player_id)})


@app.route('/api/synergies', methods=['POST'])
def api_set_synergy():
    data = request.get_json(silent=True) or {}
    try:
        player_a, player_b, score = data['a'], data['b'], float(data['score'])
    except (KeyError, TypeError, ValueError):
        return jsonify({'error': 'Expected a, b and a numeric score'}), 400
    with _data_lock():
        synergies = load_synergies()
        synergies.set(player_a, player_b, score)
        save_synergies(synergies)
    return jsonify({'success': True, 'score': synergies.get(player_a, player_b)})


@app.route('/api/balance', methods=['POST'])
def api_balance():
    """Allocate players into teams; optionally persist the result as a team set."""
    data = request.get_json(silent=True) or {}
    team_size = data.get('teamSize', DEFAULT_TEAM_SIZE)

    if isinstance(data.get('players'), list):
        try:
            pool = [Player.from_dict(record) for record in data['players']]
        except (ValueError, AttributeError) as e:
            return jsonify({'error': f'Invalid player: {e}'}), 400
    else:
        pool = load_players()
        if data.get('playerIds'):
            wanted = {str(player_id) for player_id in data['playerIds']}
            pool = [p for p in pool if p.id in wanted]

    team_count = data.get('teamCount')
    if team_count is None:
        team_count = len(pool) // team_size if isinstance(team_size, int) and team_size > 0 else 0

    options = {
        'role_repository': load_roles(),
        'synergy_repository': load_synergies(),
        'fallback_policy': POLICY_FALLBACK,
        'require_full_teams': True,
        'optimize_synergy': bool(data.get('optimizeSynergy', False)),
    }
    result = allocate(pool, data.get('policy', DEFAULT_POLICY), team_count, team_size,
                      options, rng=_rng_from(data))
    response = result.to_dict()

    if data.get('save'):
        team_set = result.to_team_set(
            data.get('title') or f'{POLICY_LABELS[Policy.parse(result.policy)]} {datetime.now():%Y-%m-%d %H:%M}',
            f'teamset_{uuid.uuid4().hex[:12]}',
        )
        team_set['createdAt'] = datetime.now().isoformat()
        with _data_lock():
            team_sets = load_team_sets()
            team_sets.append(team_set)
            save_team_sets(team_sets)
        app.logger.info(f"Saved team set {team_set['teamSetId']} ({team_set['totalTeams']} teams)")
        response['teamSetId'] = team_set['teamSetId']

    return jsonify(response)


@app.route('/api/team-sets', methods=['GET'])
def api_list_team_sets():
    return jsonify({'teamSets': [
        {key: ts.get(key) for key in ('teamSetId', 'title', 'totalTeams', 'totalPlayers', 'createdAt')}
        for ts in load_team_sets()
    ]})


@app.route('/api/team-sets/<team_set_id>', methods=['GET'])
def api_get_team_set(team_set_id):
    for team_set in load_team_sets():
        if team_set.get('teamSetId') == team_set_id:
            return jsonify(team_set)
    return _not_found('Team set')


@app.route('/api/team-sets/<team_set_id>', methods=['DELETE'])
def api_delete_team_set(team_set_id):
    with _data_lock():
        team_sets = load_team_sets()
        remaining = [ts for ts in team_sets if ts.get('teamSetId') != team_set_id]
        if len(remaining) == len(team_sets):
            return _not_found('Team set')
        save_team_sets(remaining)
    return jsonify({'success': True})


@app.route('/api/tournaments', methods=['GET'])
def api_list_tournaments():
    return jsonify({'tournaments': list_tournaments()})


@app.route('/api/tournaments', methods=['POST'])
def api_create_tournament():
    """Create a bracket from a saved team set or an inline team list."""
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip() or 'Dota 2 Tournament'
    team_set_id = data.get('teamSetId')

    if team_set_id:
        team_set = next((ts for ts in load_team_sets() if ts.get('teamSetId') == team_set_id), None)
        if team_set is None:
            return _not_found('Team set')
        teams = team_set.get('teams', [])
    else:
        teams = data.get('teams')
        if not isinstance(teams, list):
            return jsonify({'error': 'Provide a teamSetId or a list of teams'}), 400

    tournament = create_tournament(
        name, data.get('format', 'single_elimination'), teams, rng=_rng_from(data),
        description=data.get('description', ''), team_set_id=team_set_id,
    )
    with _data_lock():
        save_tournament(tournament)
    return jsonify(tournament_to_dict(tournament)['tournament']), 201


@app.route('/api/tournaments/<tournament_id>', methods=['GET'])
def api_get_tournament(tournament_id):
    tournament = load_tournament(tournament_id)
    if tournament is None:
        return _not_found('Tournament')
    return jsonify(tournament_to_dict(tournament)['tournament'])


@app.route('/api/tournaments/<tournament_id>', methods=['DELETE'])
def api_delete_tournament(tournament_id):
    path = _tournament_path(tournament_id)
    with _data_lock():
        if not os.path.exists(path):
            return _not_found('Tournament')
        os.remove(path)
    app.logger.info(f'Deleted tournament {tournament_id}')
    return jsonify({'success': True})


def _mutate_tournament(tournament_id, mutation):
    """Load, mutate and store a tournament under the data lock."""
    with _data_lock():
        tournament = load_tournament(tournament_id)
        if tournament is None:
            return _not_found('Tournament')
        mutation(tournament)
        save_tournament(tournament)
    return jsonify(tournament_to_dict(tournament)['tournament'])


@app.route('/api/tournaments/<tournament_id>/matches/<match_id>/winner', methods=['POST'])
def api_record_winner(tournament_id, match_id):
    data = request.get_json(silent=True) or {}
    team_id = data.get('teamId')
    if not team_id:
        return jsonify({'error': 'Missing teamId'}), 400
    return _mutate_tournament(tournament_id, lambda t: record_match_winner(t, match_id, team_id))


@app.route('/api/tournaments/<tournament_id>/matches/<match_id>/undo', methods=['POST'])
def api_undo_winner(tournament_id, match_id):
    return _mutate_tournament(tournament_id, lambda t: undo_match_winner(t, match_id))


@app.route('/api/tournaments/<tournament_id>/reshuffle', methods=['POST'])
def api_reshuffle(tournament_id):
    data = request.get_json(silent=True) or {}
    return _mutate_tournament(tournament_id, lambda t: reshuffle_tournament(t, _rng_from(data)))


@app.route('/api/tournaments/<tournament_id>/standings', methods=['GET'])
def api_standings(tournament_id):
    tournament = load_tournament(tournament_id)
    if tournament is None:
        return _not_found('Tournament')
    return jsonify({'standings': calculate_standings(tournament)})


@app.route('/api/tournaments/<tournament_id>/export', methods=['GET'])
def api_export_tournament(tournament_id):
    """Download the bracket as a JSON document."""
    tournament = load_tournament(tournament_id)
    if tournament is None:
        return _not_found('Tournament')
    export = tournament_to_dict(tournament)
    export['exportDate'] = datetime.now().isoformat()
    slug = re.sub(r'[^a-z0-9]+', '-', tournament.name.lower()).strip('-') or 'tournament'
    filename = f'tournament-bracket-{slug}-{datetime.now():%Y-%m-%d}.json'
    return Response(
        json.dumps(export, indent=2),
        mimetype='application/json',
        headers={'Content-Disposition': f'attachment; filename={filename}', 'X-Export-Format': EXPORT_FORMAT},
    )


@app.route('/api/picker/pick', methods=['POST'])
def api_pick():
    """Pick one or more random players from the pool, minus exclusions."""
    data = request.get_json(silent=True) or {}
    picker = RandomPicker(load_players(), rng=_rng_from(data))
    for player_id in data.get('exclude', []):
        picker.exclude(player_id)
    count = data.get('count', 1)
    if count == 1:
        picked = [picker.pick()]
    else:
        picked = picker.pick_many(count)
    return jsonify({'players': [p.to_dict() for p in picked], 'remaining': len(picker.available())})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=os.environ.get('FLASK_DEBUG') == '1')
