"""
Shared pytest fixtures for the inhouse admin tests.

Running tests:
    pytest tests/
"""
import pytest
import random
import sys
import os
import yaml

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from inhouse.models import Player, Team


@pytest.fixture
def rng():
    """Seeded random source so shuffles are reproducible."""
    return random.Random(1234)


@pytest.fixture
def eight_players():
    """Two full 4-player teams worth of players with a clear rating spread."""
    ratings = [5000, 4800, 4600, 4400, 3000, 2900, 2800, 2700]
    return [Player(f"p{i + 1}", f"Player {i + 1}", rating) for i, rating in enumerate(ratings)]


@pytest.fixture
def player_pool():
    """Twelve players, enough for two 5v5 teams plus two reserves."""
    ratings = [7200, 6800, 6500, 6100, 5900, 5400, 5000, 4700, 4300, 3900, 3500, 3100]
    return [Player(f"p{i + 1}", f"Player {i + 1:02d}", rating) for i, rating in enumerate(ratings)]


@pytest.fixture
def role_players():
    """Ten players covering every role twice."""
    roles = ['carry', 'mid', 'offlane', 'support', 'hard_support']
    players = []
    for i in range(10):
        players.append(Player(f"r{i + 1}", f"Role {i + 1:02d}", 6000 - i * 300, roles[i % 5]))
    return players


def make_teams(count):
    """Build ``count`` rated teams named Team 1..Team N."""
    teams = []
    for i in range(count):
        players = [Player(f"t{i + 1}p{j + 1}", f"T{i + 1} Player {j + 1}", 3000 + i * 100 + j * 10)
                   for j in range(5)]
        teams.append(Team(f"Team {i + 1}", players))
    return teams


@pytest.fixture
def four_teams():
    return make_teams(4)


@pytest.fixture
def five_teams():
    return make_teams(5)


@pytest.fixture
def six_teams():
    return make_teams(6)


@pytest.fixture
def client():
    """Create a Flask test client."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the web layer at an empty temporary data directory."""
    import app as app_module

    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'PLAYERS_FILE', str(tmp_path / 'players.yaml'))
    monkeypatch.setattr(app_module, 'ROLES_FILE', str(tmp_path / 'roles.yaml'))
    monkeypatch.setattr(app_module, 'SYNERGIES_FILE', str(tmp_path / 'synergies.yaml'))
    monkeypatch.setattr(app_module, 'TEAM_SETS_FILE', str(tmp_path / 'team_sets.yaml'))
    monkeypatch.setattr(app_module, 'TOURNAMENTS_DIR', str(tmp_path / 'tournaments'))
    monkeypatch.setattr(app_module, 'POLICY_FALLBACK', None)
    return tmp_path


@pytest.fixture
def seeded_players_file(temp_data_dir):
    """Write twenty rated players into the temporary players.yaml."""
    records = [{'id': f"p{i + 1}", 'name': f"Player {i + 1:02d}", 'rating': 8000 - i * 250}
               for i in range(20)]
    (temp_data_dir / 'players.yaml').write_text(yaml.dump(records, default_flow_style=False))
    return records
