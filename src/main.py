# Command-line entry point: balance a player file into teams

import argparse
import csv
import logging
import os
import random
import sys
import yaml
from inhouse.balancing import POLICY_LABELS, Policy, allocate
from inhouse.brackets import create_tournament
from inhouse.errors import InhouseError
from inhouse.models import FORMATS, Player


def load_players(file_path):
    """Load players from a YAML list or a CSV with name/id/rating(/role) columns."""
    players = []
    with open(file_path, mode='r', encoding='utf-8', newline='') as file:
        if file_path.lower().endswith('.csv'):
            records = list(csv.DictReader(file))
        else:
            records = yaml.safe_load(file) or []
    for record in records:
        record = {key.strip(): value.strip() if isinstance(value, str) else value
                  for key, value in record.items() if key}
        players.append(Player.from_dict(record))
    return players


def print_teams(result):
    for team in result.teams:
        print(f"\n{team.name} (total {team.total_rating}, avg {team.average_rating})")
        for player in team.players:
            role = f" [{player.role}]" if player.role else ""
            print(f"  {player.name}: {player.rating}{role}")
    if result.reserved:
        print("\nReserved:")
        for player in result.reserved:
            print(f"  {player.name}: {player.rating}")


def print_first_round(tournament):
    first_round = tournament.rounds[0]
    print(f"\n--- {tournament.name}: {first_round.name} ---")
    for match in first_round.matches:
        if match.team2 is None:
            print(f"  {match.id}: {match.team1.name} (bye)")
        else:
            print(f"  {match.id}: {match.team1.name} vs {match.team2.name}")


def main(argv=None):
    script_dir = os.path.dirname(__file__)
    base_dir = os.path.dirname(script_dir)

    parser = argparse.ArgumentParser(description='Balance a Dota 2 player pool into teams')
    parser.add_argument('players_file', nargs='?', default=os.path.join(base_dir, 'data', 'players.yaml'),
                        help='YAML or CSV player file (default: data/players.yaml)')
    parser.add_argument('--policy', default=Policy.HIGH_RANKED.value,
                        choices=[p.value for p in Policy], help='Balancing policy')
    parser.add_argument('--team-size', type=int, default=5)
    parser.add_argument('--teams', type=int, help='Number of teams (default: as many full teams as fit)')
    parser.add_argument('--format', choices=sorted(FORMATS), help='Also draw a tournament bracket')
    parser.add_argument('--name', default='Dota 2 Tournament', help='Tournament name for --format')
    parser.add_argument('--seed', type=int, help='Random seed for reproducible draws')
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    players = load_players(args.players_file)
    if not players:
        print(f"No players loaded. Check {args.players_file}")
        return 1

    rng = random.Random(args.seed) if args.seed is not None else None
    team_count = args.teams if args.teams is not None else len(players) // args.team_size
    try:
        result = allocate(players, args.policy, team_count, args.team_size,
                          {'require_full_teams': True}, rng=rng)
        print(f"--- {POLICY_LABELS[Policy.parse(result.policy)]}: {len(result.teams)} teams ---")
        print_teams(result)
        if args.format:
            tournament = create_tournament(args.name, args.format, result.teams, rng=rng)
            print_first_round(tournament)
    except InhouseError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())
