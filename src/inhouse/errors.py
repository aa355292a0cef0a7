"""
Errors raised by the team allocator and the bracket engine.

Every error is recoverable by the caller; nothing in the core mutates state
before raising one.
"""


class InhouseError(Exception):
    """Base class for all core errors."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class InvalidConfiguration(InhouseError):
    """Bad team count, team size, format or malformed bracket data."""


class InsufficientPlayers(InhouseError):
    """Not enough players to satisfy the requested allocation."""


class InsufficientTeams(InhouseError):
    """Not enough teams for the requested tournament format."""


class UnknownPolicy(InhouseError):
    """Balancing policy name not recognised."""


class MatchNotFound(InhouseError):
    """No match with the given id exists in the tournament."""


class InvalidMatchState(InhouseError):
    """The match cannot accept this transition in its current state."""


class InvalidWinner(InhouseError):
    """The winning team is not one of the match's two teams."""
