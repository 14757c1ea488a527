"""SQLAlchemy ORM models — one file per table."""

from gitpulse.models.commit import Commit
from gitpulse.models.pull_request import PullRequest
from gitpulse.models.repository import Repository
from gitpulse.models.review import Review
from gitpulse.models.team import Team, TeamMember
from gitpulse.models.user import User

__all__ = [
    "Repository",
    "User",
    "Commit",
    "PullRequest",
    "Review",
    "Team",
    "TeamMember",
]
