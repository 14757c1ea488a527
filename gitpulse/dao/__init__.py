"""Data-access objects — one per table."""

from gitpulse.dao.base import BaseDAO
from gitpulse.dao.commit_dao import CommitDAO
from gitpulse.dao.pull_request_dao import PullRequestDAO
from gitpulse.dao.repository_dao import RepositoryDAO
from gitpulse.dao.review_dao import ReviewDAO
from gitpulse.dao.team_dao import TeamDAO
from gitpulse.dao.user_dao import UserDAO

__all__ = [
    "BaseDAO",
    "CommitDAO",
    "PullRequestDAO",
    "RepositoryDAO",
    "ReviewDAO",
    "TeamDAO",
    "UserDAO",
]
