"""Tests for remote payload DTOs and their GraphQL/REST constructors."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from gitpulse.engines.collector.models import (
    ActorRef,
    CommitNode,
    PullRequestNode,
    ReviewNode,
    parse_reviews,
)

GRAPHQL_PR = {
    "number": 7,
    "title": "Add widgets",
    "body": "",
    "state": "CLOSED",
    "isDraft": False,
    "additions": 10,
    "deletions": 2,
    "changedFiles": 3,
    "createdAt": "2024-03-01T10:00:00Z",
    "updatedAt": "2024-03-01T14:00:00Z",
    "closedAt": "2024-03-01T14:00:00Z",
    "mergedAt": "2024-03-01T14:00:00Z",
    "author": {"login": "octo", "avatarUrl": "https://a/1", "databaseId": 101},
    "mergedBy": {"login": "lead", "avatarUrl": None, "databaseId": 102},
    "reviews": {
        "nodes": [
            {
                "id": "PRR_kw1",
                "databaseId": 9001,
                "state": "APPROVED",
                "body": "lgtm",
                "submittedAt": "2024-03-01T12:00:00Z",
                "author": {"login": "lead", "databaseId": 102},
            },
            {
                "id": "PRR_kw2",
                "databaseId": 9002,
                "state": "PENDING",
                "body": "",
                "submittedAt": None,
                "author": {"login": "lead", "databaseId": 102},
            },
        ]
    },
}

REST_PR_ITEM = {
    "number": 7,
    "title": "Add widgets",
    "body": None,
    "state": "closed",
    "draft": False,
    "created_at": "2024-03-01T10:00:00Z",
    "updated_at": "2024-03-01T14:00:00Z",
    "closed_at": "2024-03-01T14:00:00Z",
    "merged_at": "2024-03-01T14:00:00Z",
    "user": {"login": "octo", "id": 101, "avatar_url": "https://a/1"},
}
REST_PR_DETAIL = {
    "additions": 10,
    "deletions": 2,
    "changed_files": 3,
    "merged_by": {"login": "lead", "id": 102, "avatar_url": None},
}
REST_REVIEWS = [
    {
        "id": 9001,
        "state": "APPROVED",
        "body": "lgtm",
        "submitted_at": "2024-03-01T12:00:00Z",
        "user": {"login": "lead", "id": 102},
    }
]


class TestPullRequestNode:
    def test_closed_with_merge_time_is_merged(self):
        pr = PullRequestNode.from_graphql(GRAPHQL_PR)
        assert pr.state == "merged"

    def test_closed_without_merge_time_stays_closed(self):
        node = {**GRAPHQL_PR, "mergedAt": None, "mergedBy": None}
        pr = PullRequestNode.from_graphql(node)
        assert pr.state == "closed"

    def test_graphql_and_rest_agree(self):
        from_graphql = PullRequestNode.from_graphql(GRAPHQL_PR)
        from_rest = PullRequestNode.from_rest(REST_PR_ITEM, REST_PR_DETAIL, REST_REVIEWS)

        assert from_graphql.to_row(1, 2, 3) == from_rest.to_row(1, 2, 3)
        assert from_graphql.author == from_rest.author
        assert from_graphql.merged_by.remote_id == from_rest.merged_by.remote_id == 102
        assert [r.to_row(5, None) for r in from_graphql.reviews] == [
            r.to_row(5, None) for r in from_rest.reviews
        ]

    def test_pending_reviews_ignored(self):
        pr = PullRequestNode.from_graphql(GRAPHQL_PR)
        assert [r.id for r in pr.reviews] == ["9001"]
        assert pr.reviews[0].state == "approved"
        assert pr.skipped_reviews == 0

    def test_timestamps_are_utc(self):
        pr = PullRequestNode.from_graphql(GRAPHQL_PR)
        assert pr.created_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert pr.merged_at.tzinfo is not None

    def test_missing_number_rejected(self):
        with pytest.raises(ValidationError):
            PullRequestNode.from_graphql({**GRAPHQL_PR, "number": None})

    def test_unknown_state_rejected(self):
        with pytest.raises(ValidationError):
            PullRequestNode.from_graphql({**GRAPHQL_PR, "state": "EXPLODED"})


GIT_ACTOR = {"name": "Octo Cat", "email": "octo@example.com", "date": "2024-03-01T07:30:00Z"}


class TestCommitNode:
    def test_graphql(self):
        node = {
            "oid": "abc123",
            "message": "fix",
            "committedDate": "2024-03-01T09:30:00+02:00",
            "additions": 4,
            "deletions": 1,
            "author": {
                "name": "Octo Cat",
                "email": "octo@example.com",
                "user": {"login": "octo", "databaseId": 101, "avatarUrl": None},
            },
            "committer": {"name": "GitHub", "email": "noreply@github.com", "user": None},
        }
        commit = CommitNode.from_graphql(node)
        assert commit.committed_at == datetime(2024, 3, 1, 7, 30, tzinfo=timezone.utc)
        assert commit.author.remote_id == 101
        assert commit.committer.login is None
        assert commit.to_row(1, 10, 11)["id"] == "abc123"

    def test_rest_uses_detail_stats(self):
        item = {
            "sha": "abc123",
            "commit": {
                "message": "fix",
                "author": GIT_ACTOR,
                "committer": GIT_ACTOR,
            },
            "author": {"login": "octo", "id": 101},
            "committer": {"login": "octo", "id": 101},
        }
        commit = CommitNode.from_rest(item, {"additions": 4, "deletions": 1, "total": 5})
        assert (commit.additions, commit.deletions) == (4, 1)
        assert commit.author == ActorRef(
            name="Octo Cat", email="octo@example.com", login="octo", remote_id=101
        )

    def test_missing_oid_rejected(self):
        with pytest.raises(ValidationError):
            CommitNode.from_graphql({"committedDate": "2024-03-01T07:30:00Z"})

    def test_missing_timestamp_rejected(self):
        with pytest.raises(ValidationError):
            CommitNode.from_graphql({"oid": "abc"})


class TestActorRef:
    def test_empty(self):
        assert ActorRef().is_empty
        assert not ActorRef(email="a@x.com").is_empty

    def test_graphql_node_id_fallback(self):
        actor = ActorRef.from_graphql_git_actor(
            {"name": "One", "email": "", "user": {"login": "one", "id": "MDQ6VXNlcjE="}}
        )
        assert actor.remote_id == 1
        assert actor.email is None

    def test_absent(self):
        assert ActorRef.from_graphql_user(None) is None
        assert ActorRef.from_rest_git_actor(None, None) is None


def test_parse_reviews_counts_invalid():
    raw = [
        {"id": 1, "state": "COMMENTED", "submitted_at": "2024-03-01T12:00:00Z"},
        {"id": 2, "state": "SHRUGGED", "submitted_at": "2024-03-01T12:00:00Z"},
        {"id": 3, "state": "APPROVED", "submitted_at": None},
    ]
    reviews, skipped = parse_reviews(raw, ReviewNode.from_rest)
    assert [r.id for r in reviews] == ["1"]
    assert skipped == 1
