"""Tests for the webhook payload models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from peribolos.events import InstallationEvent, IssuesEvent, PushEvent
from tests.helpers import installation_payload, issue_edited_payload, push_payload


class TestInstallationEvent:
    """Tests for InstallationEvent."""

    def test_parses_account(self) -> None:
        event = InstallationEvent.model_validate(installation_payload())

        assert event.installation.id == 42
        assert event.installation.account is not None
        assert event.installation.account.login == "acme"

    def test_has_repository(self) -> None:
        event = InstallationEvent.model_validate(
            installation_payload(repositories=[".github", "website"])
        )

        assert event.has_repository(".github")
        assert not event.has_repository("infra")

    def test_missing_repositories(self) -> None:
        assert not InstallationEvent.model_validate(installation_payload()).has_repository(
            ".github"
        )


class TestPushEvent:
    """Tests for PushEvent."""

    def test_touched_paths_is_union_over_commits(self) -> None:
        event = PushEvent.model_validate(
            push_payload(
                commits=[
                    {"added": ["a.txt"], "modified": [], "removed": []},
                    {"added": [], "modified": ["peribolos.yaml"], "removed": ["old.yaml"]},
                ]
            )
        )

        assert event.touched_paths() == {"a.txt", "peribolos.yaml", "old.yaml"}

    def test_unknown_fields_are_ignored(self) -> None:
        payload = push_payload(modified=["peribolos.yaml"])
        payload["pusher"] = {"name": "octocat"}

        assert PushEvent.model_validate(payload).repository.owner.login == "acme"

    def test_missing_installation_is_rejected(self) -> None:
        payload = push_payload()
        del payload["installation"]

        with pytest.raises(ValidationError):
            PushEvent.model_validate(payload)


class TestIssuesEvent:
    """Tests for IssuesEvent."""

    def test_parses_issue(self) -> None:
        event = IssuesEvent.model_validate(issue_edited_payload(state="closed"))

        assert event.issue.number == 7
        assert event.issue.state == "closed"
        assert event.installation is not None

    def test_null_body(self) -> None:
        payload = issue_edited_payload()
        payload["issue"]["body"] = None

        assert IssuesEvent.model_validate(payload).issue.body is None

    def test_installation_optional(self) -> None:
        assert IssuesEvent.model_validate(issue_edited_payload(installation_id=None)).installation is None
