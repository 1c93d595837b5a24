"""Tests for ref resolution and the activity log."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import REPO_URL, FakeRunner, sha_of

from gitcache.core.refs import ActivityLog, resolve_git_references, resolve_ref
from gitcache.errors import RefResolutionError
from gitcache.models.lockfile import GitDependency


@pytest.fixture
def activity_log(tmp_path: Path) -> ActivityLog:
    return ActivityLog(tmp_path / "home" / "activity.log")


class TestResolveRef:
    def test_full_sha_passes_through(self, fake_runner: FakeRunner):
        assert resolve_ref(REPO_URL, sha_of("A"), runner=fake_runner) == sha_of("a")
        assert fake_runner.calls == []

    def test_branch_via_ls_remote(self):
        runner = FakeRunner(ls_remote={"main": sha_of("c")})
        assert resolve_ref(REPO_URL, "main", runner=runner) == sha_of("c")
        assert runner.calls == [["git", "ls-remote", "--heads", "--tags", REPO_URL, "main"]]

    def test_unknown_ref_retries_head(self):
        runner = FakeRunner(ls_remote={"HEAD": sha_of("d")})
        assert resolve_ref(REPO_URL, "gone", runner=runner) == sha_of("d")
        assert [call[-1] for call in runner.calls] == ["gone", "HEAD"]
        assert runner.calls[-1] == ["git", "ls-remote", REPO_URL, "HEAD"]

    def test_head_is_queried_without_filters(self):
        runner = FakeRunner(ls_remote={"HEAD": sha_of("d")})
        assert resolve_ref(REPO_URL, "HEAD", runner=runner) == sha_of("d")
        assert runner.calls == [["git", "ls-remote", REPO_URL, "HEAD"]]

    def test_not_found(self, fake_runner: FakeRunner):
        with pytest.raises(RefResolutionError, match="not found"):
            resolve_ref(REPO_URL, "gone", runner=fake_runner)

    def test_invalid_sha_from_remote(self):
        runner = FakeRunner(ls_remote={"main": "deadbeef"})
        with pytest.raises(RefResolutionError, match="Invalid commit SHA"):
            resolve_ref(REPO_URL, "main", runner=runner)

    def test_git_failure(self, fake_runner: FakeRunner):
        fake_runner.fail("git ls-remote")
        with pytest.raises(RefResolutionError):
            resolve_ref(REPO_URL, "main", runner=fake_runner)

    def test_records_activity(self, activity_log: ActivityLog):
        runner = FakeRunner(ls_remote={"main": sha_of("c")})
        resolve_ref(REPO_URL, "main", runner=runner, activity_log=activity_log)
        entries = activity_log.entries()
        assert len(entries) == 1
        assert entries[0].sha == sha_of("c")
        assert entries[0].action == "ref-resolved"


class TestActivityLog:
    def test_empty_when_missing(self, activity_log: ActivityLog):
        assert activity_log.entries() == []
        assert activity_log.last_resolved(REPO_URL, "main") is None

    def test_history_and_last_resolved(self, activity_log: ActivityLog):
        activity_log.record(REPO_URL, "main", sha_of("a"))
        activity_log.record("https://github.com/acme/other.git", "main", sha_of("b"))
        activity_log.record(REPO_URL, "main", sha_of("c"))

        assert [e.sha for e in activity_log.history(REPO_URL)] == [sha_of("a"), sha_of("c")]
        assert activity_log.last_resolved(REPO_URL, "main") == sha_of("c")
        assert activity_log.last_resolved(REPO_URL, "v1") is None

    def test_uses_camel_case_on_disk(self, activity_log: ActivityLog):
        activity_log.record(REPO_URL, "main", sha_of("a"))
        assert '"repoUrl"' in activity_log.path.read_text(encoding="utf-8")

    def test_malformed_lines_skipped(self, activity_log: ActivityLog):
        activity_log.record(REPO_URL, "main", sha_of("a"))
        with activity_log.path.open("a", encoding="utf-8") as f:
            f.write("not json\n\n")
        assert len(activity_log.entries()) == 1


class TestResolveGitReferences:
    def test_failures_kept_unresolved(self, activity_log: ActivityLog):
        runner = FakeRunner(ls_remote={"v1": sha_of("e")})
        runner.fail("git ls-remote --heads --tags https://github.com/acme/broken.git")
        deps = [
            GitDependency(
                name="widget",
                git_url="github:acme/widget#v1",
                reference="v1",
                preferred_url="git+https://github.com/acme/widget.git",
            ),
            GitDependency(
                name="broken",
                git_url="github:acme/broken#v1",
                reference="v1",
                preferred_url="git+https://github.com/acme/broken.git",
            ),
        ]
        resolved = resolve_git_references(deps, runner=runner, activity_log=activity_log)

        assert [d.resolved_sha for d in resolved] == [sha_of("e"), None]
        assert runner.calls[0][-2] == "https://github.com/acme/widget.git"
        assert len(activity_log.entries()) == 1
