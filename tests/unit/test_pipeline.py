"""Tests for SourceBuildPipeline — phases, fallbacks, idempotence, batches."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
from conftest import REPO_URL, FakeRunner, sha_of

from gitcache.config import GitCacheSettings
from gitcache.core.hasher import integrity_of
from gitcache.core.local_store import LocalArtifactStore
from gitcache.core.pipeline import SourceBuildPipeline
from gitcache.errors import BuildError, BuildPhase, KeyNormalizationError, ToolError
from gitcache.models.artifacts import BuildOptions, BuildRequest, PackageInfo


@pytest.fixture
def pipeline(
    store: LocalArtifactStore, settings: GitCacheSettings, fake_runner: FakeRunner
) -> SourceBuildPipeline:
    return SourceBuildPipeline(store, settings=settings, runner=fake_runner)


class _TimingOutRunner(FakeRunner):
    """Times out on commands starting with *prefix*."""

    def __init__(self, prefix: str) -> None:
        super().__init__()
        self.prefix = prefix

    def __call__(self, args, *, cwd=None, timeout, binary=False):
        if " ".join(args).startswith(self.prefix):
            raise ToolError(args, timed_out=True)
        return super().__call__(args, cwd=cwd, timeout=timeout, binary=binary)


class _UndecodableRunner(FakeRunner):
    """Raises a non-gitcache error on commands starting with *prefix*."""

    def __init__(self, prefix: str) -> None:
        super().__init__()
        self.prefix = prefix

    def __call__(self, args, *, cwd=None, timeout, binary=False):
        if " ".join(args).startswith(self.prefix):
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
        return super().__call__(args, cwd=cwd, timeout=timeout, binary=binary)


def _workspaces() -> set[str]:
    return {p.name for p in Path(tempfile.gettempdir()).glob("gitcache-build-*")}


class TestBuild:
    def test_happy_path(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        result = pipeline.build(REPO_URL, sha_of("a"), "linux-x64")

        assert result.artifact_path.read_bytes() == b"packed-artifact"
        assert result.artifact_path.name == "package.tgz"
        assert result.integrity == integrity_of(b"packed-artifact")
        assert result.package_info == PackageInfo(name="widget", version="1.2.3")
        assert result.repo_url == "https://github.com/acme/widget"
        assert fake_runner.commands() == [
            "git clone",
            "git cat-file",
            "git checkout",
            "npm ci",
            "npm pack",
        ]

    def test_clone_is_shallow_and_checkout_by_sha(
        self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner
    ):
        pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        clone = fake_runner.calls[0]
        assert clone[:4] == ["git", "clone", "--depth", "1"]
        assert clone[4] == REPO_URL
        checkout = fake_runner.calls[2]
        assert checkout == ["git", "checkout", "--detach", sha_of("a")]

    def test_idempotent_without_force(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        first = pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        calls = len(fake_runner.calls)
        second = pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert len(fake_runner.calls) == calls
        assert second == first

    def test_force_rebuilds(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        calls = len(fake_runner.calls)
        pipeline.build(REPO_URL, sha_of("a"), "linux-x64", BuildOptions(force=True))
        assert len(fake_runner.calls) > calls

    def test_unshallow_when_commit_missing(
        self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner
    ):
        fake_runner.fail("git cat-file")
        pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert ["git", "fetch", "--unshallow"] in fake_runner.calls

    def test_npm_install_fallback(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        fake_runner.fail("npm ci")
        result = pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert "npm install" in fake_runner.commands()
        assert result.artifact_path.exists()

    def test_skip_scripts_flag(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        fake_runner.manifest = {"name": "widget", "version": "1.0.0", "scripts": {"prepare": "tsc"}}
        fake_runner.fail("npm ci")
        pipeline.build(REPO_URL, sha_of("a"), "linux-x64", BuildOptions(skip_install_scripts=True))
        assert ["npm", "ci", "--ignore-scripts"] in fake_runner.calls
        assert ["npm", "install", "--ignore-scripts"] in fake_runner.calls
        assert ["npm", "run", "prepare"] not in fake_runner.calls

    def test_prepare_script_runs(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        fake_runner.manifest = {"name": "widget", "version": "1.0.0", "scripts": {"prepare": "tsc"}}
        pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert ["npm", "run", "prepare"] in fake_runner.calls

    def test_missing_manifest_is_not_an_error(
        self, store: LocalArtifactStore, settings: GitCacheSettings
    ):
        runner = FakeRunner(write_manifest=False)
        pipeline = SourceBuildPipeline(store, settings=settings, runner=runner)
        result = pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert result.package_info is None

    def test_invalid_sha(self, pipeline: SourceBuildPipeline):
        with pytest.raises(KeyNormalizationError):
            pipeline.build(REPO_URL, "main", "linux-x64")

    def test_get_cached(self, pipeline: SourceBuildPipeline, make_key):
        key = make_key("a")
        assert pipeline.get_cached(key) is None
        built = pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert pipeline.get_cached(key) == built


class TestBuildFailures:
    @pytest.mark.parametrize(
        ("failing", "phase"),
        [
            ("git clone", BuildPhase.CHECKOUT),
            ("git checkout", BuildPhase.CHECKOUT),
            ("npm install", BuildPhase.INSTALL),
            ("npm pack", BuildPhase.PACK),
        ],
    )
    def test_phase_reported(
        self,
        pipeline: SourceBuildPipeline,
        fake_runner: FakeRunner,
        failing: str,
        phase: BuildPhase,
    ):
        fake_runner.fail(failing)
        if failing == "npm install":
            fake_runner.fail("npm ci")
        with pytest.raises(BuildError) as exc_info:
            pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert exc_info.value.phase is phase
        assert exc_info.value.exit_code == 1

    def test_timeout_reported_with_phase(self, store: LocalArtifactStore, settings: GitCacheSettings):
        runner = _TimingOutRunner("npm pack")
        pipeline = SourceBuildPipeline(store, settings=settings, runner=runner)
        with pytest.raises(BuildError) as exc_info:
            pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert exc_info.value.phase is BuildPhase.PACK
        assert exc_info.value.exit_code is None

    def test_unshallow_failure_is_checkout(
        self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner
    ):
        fake_runner.fail("git cat-file")
        fake_runner.fail("git fetch")
        with pytest.raises(BuildError) as exc_info:
            pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert exc_info.value.phase is BuildPhase.CHECKOUT

    def test_prepare_failure_is_install(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        fake_runner.manifest = {"name": "widget", "version": "1.0.0", "scripts": {"prepare": "tsc"}}
        fake_runner.fail("npm run prepare")
        with pytest.raises(BuildError) as exc_info:
            pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert exc_info.value.phase is BuildPhase.INSTALL

    def test_failed_build_leaves_no_entry(
        self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner, make_key
    ):
        fake_runner.fail("npm pack")
        with pytest.raises(BuildError):
            pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        assert pipeline.store.has(make_key("a")) is False

    def test_workspace_removed_on_failure(
        self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner
    ):
        before = _workspaces()
        fake_runner.fail("npm pack")
        with pytest.raises(BuildError):
            pipeline.build(REPO_URL, sha_of("a"), "linux-x64")
        clone_dest = Path(fake_runner.calls[0][-1])
        assert not clone_dest.parent.exists()
        assert _workspaces() <= before


class TestBuildBatch:
    def test_all_settled_in_order(self, pipeline: SourceBuildPipeline, fake_runner: FakeRunner):
        fake_runner.fail(f"git checkout --detach {sha_of('b')}")
        requests = [
            BuildRequest(repo_url=REPO_URL, commit_sha=sha_of(c), platform="linux-x64", name=c)
            for c in "abc"
        ]
        outcomes = pipeline.build_batch(requests)

        assert [o.request.name for o in outcomes] == ["a", "b", "c"]
        assert outcomes[0].ok and outcomes[2].ok
        assert not outcomes[1].ok
        assert outcomes[1].phase is BuildPhase.CHECKOUT
        assert outcomes[0].result is not None

    def test_invalid_request_reported(self, pipeline: SourceBuildPipeline):
        outcomes = pipeline.build_batch([BuildRequest(repo_url=REPO_URL, commit_sha="nope")])
        assert not outcomes[0].ok
        assert outcomes[0].phase is None

    def test_unexpected_error_settles(self, store: LocalArtifactStore, settings: GitCacheSettings):
        runner = _UndecodableRunner(f"git checkout --detach {sha_of('b')}")
        pipeline = SourceBuildPipeline(store, settings=settings, runner=runner)
        requests = [
            BuildRequest(repo_url=REPO_URL, commit_sha=sha_of(c), platform="linux-x64", name=c)
            for c in "ab"
        ]
        outcomes = pipeline.build_batch(requests)

        assert len(outcomes) == 2
        assert outcomes[0].ok
        assert not outcomes[1].ok
        assert "UnicodeDecodeError" in outcomes[1].error

    def test_empty(self, pipeline: SourceBuildPipeline):
        assert pipeline.build_batch([]) == []
