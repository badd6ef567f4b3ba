"""Tests for the async Stacker."""

import asyncio
import random
from typing import Dict, List

import pytest

from pysttack.config import Config
from pysttack.stack import stack_branch_for
from pysttack.stacker import Stacker, StackerState
from pysttack.tests.fakes import FakeCollaborationPlatform, FakeVersionControl
from pysttack.typing import (
    AmbiguousOrMissingCommitError, BranchName, CommitHash, RebaseConflictError, Repository,
    RepositoryLoadError, VersionControlError,
)


@pytest.fixture
def published() -> List[Repository]:
    return []


@pytest.fixture
def stacker(vc: FakeVersionControl, platform: FakeCollaborationPlatform, config: Config,
            published: List[Repository]) -> Stacker:
    return Stacker("/repo", vc, platform, config, listener=published.append, rng=random.Random(4))


class TestLoad:
    """Loading and publishing snapshots."""

    @pytest.mark.asyncio
    async def test_load_publishes_snapshot(self, stacker: Stacker, linear: Dict[str, CommitHash],
                                           published: List[Repository]) -> None:
        """Loading publishes the snapshot and ends READY."""
        assert stacker.state == StackerState.IDLE
        repo = await stacker.load()
        assert stacker.state == StackerState.READY
        assert stacker.repository is repo
        assert published == [repo]
        assert repo.head_hash == linear["C"]

    @pytest.mark.asyncio
    async def test_pr_info_published_second(self, stacker: Stacker, vc: FakeVersionControl,
                                            platform: FakeCollaborationPlatform,
                                            linear: Dict[str, CommitHash],
                                            published: List[Repository]) -> None:
        """PR info arrives in a second snapshot."""
        vc.branch("stack-attack/a-b-c", linear["A"])
        platform.add_pr("stack-attack/a-b-c", "main", "add parser")
        platform.remote_heads["stack-attack/a-b-c"] = linear["B"]

        repo = await stacker.load()

        assert len(published) == 2
        assert published[0].commits[linear["A"]].pull_request_info is None
        info = repo.commits[linear["A"]].pull_request_info
        assert info is not None and info.number == 1
        assert info.is_outdated

    @pytest.mark.asyncio
    async def test_pr_lookup_failure_keeps_local_snapshot(
            self, stacker: Stacker, vc: FakeVersionControl, platform: FakeCollaborationPlatform,
            linear: Dict[str, CommitHash], published: List[Repository]) -> None:
        """A failed PR lookup keeps the local snapshot."""
        vc.branch("stack-attack/a-b-c", linear["A"])
        platform.failing_lookups = True
        repo = await stacker.load()
        assert published == [repo]
        assert stacker.state == StackerState.READY

    @pytest.mark.asyncio
    async def test_fetch_before_load(self, stacker: Stacker, vc: FakeVersionControl,
                                     linear: Dict[str, CommitHash]) -> None:
        """Fetching goes to the configured remote."""
        await stacker.load(fetch=True)
        assert vc.fetched == ["origin"]

    @pytest.mark.asyncio
    async def test_load_failure(self, stacker: Stacker, published: List[Repository]) -> None:
        """A failed first load publishes nothing."""
        with pytest.raises(RepositoryLoadError):
            await stacker.load()
        assert stacker.state == StackerState.IDLE
        assert stacker.repository is None
        assert published == []


class TestGetCommitByHash:
    """Resolving hash prefixes."""

    @pytest.mark.asyncio
    async def test_prefix_resolves(self, stacker: Stacker, linear: Dict[str, CommitHash]) -> None:
        """A prefix resolves to the snapshot commit."""
        commit = await stacker.get_commit_by_hash(linear["B"][:10])
        assert commit.hash == linear["B"]
        assert commit.title == "use parser"

    @pytest.mark.asyncio
    async def test_missing_commit(self, stacker: Stacker, linear: Dict[str, CommitHash]) -> None:
        """An unknown prefix raises."""
        with pytest.raises(AmbiguousOrMissingCommitError):
            await stacker.get_commit_by_hash("zzzz")

    @pytest.mark.asyncio
    async def test_commit_outside_snapshot(self, stacker: Stacker, linear: Dict[str, CommitHash]) -> None:
        """The root sits below the common ancestor, so it is not part of the graph."""
        with pytest.raises(AmbiguousOrMissingCommitError):
            await stacker.get_commit_by_hash(linear["R"])


class TestOperations:
    """Mutating operations reload and publish."""

    @pytest.mark.asyncio
    async def test_rebase_reloads(self, stacker: Stacker, vc: FakeVersionControl,
                                  linear: Dict[str, CommitHash], published: List[Repository]) -> None:
        """A rebase ends with a reload."""
        await stacker.load()
        published.clear()

        repo = await stacker.rebase(linear["A"], linear["D"])

        tip = vc.branch_tip("feature")
        assert tip is not None and tip in repo.commits
        assert repo.commits[tip].parent_hashes[0] in repo.commits
        assert linear["A"] not in repo.commits
        assert published[-1] is repo
        assert stacker.state == StackerState.READY

    @pytest.mark.asyncio
    async def test_failed_rebase_keeps_snapshot(self, stacker: Stacker, vc: FakeVersionControl,
                                                linear: Dict[str, CommitHash],
                                                published: List[Repository]) -> None:
        """A failed rebase keeps the previous snapshot."""
        before = await stacker.load()
        published.clear()
        vc.conflicts.add(linear["B"])

        with pytest.raises(RebaseConflictError):
            await stacker.rebase(linear["A"], linear["D"])

        assert stacker.repository is before
        assert published == []
        assert stacker.state == StackerState.READY
        assert vc.branch_tip("feature") == linear["C"]

    @pytest.mark.asyncio
    async def test_pr_one_commit(self, stacker: Stacker, vc: FakeVersionControl,
                                 platform: FakeCollaborationPlatform,
                                 linear: Dict[str, CommitHash]) -> None:
        """One commit gets one PR into the target branch."""
        report = await stacker.pr_one_commit(linear["A"])

        assert report.ok
        assert len(platform.prs) == 1
        assert platform.prs[1].base_branch == "main"
        assert stacker.repository is not None
        info = stacker.repository.commits[linear["A"]].pull_request_info
        assert info is not None and info.number == 1

    @pytest.mark.asyncio
    async def test_pr_stack_creates_and_links(self, stacker: Stacker, vc: FakeVersionControl,
                                              platform: FakeCollaborationPlatform,
                                              linear: Dict[str, CommitHash]) -> None:
        """A whole stack gets linked PRs."""
        commit = await stacker.get_commit_by_hash(linear["A"][:8])
        report = await stacker.pr_stack(commit)

        assert report.ok
        assert sorted(platform.prs) == [1, 2, 3]
        assert platform.prs[1].description == (
            "**Stack**:\n- **#1 add parser**\n- #2 use parser\n- #3 document parser")
        assert platform.prs[3].description.endswith("- **#3 document parser**")
        assert len(vc.pushed) == 3

    @pytest.mark.asyncio
    async def test_pr_stack_reports_failures(self, stacker: Stacker, vc: FakeVersionControl,
                                             platform: FakeCollaborationPlatform,
                                             linear: Dict[str, CommitHash]) -> None:
        """Description failures are reported per commit."""
        await stacker.load()
        platform.failing_numbers.add(2)
        report = await stacker.pr_stack(linear["A"])
        assert [h for h, _ in report.failures] == [linear["B"]]
        assert platform.prs[1].description.startswith("**Stack**:")

    @pytest.mark.asyncio
    async def test_pr_stack_without_boundary_still_reloads(
            self, stacker: Stacker, vc: FakeVersionControl, platform: FakeCollaborationPlatform,
            config: Config, linear: Dict[str, CommitHash], published: List[Repository]) -> None:
        """PRs opened before the stack boundary lookup fails are reported and published."""
        config.repo.long_lived_branches = ["release"]
        await stacker.load()
        published.clear()

        report = await stacker.pr_stack(linear["A"])

        assert [h for h, _ in report.failures] == [linear["A"]]
        assert "release" in report.failures[0][1]
        assert len(report.pull_requests) == 3
        assert published and stacker.repository is published[-1]
        for key in "ABC":
            commit = stacker.repository.commits[linear[key]]
            assert stack_branch_for(commit) is not None
            assert commit.pull_request_info is not None
        assert stacker.state == StackerState.READY

    @pytest.mark.asyncio
    async def test_failed_pr_operation_reloads(self, stacker: Stacker, vc: FakeVersionControl,
                                               monkeypatch: pytest.MonkeyPatch,
                                               linear: Dict[str, CommitHash]) -> None:
        """Branches created before a push fails show up in the published snapshot."""
        before = await stacker.load()

        def refuse_push(name: BranchName, remote: str) -> None:
            raise VersionControlError("remote rejected")

        monkeypatch.setattr(vc, "push_branch", refuse_push)
        with pytest.raises(VersionControlError):
            await stacker.pr_stack(linear["A"])

        assert stacker.repository is not before
        assert stacker.repository is not None
        assert stack_branch_for(stacker.repository.commits[linear["A"]]) is not None
        assert stacker.state == StackerState.READY


class TestEventLoops:
    """A Stacker built outside any event loop."""

    def test_usable_from_successive_event_loops(self, vc: FakeVersionControl,
                                                platform: FakeCollaborationPlatform, config: Config,
                                                linear: Dict[str, CommitHash]) -> None:
        """The CLI builds the Stacker first and runs each command in a fresh loop."""
        stacker = Stacker("/repo", vc, platform, config)
        first = asyncio.run(stacker.load())
        second = asyncio.run(stacker.get_commit_by_hash(linear["B"][:10]))
        assert first.head_hash == linear["C"]
        assert second.hash == linear["B"]
