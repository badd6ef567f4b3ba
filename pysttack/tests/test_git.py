"""Tests for RealGit against a throwaway repository."""

import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict

import pytest

from pysttack.config import default_config
from pysttack.git import (
    RealGit, branch_name_to_local_ref, branch_name_to_remote_ref, local_ref_to_branch_name,
)
from pysttack.graph import CommitGraphBuilder
from pysttack.typing import BranchName, CommitHash, RebaseConflictError, VersionControl, VersionControlError

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

GIT_ENV = {
    "GIT_AUTHOR_NAME": "Ada Author",
    "GIT_AUTHOR_EMAIL": "ada@example.com",
    "GIT_COMMITTER_NAME": "Cy Committer",
    "GIT_COMMITTER_EMAIL": "cy@example.com",
}


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True,
                            env={**os.environ, **GIT_ENV})
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> CommitHash:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)
    return CommitHash(git(repo, "rev-parse", "HEAD"))


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    git(tmp_path, "init", "-q", "-b", "main")
    return tmp_path


@pytest.fixture
def history(repo_dir: Path) -> Dict[str, CommitHash]:
    """main: base; feature: base <- a <- b; other: base <- d. feature is checked out."""
    h: Dict[str, CommitHash] = {}
    h["base"] = commit_file(repo_dir, "shared.txt", "one\ntwo\nthree\n", "base")
    git(repo_dir, "checkout", "-q", "-b", "other")
    h["d"] = commit_file(repo_dir, "other.txt", "other\n", "add other")
    git(repo_dir, "checkout", "-q", "main")
    git(repo_dir, "checkout", "-q", "-b", "feature")
    h["a"] = commit_file(repo_dir, "a.txt", "a\n", "add a\n\nLonger body.")
    h["b"] = commit_file(repo_dir, "shared.txt", "one\nTWO\nthree\n", "change two")
    return h


@pytest.fixture
def real_git(repo_dir: Path) -> RealGit:
    return RealGit(default_config(), str(repo_dir))


class TestRefHelpers:
    """Ref name conversions."""

    def test_round_trip(self) -> None:
        """Branch names convert to refs and back."""
        assert branch_name_to_local_ref("stack-attack/a-b-c") == "refs/heads/stack-attack/a-b-c"
        assert local_ref_to_branch_name("refs/heads/stack-attack/a-b-c") == "stack-attack/a-b-c"
        assert local_ref_to_branch_name("refs/remotes/origin/main") == "refs/remotes/origin/main"
        assert branch_name_to_remote_ref("origin", "main") == "refs/remotes/origin/main"


class TestRealGit:
    """The VersionControl port on a real repository."""

    def test_implements_port(self, real_git: RealGit) -> None:
        """RealGit satisfies the VersionControl protocol."""
        assert isinstance(real_git, VersionControl)

    def test_branches_and_tips(self, real_git: RealGit, history: Dict[str, CommitHash]) -> None:
        """Every local branch is listed with its tip."""
        tips = {t.ref_name: t.commit.hash for t in real_git.list_branches_and_tips()}
        assert tips == {
            "refs/heads/main": history["base"],
            "refs/heads/feature": history["b"],
            "refs/heads/other": history["d"],
        }

    def test_read_commit(self, real_git: RealGit, history: Dict[str, CommitHash]) -> None:
        """Commit records carry title, parents and signatures."""
        record = real_git.read_commit(history["a"])
        assert record.title == "add a"
        assert record.parent_hashes == (history["base"],)
        assert record.author.email == "ada@example.com"
        assert record.committer.name == "Cy Committer"

    def test_merge_base_and_head(self, real_git: RealGit, history: Dict[str, CommitHash]) -> None:
        """Merge base, HEAD and the clean worktree are reported."""
        assert real_git.merge_base(history["b"], history["d"]) == history["base"]
        assert real_git.head_hash() == history["b"]
        assert not real_git.has_uncommitted_changes()

    def test_builds_graph(self, real_git: RealGit, history: Dict[str, CommitHash]) -> None:
        """The graph builder works on a real repository."""
        repo = CommitGraphBuilder(real_git).build(real_git.working_dir)
        assert repo.earliest_interesting_commit == history["base"]
        assert set(repo.commits) == set(history.values())

    def test_cherry_pick_leaves_worktree_alone(self, real_git: RealGit, repo_dir: Path,
                                               history: Dict[str, CommitHash]) -> None:
        """Cherry-picking writes a commit without touching the checkout."""
        new_hash = real_git.cherry_pick(history["a"], history["d"])

        new = real_git.repo.commit(new_hash)
        assert new.message == "add a\n\nLonger body.\n"
        assert new.parents[0].hexsha == history["d"]
        assert new.author.email == "ada@example.com"
        assert new.committer.email == "cy@example.com"
        assert {b.path for b in new.tree.blobs} == {"shared.txt", "other.txt", "a.txt"}
        assert real_git.head_hash() == history["b"]
        assert not real_git.has_uncommitted_changes()

    def test_cherry_pick_conflict(self, real_git: RealGit, repo_dir: Path,
                                  history: Dict[str, CommitHash]) -> None:
        """A conflicting pick raises and leaves the worktree as it was."""
        git(repo_dir, "checkout", "-q", "other")
        clash = commit_file(repo_dir, "shared.txt", "one\nzwei\nthree\n", "clash")
        git(repo_dir, "checkout", "-q", "feature")

        with pytest.raises(RebaseConflictError) as exc_info:
            real_git.cherry_pick(history["b"], clash)
        assert exc_info.value.commit_hash == history["b"]
        assert (repo_dir / "shared.txt").read_text() == "one\nTWO\nthree\n"

    def test_move_checked_out_branch(self, real_git: RealGit, repo_dir: Path,
                                     history: Dict[str, CommitHash]) -> None:
        """The checked-out branch only moves when detaching is allowed."""
        new_hash = real_git.cherry_pick(history["a"], history["d"])
        with pytest.raises(VersionControlError):
            real_git.move_branch(BranchName("feature"), new_hash, detach_if_checked_out=False)

        real_git.move_branch(BranchName("feature"), new_hash, detach_if_checked_out=True)
        assert git(repo_dir, "rev-parse", "feature") == new_hash
        assert real_git.checked_out_branch() == "feature"

    def test_create_branch(self, real_git: RealGit, repo_dir: Path, history: Dict[str, CommitHash]) -> None:
        """Creating an existing branch fails."""
        real_git.create_branch(BranchName("stack-attack/a-b-c"), history["a"])
        assert git(repo_dir, "rev-parse", "stack-attack/a-b-c") == history["a"]
        with pytest.raises(VersionControlError):
            real_git.create_branch(BranchName("stack-attack/a-b-c"), history["b"])

    def test_lookup_by_hash_prefix(self, real_git: RealGit, history: Dict[str, CommitHash]) -> None:
        """Unique prefixes resolve, unknown or empty ones do not."""
        assert real_git.lookup_by_hash_prefix(history["a"][:12]) == history["a"]
        assert real_git.lookup_by_hash_prefix("0000000000") is None
        assert real_git.lookup_by_hash_prefix("") is None

    def test_push_to_bare_remote(self, real_git: RealGit, repo_dir: Path, tmp_path_factory: pytest.TempPathFactory,
                                 history: Dict[str, CommitHash]) -> None:
        """Pushed branches show up on the remote and after fetch."""
        remote = tmp_path_factory.mktemp("remote")
        git(remote, "init", "-q", "--bare")
        git(repo_dir, "remote", "add", "origin", str(remote))

        real_git.create_branch(BranchName("stack-attack/a-b-c"), history["a"])
        real_git.push_branch(BranchName("stack-attack/a-b-c"), "origin")
        assert git(remote, "rev-parse", "stack-attack/a-b-c") == history["a"]

        real_git.fetch("origin")
        tips = {t.ref_name: t.commit.hash for t in real_git.list_branches_and_tips()}
        assert tips["refs/remotes/origin/stack-attack/a-b-c"] == history["a"]

    def test_not_a_repository(self, tmp_path_factory: pytest.TempPathFactory) -> None:
        """A directory outside git raises VersionControlError."""
        empty = tmp_path_factory.mktemp("empty")
        with pytest.raises(VersionControlError):
            RealGit(default_config(), str(empty)).head_hash()
