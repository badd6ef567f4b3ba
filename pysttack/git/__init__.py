"""Git interfaces and implementation."""

import os
import shlex
import logging
import tempfile
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

import git
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ..config.models import SttackConfig
from ..typing import (
    LOCAL_REF_PREFIX, BranchName, BranchTip, CommitHash, CommitRecord, CommitSignature,
    RebaseConflictError, RefName, VersionControlError,
)

# Get module logger
logger = logging.getLogger(__name__)

REMOTE_REF_PREFIX = "refs/remotes/"


def is_local_ref(ref_name: str) -> bool:
    return ref_name.startswith(LOCAL_REF_PREFIX)


def local_ref_to_branch_name(ref_name: str) -> BranchName:
    """Strip ``refs/heads/``; other refs are returned unchanged."""
    if not is_local_ref(ref_name):
        return BranchName(ref_name)
    return BranchName(ref_name[len(LOCAL_REF_PREFIX):])


def ref_to_branch_name(ref_name: str) -> BranchName:
    """Branch name of a local or remote-tracking ref (`refs/remotes/<remote>/` stripped)."""
    if ref_name.startswith(REMOTE_REF_PREFIX):
        _, _, branch = ref_name[len(REMOTE_REF_PREFIX):].partition("/")
        return BranchName(branch)
    return local_ref_to_branch_name(ref_name)


def branch_name_to_local_ref(branch_name: str) -> RefName:
    return RefName(f"{LOCAL_REF_PREFIX}{branch_name}")


def branch_name_to_remote_ref(remote: str, branch_name: str) -> RefName:
    return RefName(f"{REMOTE_REF_PREFIX}{remote}/{branch_name}")


def commit_to_record(commit: git.Commit) -> CommitRecord:
    """Convert a GitPython commit into the port's record type."""
    summary = commit.summary
    if isinstance(summary, bytes):
        summary = summary.decode('utf-8', errors='replace')
    return CommitRecord(
        hash=CommitHash(commit.hexsha),
        title=summary,
        timestamp=commit.committed_datetime,
        author=CommitSignature(name=commit.author.name or "", email=commit.author.email or ""),
        committer=CommitSignature(name=commit.committer.name or "", email=commit.committer.email or ""),
        parent_hashes=tuple(CommitHash(p.hexsha) for p in commit.parents),
    )


class RealGit:
    """Real Git implementation of the VersionControl port, on GitPython."""

    def __init__(self, config: SttackConfig, path: Optional[str] = None):
        """Initialize with config and the repository path (default: cwd)."""
        self.config: SttackConfig = config
        self.path = path or os.getcwd()
        self._repo: Optional[git.Repo] = None

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            try:
                self._repo = git.Repo(self.path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise VersionControlError(f"Not in a git repository: {self.path}") from e
        return self._repo

    @property
    def working_dir(self) -> str:
        return str(self.repo.working_tree_dir or self.path)

    def run_cmd(self, command: str) -> str:
        """Run a git command given as a single string."""
        cmd_str = command.strip()
        logger.info(f"> git {cmd_str}")
        cmd_parts = shlex.split(cmd_str)
        method = getattr(self.repo.git, cmd_parts[0].replace('-', '_'))
        try:
            result = method(*cmd_parts[1:])
        except GitCommandError as e:
            raise VersionControlError(f"Git command failed: {e}") from e
        return result if isinstance(result, str) else str(result)

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except (GitCommandError, BadName, ValueError) as e:
            raise VersionControlError(f"{action} failed: {e}") from e

    def list_branches_and_tips(self) -> List[BranchTip]:
        logger.info("> git for-each-ref refs/heads refs/remotes")
        tips: List[BranchTip] = []
        with self._translate_errors("Listing branches"):
            for ref in self.repo.references:
                if not isinstance(ref, (git.Head, git.RemoteReference)):
                    continue
                # origin/HEAD is a symbolic alias of another remote branch
                if ref.path.endswith("/HEAD"):
                    continue
                tips.append(BranchTip(ref_name=RefName(ref.path), commit=commit_to_record(ref.commit)))
        return tips

    def read_commit(self, commit_hash: CommitHash) -> CommitRecord:
        with self._translate_errors(f"Reading commit {commit_hash}"):
            return commit_to_record(self.repo.commit(commit_hash))

    def head_hash(self) -> CommitHash:
        with self._translate_errors("Reading HEAD"):
            return CommitHash(self.repo.head.commit.hexsha)

    def has_uncommitted_changes(self) -> bool:
        return self.repo.is_dirty(untracked_files=True)

    def merge_base(self, a: CommitHash, b: CommitHash) -> CommitHash:
        logger.debug(f"> git merge-base {a[:8]} {b[:8]}")
        with self._translate_errors(f"merge-base {a} {b}"):
            bases = self.repo.merge_base(a, b)
        if not bases or bases[0] is None:
            raise VersionControlError(f"Commits {a[:8]} and {b[:8]} have no common ancestor")
        return CommitHash(bases[0].hexsha)

    def cherry_pick(self, commit_hash: CommitHash, onto: CommitHash) -> CommitHash:
        """Replay a commit onto another without touching the working copy.

        The patch between the commit and its parent is applied to a throwaway
        index seeded with ``onto``'s tree, and the resulting tree is committed
        with the original message, author and committer.
        """
        logger.info(f"> git cherry-pick {commit_hash[:8]} --onto {onto[:8]}")
        with self._translate_errors(f"Cherry-picking {commit_hash}"):
            original = self.repo.commit(commit_hash)
            target = self.repo.commit(onto)
        if len(original.parents) != 1:
            raise VersionControlError(
                f"Cannot cherry-pick {commit_hash[:8]}: expected one parent, found {len(original.parents)}")

        fd, index_path = tempfile.mkstemp(prefix="sttack-index-")
        os.close(fd)
        os.unlink(index_path)
        env = {"GIT_INDEX_FILE": index_path}
        patch_path = index_path + ".patch"
        try:
            with self._translate_errors(f"Preparing cherry-pick of {commit_hash}"):
                self.repo.git.read_tree(target.hexsha, env=env)
                patch = self.repo.git.diff_tree(
                    "-p", "--binary", "--full-index", original.parents[0].hexsha, original.hexsha,
                    stdout_as_string=False, strip_newline_in_stdout=False)
            if patch.strip():
                with open(patch_path, "wb") as f:
                    f.write(patch if patch.endswith(b"\n") else patch + b"\n")
                try:
                    self.repo.git.apply("--cached", "--binary", patch_path, env=env)
                except GitCommandError as e:
                    raise RebaseConflictError(
                        f"Commit {commit_hash[:8]} ({original.summary}) does not apply cleanly "
                        f"onto {onto[:8]}: {e.stderr.strip() if e.stderr else e}",
                        commit_hash=commit_hash) from e
            with self._translate_errors(f"Writing tree for {commit_hash}"):
                tree_sha = self.repo.git.write_tree(env=env)
                new_commit = git.Commit.create_from_tree(
                    self.repo, self.repo.tree(tree_sha), original.message,
                    parent_commits=[target], head=False,
                    author=original.author, committer=original.committer,
                    author_date=original.authored_datetime)
        finally:
            for path in (index_path, patch_path):
                if os.path.exists(path):
                    os.unlink(path)
        return CommitHash(new_commit.hexsha)

    def checked_out_branch(self) -> Optional[BranchName]:
        if self.repo.head.is_detached:
            return None
        return BranchName(self.repo.active_branch.name)

    def move_branch(self, name: BranchName, to: CommitHash, detach_if_checked_out: bool) -> None:
        checked_out = self.checked_out_branch() == name
        if checked_out and not detach_if_checked_out:
            raise VersionControlError(f"Branch {name} is checked out and cannot be moved")
        logger.info(f"> git branch -f {name} {to[:8]}")
        with self._translate_errors(f"Moving branch {name}"):
            if checked_out:
                # Detach at the same commit so the ref is free to move
                self.repo.git.checkout("--detach")
            self.repo.create_head(name, to, force=True)
            if checked_out:
                self.repo.git.checkout(name)

    def create_branch(self, name: BranchName, at: CommitHash) -> None:
        logger.info(f"> git branch {name} {at[:8]}")
        if name in self.repo.heads:
            raise VersionControlError(f"Branch {name} already exists")
        with self._translate_errors(f"Creating branch {name}"):
            self.repo.create_head(name, at)

    def _push_env(self) -> Dict[str, str]:
        key_path = self.config.user.ssh_private_key_path
        if not key_path:
            return {}
        key_path = os.path.expanduser(key_path)
        return {"GIT_SSH_COMMAND": f"ssh -i {shlex.quote(key_path)} -o IdentitiesOnly=yes"}

    def push_branch(self, name: BranchName, remote: str) -> None:
        refspec = f"+{branch_name_to_local_ref(name)}:{branch_name_to_local_ref(name)}"
        if self.config.tool.pretend:
            logger.info(f"> git push {remote} {refspec} (pretend)")
            return
        logger.info(f"> git push {remote} {refspec}")
        with self._translate_errors(f"Pushing {name} to {remote}"):
            self.repo.git.push(remote, refspec, env=self._push_env())
            self.repo.git.branch(f"--set-upstream-to={remote}/{name}", name)

    def fetch(self, remote: str) -> None:
        logger.info(f"> git fetch {remote} --prune")
        with self._translate_errors(f"Fetching {remote}"):
            self.repo.git.fetch(remote, "--prune", env=self._push_env())

    def lookup_by_hash_prefix(self, prefix: str) -> Optional[CommitHash]:
        prefix = prefix.strip()
        if not prefix:
            return None
        try:
            resolved = self.repo.git.rev_parse("--verify", "--quiet", f"{prefix}^{{commit}}")
        except GitCommandError:
            logger.debug(f"Could not resolve {prefix}: missing or ambiguous")
            return None
        return CommitHash(resolved.strip()) if resolved.strip() else None
