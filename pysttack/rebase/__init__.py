"""Tree-rooted rebase: uproot a commit subtree and replay it elsewhere."""

import logging
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Set, Tuple

from ..git import is_local_ref
from ..typing import (
    BranchName, Commit, CommitHash, RebaseConflictError, RebasePreconditionError,
    Repository, VersionControl,
)

logger = logging.getLogger(__name__)


class TreeRebaseEngine:
    """Replays every commit reachable from a root onto a new parent.

    Branches are moved as soon as their commit has been replayed, so a
    failure part way through restores the moved branches before re-raising.
    The input snapshot is never modified.
    """

    def __init__(self, vc: VersionControl):
        self.vc = vc

    def check_preconditions(self, root_hash: CommitHash, target_hash: CommitHash,
                            repo: Repository) -> List[CommitHash]:
        """Validate a rebase request and return the subtree in replay order."""
        if root_hash == target_hash:
            raise RebasePreconditionError(f"Cannot rebase {root_hash[:8]} onto itself")
        if target_hash not in repo.commits:
            raise RebasePreconditionError(f"Target commit {target_hash[:8]} does not exist")
        root = repo.get(root_hash)
        if root is None:
            raise RebasePreconditionError(f"Commit {root_hash[:8]} does not exist")
        if not root.parent_hashes:
            raise RebasePreconditionError(f"Commit {root_hash[:8]} has no parent and cannot be rebased")

        subtree = repo.subtree(root_hash)
        for commit_hash in subtree:
            if len(repo.commits[commit_hash].parent_hashes) > 1:
                raise RebasePreconditionError(
                    f"Commit {commit_hash[:8]} is a merge commit; rebasing merges is not supported")
        if target_hash in subtree:
            raise RebasePreconditionError(
                f"Target {target_hash[:8]} is a descendant of {root_hash[:8]}")
        return subtree

    def rebase(self, root_hash: CommitHash, target_hash: CommitHash, repo: Repository) -> Repository:
        """Rebase the tree rooted at ``root_hash`` onto ``target_hash``.

        Returns:
            A new snapshot in which the subtree has been replaced.

        Raises:
            RebasePreconditionError: Before any git call, if the request is invalid.
            RebaseConflictError: If a commit does not apply; moved branches are restored.
        """
        subtree = self.check_preconditions(root_hash, target_hash, repo)
        logger.info(f"Rebasing {len(subtree)} commits rooted at {root_hash[:8]} onto {target_hash[:8]}")

        commits: Dict[CommitHash, Commit] = dict(repo.commits)
        rebase_target: Dict[CommitHash, CommitHash] = {root_hash: target_hash}
        replacements: Dict[CommitHash, CommitHash] = {}
        moved: List[Tuple[BranchName, CommitHash]] = []
        head_hash = repo.head_hash

        queue = deque([root_hash])
        try:
            while queue:
                old_hash = queue.popleft()
                if old_hash in replacements:
                    continue
                onto = rebase_target.get(old_hash)
                if onto is None:
                    raise RuntimeError(f"No rebase target registered for {old_hash[:8]}")
                old = repo.commits[old_hash]

                new_hash = self.vc.cherry_pick(old_hash, onto)
                replacements[old_hash] = new_hash
                logger.debug(f"  {old_hash[:8]} -> {new_hash[:8]} (onto {onto[:8]})")

                for branch in old.local_branch_names():
                    self.vc.move_branch(branch, new_hash, detach_if_checked_out=True)
                    moved.append((branch, old_hash))
                    if head_hash == old_hash:
                        head_hash = new_hash

                commits[new_hash] = Commit(
                    hash=new_hash,
                    title=old.title,
                    timestamp=datetime.now(timezone.utc),
                    author=old.author,
                    committer=old.committer,
                    ref_names=tuple(r for r in old.ref_names if is_local_ref(r)),
                    parent_hashes=(onto,),
                    child_hashes=(),
                )
                parent = commits[onto]
                commits[onto] = replace(parent, child_hashes=parent.child_hashes + (new_hash,))

                for child_hash in old.child_hashes:
                    if child_hash in repo.commits:
                        rebase_target[child_hash] = new_hash
                        queue.append(child_hash)
        except Exception as e:
            unrestored = self._restore(moved)
            if unrestored:
                raise RebaseConflictError(
                    f"Rebase failed ({e}) and branches {', '.join(unrestored)} could not be restored",
                    commit_hash=getattr(e, 'commit_hash', None),
                    unrestored_branches=unrestored) from e
            raise

        for old_hash in subtree:
            old = commits[old_hash]
            commits[old_hash] = replace(
                old, ref_names=tuple(r for r in old.ref_names if not is_local_ref(r)))

        self._prune(subtree, commits, head_hash)
        logger.info(f"Rebase complete, moved {len(moved)} branches")
        return repo.with_commits(commits, head_hash=head_hash)

    def _restore(self, moved: List[Tuple[BranchName, CommitHash]]) -> List[str]:
        """Put moved branches back where they were. Returns the ones that failed."""
        unrestored: List[str] = []
        for branch, original in reversed(moved):
            logger.warning(f"Restoring branch {branch} to {original[:8]}")
            try:
                self.vc.move_branch(branch, original, detach_if_checked_out=True)
            except Exception as e:
                logger.error(f"Failed to restore {branch} to {original[:8]}: {e}")
                unrestored.append(branch)
        return unrestored

    @staticmethod
    def _prune(subtree: List[CommitHash], commits: Dict[CommitHash, Commit],
               head_hash: CommitHash) -> None:
        """Drop replaced commits nothing refers to any more."""
        keep: Set[CommitHash] = set()
        # Children come after parents in breadth-first order
        for commit_hash in reversed(subtree):
            commit = commits[commit_hash]
            if commit.ref_names or commit_hash == head_hash \
                    or any(c in keep for c in commit.child_hashes):
                keep.add(commit_hash)

        dropped = {h for h in subtree if h not in keep}
        if not dropped:
            return
        for commit_hash in dropped:
            del commits[commit_hash]
        for commit_hash, commit in list(commits.items()):
            if any(c in dropped for c in commit.child_hashes):
                commits[commit_hash] = replace(
                    commit, child_hashes=tuple(c for c in commit.child_hashes if c not in dropped))
