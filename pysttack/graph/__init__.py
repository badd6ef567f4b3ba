"""Commit graph construction and merge-base resolution."""

import logging
from collections import defaultdict, deque
from typing import Dict, Iterable, List, Optional, Sequence, Set

from ..git import branch_name_to_local_ref, branch_name_to_remote_ref
from ..typing import (
    BranchTip, Commit, CommitHash, CommitRecord, RefName, Repository,
    RepositoryLoadError, StackAttackError, VersionControl,
)

logger = logging.getLogger(__name__)


class MergeBaseResolver:
    """Merge-base queries over the version control port."""

    def __init__(self, vc: VersionControl, remote: str = "origin"):
        self.vc = vc
        self.remote = remote

    def merge_base(self, a: CommitHash, b: CommitHash) -> CommitHash:
        return self.vc.merge_base(a, b)

    def common_ancestor_of_all(self, tip_hashes: Sequence[CommitHash]) -> CommitHash:
        """Left fold of ``merge_base`` over all tips.

        This is not a true N-way lowest common ancestor: with three or more
        diverging branches the fold can land below the best answer. It is only
        used to bound how far back history is walked.
        """
        if not tip_hashes:
            raise ValueError("common_ancestor_of_all needs at least one commit")
        ancestor = tip_hashes[0]
        for tip in tip_hashes[1:]:
            if tip != ancestor:
                ancestor = self.merge_base(ancestor, tip)
        return ancestor

    def merge_bases_with_long_lived_branches(
            self, commit_hash: CommitHash, long_lived_branch_names: Iterable[str],
            tips: Optional[Sequence[BranchTip]] = None) -> List[CommitHash]:
        """Merge base of ``commit_hash`` with each configured long-lived branch.

        A local branch wins over its remote-tracking counterpart. Branches that
        exist in neither form are skipped.
        """
        if tips is None:
            tips = self.vc.list_branches_and_tips()
        tip_by_ref: Dict[RefName, CommitHash] = {t.ref_name: t.commit.hash for t in tips}

        bases: List[CommitHash] = []
        for name in long_lived_branch_names:
            tip = tip_by_ref.get(branch_name_to_local_ref(name)) \
                or tip_by_ref.get(branch_name_to_remote_ref(self.remote, name))
            if tip is None:
                logger.warning(f"Long-lived branch {name} not found, skipping")
                continue
            base = self.merge_base(commit_hash, tip)
            logger.debug(f"merge-base({commit_hash[:8]}, {name}) = {base[:8]}")
            if base not in bases:
                bases.append(base)
        return bases


class CommitGraphBuilder:
    """Builds a Repository snapshot from every branch's history."""

    def __init__(self, vc: VersionControl, resolver: Optional[MergeBaseResolver] = None):
        self.vc = vc
        self.resolver = resolver or MergeBaseResolver(vc)

    def build(self, path: str) -> Repository:
        try:
            return self._build(path)
        except RepositoryLoadError:
            raise
        except StackAttackError as e:
            raise RepositoryLoadError(f"Failed to load repository at {path}: {e}") from e

    def _build(self, path: str) -> Repository:
        tips = self.vc.list_branches_and_tips()
        if not tips:
            raise RepositoryLoadError(f"Repository at {path} has no branches")
        logger.info(f"Building commit graph from {len(tips)} branches")

        earliest = self.resolver.common_ancestor_of_all([t.commit.hash for t in tips])
        logger.debug(f"Earliest interesting commit: {earliest[:8]}")

        records: Dict[CommitHash, CommitRecord] = {}
        # parent -> children; parents are known as soon as a commit is read,
        # children only once every branch has been walked
        children: Dict[CommitHash, Set[CommitHash]] = defaultdict(set)
        child_order: Dict[CommitHash, List[CommitHash]] = defaultdict(list)

        for tip in tips:
            self._walk(tip.commit, earliest, records, children, child_order)

        if earliest not in records:
            records[earliest] = self.vc.read_commit(earliest)

        ref_names: Dict[CommitHash, List[RefName]] = defaultdict(list)
        for tip in tips:
            ref_names[tip.commit.hash].append(tip.ref_name)

        commits: Dict[CommitHash, Commit] = {}
        for commit_hash, record in records.items():
            commits[commit_hash] = Commit(
                hash=record.hash,
                title=record.title,
                timestamp=record.timestamp,
                author=record.author,
                committer=record.committer,
                ref_names=tuple(ref_names.get(commit_hash, ())),
                parent_hashes=record.parent_hashes,
                child_hashes=tuple(c for c in child_order.get(commit_hash, ()) if c in records),
            )

        head = self.vc.head_hash()
        logger.info(f"Loaded {len(commits)} commits")
        return Repository(
            path=path,
            has_uncommitted_changes=self.vc.has_uncommitted_changes(),
            head_hash=head,
            earliest_interesting_commit=earliest,
            commits=commits,
        )

    def _walk(self, tip: CommitRecord, earliest: CommitHash,
              records: Dict[CommitHash, CommitRecord],
              children: Dict[CommitHash, Set[CommitHash]],
              child_order: Dict[CommitHash, List[CommitHash]]) -> None:
        queue = deque([tip])
        while queue:
            record = queue.popleft()
            if record.hash in records:
                continue
            records[record.hash] = record
            for parent_hash in record.parent_hashes:
                if record.hash not in children[parent_hash]:
                    children[parent_hash].add(record.hash)
                    child_order[parent_hash].append(record.hash)
            if record.hash == earliest:
                continue
            for parent_hash in record.parent_hashes:
                if parent_hash not in records:
                    queue.append(self.vc.read_commit(parent_hash))
