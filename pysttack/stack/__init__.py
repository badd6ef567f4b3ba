"""Stack-managed branches and pull request synchronization."""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..config.models import SttackConfig
from ..git import branch_name_to_local_ref, ref_to_branch_name
from ..graph import MergeBaseResolver
from ..typing import (
    BranchName, CollaborationPlatform, Commit, CommitHash, PullRequestAPIError,
    PullRequestInfo, PullRequestNumber, Repository, UnboundedStackError, VersionControl,
)
from ..util import random_slug

logger = logging.getLogger(__name__)

STACK_BRANCH_PREFIX = "stack-attack/"
STACK_SECTION_SEPARATOR = "\n\n---\n\n**Stack**:\n"


def is_stack_branch(branch: str) -> bool:
    return branch.startswith(STACK_BRANCH_PREFIX)


def stack_branch_for(commit: Commit) -> Optional[BranchName]:
    """The commit's stack-managed local branch, if it has one."""
    for branch in sorted(commit.local_branch_names()):
        if is_stack_branch(branch):
            return branch
    return None


@dataclass
class AttachResult:
    """Commit/branch pairs in input order, plus the snapshot that has them."""
    pairs: List[Tuple[Commit, BranchName]]
    repository: Repository


@dataclass
class StackSyncReport:
    """Outcome of a stack PR operation.

    ``failures`` holds the commits that were skipped and why; everything else
    in the same operation went ahead.
    """
    repository: Repository
    pull_requests: List[Tuple[Commit, PullRequestInfo]] = field(default_factory=list)
    failures: List[Tuple[CommitHash, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class StackBranchManager:
    """Makes sure every commit in a stack has its own branch."""

    def __init__(self, vc: VersionControl, rng: Optional[random.Random] = None):
        self.vc = vc
        self.rng = rng

    def _mint(self, taken: Set[str]) -> BranchName:
        return BranchName(random_slug(taken=taken, prefix=STACK_BRANCH_PREFIX, rng=self.rng))

    def attach_stack_branches(self, commits: Sequence[Commit], repo: Repository) -> AttachResult:
        """Reuse or create a stack-managed branch for each commit."""
        updated: Dict[CommitHash, Commit] = dict(repo.commits)
        # Names that exist only on the remote are taken too
        taken: Set[str] = {ref_to_branch_name(ref) for c in repo for ref in c.ref_names}
        pairs: List[Tuple[Commit, BranchName]] = []

        for commit in commits:
            current = updated.get(commit.hash, commit)
            branch = stack_branch_for(current)
            if branch is None:
                branch = self._mint(taken)
                self.vc.create_branch(branch, current.hash)
                taken.add(branch)
                current = replace(current, ref_names=current.ref_names + (branch_name_to_local_ref(branch),))
                if current.hash in updated:
                    updated[current.hash] = current
                logger.info(f"Attached {branch} to {current.short_hash} {current.title}")
            else:
                logger.debug(f"Reusing {branch} for {current.short_hash}")
            pairs.append((current, branch))

        return AttachResult(pairs=pairs, repository=repo.with_commits(updated))


def format_stack_markdown(current: PullRequestNumber, stack: Sequence[PullRequestInfo]) -> str:
    """One line per PR in stack order, the current one in bold."""
    lines: List[str] = []
    for pr in stack:
        entry = f"#{pr.number} {pr.title}"
        lines.append(f"- **{entry}**" if pr.number == current else f"- {entry}")
    return "\n".join(lines)


def strip_stack_section(description: str) -> str:
    """The part of a PR description written by its author."""
    # Bodies edited in the web UI come back with CRLF line endings
    description = description.replace("\r\n", "\n")
    own_text = description.split(STACK_SECTION_SEPARATOR.strip("\n"))[0]
    if own_text.lstrip().startswith("**Stack**:"):
        return ""
    return own_text.rstrip()


def format_body(pr: PullRequestInfo, stack: Sequence[PullRequestInfo]) -> str:
    """PR description with its stack section replaced."""
    own_text = strip_stack_section(pr.description)
    stack_markdown = format_stack_markdown(pr.number, stack)
    if not own_text:
        return f"**Stack**:\n{stack_markdown}"
    return f"{own_text}{STACK_SECTION_SEPARATOR}{stack_markdown}"


class PRStackSynchronizer:
    """Ties a chain of commits to a chain of pull requests."""

    def __init__(self, vc: VersionControl, platform: CollaborationPlatform, config: SttackConfig,
                 branches: Optional[StackBranchManager] = None,
                 resolver: Optional[MergeBaseResolver] = None):
        self.vc = vc
        self.platform = platform
        self.config = config
        self.branches = branches or StackBranchManager(vc)
        self.resolver = resolver or MergeBaseResolver(vc, config.repo.github_remote)

    def _base_branch(self, commit: Commit, repo: Repository) -> BranchName:
        if commit.parent_hashes:
            parent = repo.get(commit.parent_hashes[0])
            if parent is not None:
                branch = stack_branch_for(parent)
                if branch is not None:
                    return branch
        return BranchName(self.config.target_branch)

    def create_or_update_stack_prs(self, commits: Sequence[Commit], repo: Repository) -> StackSyncReport:
        """Attach branches, push them and create or update one PR per commit."""
        attached = self.branches.attach_stack_branches(commits, repo)
        repo = attached.repository
        remote = self.config.repo.github_remote

        for _, branch in attached.pairs:
            self.vc.push_branch(branch, remote)

        report = StackSyncReport(repository=repo)
        updated: Dict[CommitHash, Commit] = dict(repo.commits)
        pr_by_branch: Dict[BranchName, PullRequestInfo] = {}
        for commit, branch in attached.pairs:
            base = self._base_branch(commit, repo)
            logger.info(f"> github create-or-update {branch} -> {base} : {commit.title}")
            try:
                pr = self.platform.create_or_update_pr(branch, base, commit.title)
            except PullRequestAPIError as e:
                logger.error(f"Skipping {commit.short_hash}: {e}")
                report.failures.append((commit.hash, str(e)))
                continue
            base_pr = pr_by_branch.get(base)
            if base_pr is not None:
                pr = replace(pr, dependencies=(base_pr.number,))
            pr_by_branch[branch] = pr
            commit = replace(commit, pull_request_info=pr)
            if commit.hash in updated:
                updated[commit.hash] = commit
            report.pull_requests.append((commit, pr))

        report.repository = repo.with_commits(updated)
        return report

    def find_stack_root(self, commit_hash: CommitHash, repo: Repository) -> Optional[CommitHash]:
        """First commit above the long-lived-branch boundary below ``commit_hash``.

        Returns None when the commit is itself on a long-lived branch.

        Raises:
            UnboundedStackError: If no boundary is reached inside the snapshot.
        """
        boundaries = set(self.resolver.merge_bases_with_long_lived_branches(
            commit_hash, self.config.repo.long_lived_branches))
        if commit_hash in boundaries:
            return None

        current: Optional[Commit] = repo.get(commit_hash)
        below: Optional[Commit] = None
        while current is not None:
            if current.hash in boundaries:
                return below.hash if below is not None else None
            below = current
            current = repo.get(current.parent_hashes[0]) if current.parent_hashes else None

        raise UnboundedStackError(
            f"No long-lived branch ({', '.join(self.config.repo.long_lived_branches)}) "
            f"found below {commit_hash[:8]}")

    def _pr_for(self, commit: Commit) -> Optional[PullRequestInfo]:
        branch = stack_branch_for(commit)
        if branch is None:
            return None
        if commit.pull_request_info is not None:
            return commit.pull_request_info
        return self.platform.get_pr_for_branch(branch, commit.hash)

    def sync_descriptions_for_stack_containing(self, commit_hash: CommitHash,
                                               repo: Repository) -> StackSyncReport:
        """Rewrite the description of every PR in the stack containing a commit."""
        report = StackSyncReport(repository=repo)
        root = self.find_stack_root(commit_hash, repo)
        if root is None:
            logger.info(f"{commit_hash[:8]} is on a long-lived branch, no stack to sync")
            return report

        stack: List[Tuple[Commit, PullRequestInfo]] = []
        for stack_hash in repo.subtree(root):
            commit = repo.commits[stack_hash]
            try:
                pr = self._pr_for(commit)
            except PullRequestAPIError as e:
                logger.error(f"Skipping {commit.short_hash}: {e}")
                report.failures.append((commit.hash, str(e)))
                continue
            if pr is not None:
                stack.append((commit, pr))

        prs = [pr for _, pr in stack]
        updated: Dict[CommitHash, Commit] = dict(repo.commits)
        logger.info(f"Syncing descriptions of {len(prs)} PRs in stack rooted at {root[:8]}")
        for commit, pr in stack:
            body = format_body(pr, prs)
            logger.info(f"> github update description #{pr.number} : {pr.title}")
            try:
                self.platform.update_pr_description(pr.number, body)
            except PullRequestAPIError as e:
                logger.error(f"Failed to update #{pr.number}: {e}")
                report.failures.append((commit.hash, str(e)))
                continue
            pr = replace(pr, description=body)
            updated[commit.hash] = replace(commit, pull_request_info=pr)
            report.pull_requests.append((updated[commit.hash], pr))
        report.repository = repo.with_commits(updated)
        return report
