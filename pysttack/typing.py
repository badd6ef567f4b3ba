"""Common types used across the codebase."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Iterator, List, Mapping, NewType, Optional, Protocol, Sequence, Tuple, runtime_checkable
from collections import deque

# Identifiers
CommitHash = NewType('CommitHash', str)
BranchName = NewType('BranchName', str)
RefName = NewType('RefName', str)
PullRequestNumber = NewType('PullRequestNumber', int)

LOCAL_REF_PREFIX = "refs/heads/"


class StackAttackError(Exception):
    """Base class for all pysttack errors."""


class RepositoryLoadError(StackAttackError):
    """Ref enumeration or history walk failed. Retry by loading again."""


class AmbiguousOrMissingCommitError(StackAttackError):
    """A hash prefix resolved to zero or more than one commit."""

    def __init__(self, prefix: str):
        super().__init__(f"Commit '{prefix}' is ambiguous or does not exist")
        self.prefix = prefix


class RebasePreconditionError(StackAttackError):
    """A rebase was requested that can never succeed."""


class RebaseConflictError(StackAttackError):
    """A cherry-pick could not be applied cleanly.

    Branches moved earlier in the same rebase have been restored by the time
    this reaches the caller, unless ``unrestored_branches`` says otherwise.
    """

    def __init__(self, message: str, commit_hash: Optional[str] = None,
                 unrestored_branches: Sequence[str] = ()):
        super().__init__(message)
        self.commit_hash = commit_hash
        self.unrestored_branches = list(unrestored_branches)


class UnboundedStackError(StackAttackError):
    """No long-lived branch boundary was found below a commit."""


class PullRequestAPIError(StackAttackError):
    """A call to the hosting API failed."""


class VersionControlError(StackAttackError):
    """A git operation failed for a reason other than a conflict."""


@dataclass(frozen=True)
class CommitSignature:
    """Name and email of an author or committer."""
    name: str
    email: str


@dataclass(frozen=True)
class PullRequestInfo:
    """Pull request info."""
    number: PullRequestNumber
    url: str
    title: str
    description: str = ""
    is_outdated: bool = False
    head_branch: Optional[BranchName] = None
    base_branch: Optional[BranchName] = None
    dependencies: Tuple[PullRequestNumber, ...] = ()

    def __str__(self) -> str:
        outdated = " (outdated)" if self.is_outdated else ""
        return f"PR #{self.number} - {self.title}{outdated}"


@dataclass(frozen=True)
class Commit:
    """A commit in the graph.

    Commits only refer to each other through hashes; the owning
    :class:`Repository` maps hashes to values.
    """
    hash: CommitHash
    title: str
    timestamp: datetime
    author: CommitSignature
    committer: CommitSignature
    ref_names: Tuple[RefName, ...] = ()
    parent_hashes: Tuple[CommitHash, ...] = ()
    child_hashes: Tuple[CommitHash, ...] = ()
    pull_request_info: Optional[PullRequestInfo] = None

    @property
    def short_hash(self) -> str:
        return self.hash[:8]

    def local_branch_names(self) -> List[BranchName]:
        """Names of the local branches pointing at this commit."""
        return [BranchName(ref[len(LOCAL_REF_PREFIX):])
                for ref in self.ref_names if ref.startswith(LOCAL_REF_PREFIX)]


@dataclass(frozen=True)
class Repository:
    """Immutable point-in-time view of the commit graph."""
    path: str
    has_uncommitted_changes: bool
    head_hash: CommitHash
    earliest_interesting_commit: CommitHash
    commits: Mapping[CommitHash, Commit] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only copy; callers keep their own dict
        object.__setattr__(self, 'commits', MappingProxyType(dict(self.commits)))

    def get(self, commit_hash: str) -> Optional[Commit]:
        return self.commits.get(CommitHash(commit_hash))

    def with_commits(self, commits: Mapping[CommitHash, Commit], **changes: object) -> 'Repository':
        """Build a new snapshot with the given commits (and other field changes)."""
        return replace(self, commits=commits, **changes)  # type: ignore[arg-type]

    def subtree(self, root_hash: CommitHash) -> List[CommitHash]:
        """Hashes reachable from ``root_hash`` over child links, breadth first."""
        if root_hash not in self.commits:
            return []
        seen = {root_hash}
        order: List[CommitHash] = []
        queue = deque([root_hash])
        while queue:
            current = queue.popleft()
            order.append(current)
            for child in self.commits[current].child_hashes:
                if child not in seen and child in self.commits:
                    seen.add(child)
                    queue.append(child)
        return order

    def __iter__(self) -> Iterator[Commit]:
        return iter(self.commits.values())

    def __len__(self) -> int:
        return len(self.commits)


@dataclass(frozen=True)
class CommitRecord:
    """What the version control port knows about a single commit."""
    hash: CommitHash
    title: str
    timestamp: datetime
    author: CommitSignature
    committer: CommitSignature
    parent_hashes: Tuple[CommitHash, ...] = ()


@dataclass(frozen=True)
class BranchTip:
    """A branch ref together with the commit it points at."""
    ref_name: RefName
    commit: CommitRecord


@runtime_checkable
class VersionControl(Protocol):
    """Everything the core needs from a version control backend."""

    def list_branches_and_tips(self) -> List[BranchTip]:
        """All local and remote-tracking branches with their tip commits."""
        ...

    def read_commit(self, commit_hash: CommitHash) -> CommitRecord:
        """Read a single commit by full hash."""
        ...

    def head_hash(self) -> CommitHash:
        ...

    def has_uncommitted_changes(self) -> bool:
        ...

    def merge_base(self, a: CommitHash, b: CommitHash) -> CommitHash:
        """Best common ancestor of two commits."""
        ...

    def cherry_pick(self, commit_hash: CommitHash, onto: CommitHash) -> CommitHash:
        """Replay ``commit_hash`` onto ``onto`` and return the new hash.

        Raises:
            RebaseConflictError: If the changes do not apply cleanly.
        """
        ...

    def move_branch(self, name: BranchName, to: CommitHash, detach_if_checked_out: bool) -> None:
        ...

    def create_branch(self, name: BranchName, at: CommitHash) -> None:
        ...

    def push_branch(self, name: BranchName, remote: str) -> None:
        ...

    def fetch(self, remote: str) -> None:
        ...

    def lookup_by_hash_prefix(self, prefix: str) -> Optional[CommitHash]:
        """Full hash for a unique prefix, or None if missing or ambiguous."""
        ...


@runtime_checkable
class CollaborationPlatform(Protocol):
    """Everything the core needs from a code hosting API."""

    def get_pr_for_commit(self, commit_hash: CommitHash) -> Optional[PullRequestInfo]:
        ...

    def get_pr_for_branch(self, branch_name: BranchName,
                          local_hash: Optional[CommitHash] = None) -> Optional[PullRequestInfo]:
        ...

    def create_or_update_pr(self, head: BranchName, base: BranchName, title: str) -> PullRequestInfo:
        """Create a PR from ``head`` into ``base``, or retarget/retitle the open one."""
        ...

    def update_pr_description(self, pr_number: PullRequestNumber, body: str) -> None:
        ...


RepositoryUpdateListener = Callable[[Repository], None]
