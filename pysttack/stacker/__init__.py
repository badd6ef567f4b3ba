"""Stacker: the async front door to every stack operation.

The engines underneath are synchronous and talk to git and GitHub directly;
the Stacker runs them in worker threads one at a time, keeps the current
snapshot and tells a listener whenever a new one is published.
"""

import asyncio
import logging
import random
from dataclasses import replace
from enum import Enum
from typing import Callable, Dict, Optional, TypeVar, Union

from ..config.models import SttackConfig
from ..graph import CommitGraphBuilder, MergeBaseResolver
from ..rebase import TreeRebaseEngine
from ..stack import PRStackSynchronizer, StackBranchManager, StackSyncReport, stack_branch_for
from ..typing import (
    AmbiguousOrMissingCommitError, CollaborationPlatform, Commit, CommitHash,
    PullRequestAPIError, Repository, RepositoryLoadError, RepositoryUpdateListener,
    StackAttackError, UnboundedStackError, VersionControl,
)
from ..util import ensure

logger = logging.getLogger(__name__)

T = TypeVar('T')

CommitRef = Union[Commit, str]


class StackerState(str, Enum):
    """Lifecycle state of a Stacker."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    BUSY = "busy"
    ERROR = "error"


class Stacker:
    """Owns one repository path and serializes every operation on it."""

    def __init__(self, path: str, vc: VersionControl, platform: CollaborationPlatform,
                 config: SttackConfig, listener: Optional[RepositoryUpdateListener] = None,
                 rng: Optional[random.Random] = None):
        self.path = path
        self.vc = vc
        self.platform = platform
        self.config = config
        self.listener = listener
        resolver = MergeBaseResolver(vc, config.repo.github_remote)
        self.builder = CommitGraphBuilder(vc, resolver)
        self.rebaser = TreeRebaseEngine(vc)
        self.branches = StackBranchManager(vc, rng)
        self.synchronizer = PRStackSynchronizer(vc, platform, config, self.branches, resolver)
        self.repository: Optional[Repository] = None
        self.state = StackerState.IDLE
        self._lock_instance: Optional[asyncio.Lock] = None

    @property
    def _lock(self) -> asyncio.Lock:
        # Created on first use so it belongs to the running event loop
        if self._lock_instance is None:
            self._lock_instance = asyncio.Lock()
        return self._lock_instance

    def _set_state(self, state: StackerState) -> None:
        logger.debug(f"Stacker {self.state.value} -> {state.value}")
        self.state = state

    def _publish(self, repo: Repository) -> None:
        self.repository = repo
        if self.listener is not None:
            self.listener(repo)

    async def load(self, fetch: bool = False) -> Repository:
        """Read the repository from scratch and publish it.

        The local snapshot is published as soon as it is built; PR info is
        looked up afterwards and published as a second snapshot.
        """
        async with self._lock:
            return await self._load(fetch)

    async def _load(self, fetch: bool = False) -> Repository:
        self._set_state(StackerState.LOADING)
        try:
            if fetch:
                try:
                    await asyncio.to_thread(self.vc.fetch, self.config.repo.github_remote)
                except StackAttackError as e:
                    raise RepositoryLoadError(f"Fetch failed: {e}") from e
            repo = await asyncio.to_thread(self.builder.build, self.path)
        except Exception:
            self._set_state(StackerState.ERROR)
            self._set_state(StackerState.READY if self.repository is not None else StackerState.IDLE)
            raise

        self._publish(repo)
        self._set_state(StackerState.READY)

        enriched = await asyncio.to_thread(self._attach_pr_info, repo)
        if enriched is not repo:
            self._publish(enriched)
        return enriched

    def _attach_pr_info(self, repo: Repository) -> Repository:
        updated: Dict[CommitHash, Commit] = {}
        for commit in repo:
            branch = stack_branch_for(commit)
            if branch is None or commit.pull_request_info is not None:
                continue
            try:
                pr = self.platform.get_pr_for_branch(branch, commit.hash)
            except PullRequestAPIError as e:
                logger.warning(f"Could not look up PR for {branch}: {e}")
                continue
            if pr is not None:
                updated[commit.hash] = replace(commit, pull_request_info=pr)
        if not updated:
            return repo
        return repo.with_commits({**repo.commits, **updated})

    async def _ensure_loaded(self) -> Repository:
        if self.repository is None:
            return await self._load()
        return self.repository

    async def get_commit_by_hash(self, prefix: str) -> Commit:
        """Resolve a full or abbreviated hash to a commit of the current snapshot.

        Raises:
            AmbiguousOrMissingCommitError: If the prefix matches no commit,
                several commits, or a commit outside the snapshot.
        """
        async with self._lock:
            repo = await self._ensure_loaded()
        commit_hash = await asyncio.to_thread(self.vc.lookup_by_hash_prefix, prefix)
        commit = repo.get(commit_hash) if commit_hash else None
        if commit is None:
            raise AmbiguousOrMissingCommitError(prefix)
        return commit

    async def _run(self, name: str, operation: Callable[[Repository], T],
                   reload_on_error: bool = False) -> T:
        """Run ``operation`` on the current snapshot, then reload.

        With ``reload_on_error`` a failed operation also reloads before the
        error is re-raised.
        """
        async with self._lock:
            repo = await self._ensure_loaded()
            self._set_state(StackerState.BUSY)
            logger.info(f"Running {name}")
            try:
                result = await asyncio.to_thread(operation, repo)
            except Exception as e:
                self._set_state(StackerState.ERROR)
                logger.error(f"{name} failed: {e}")
                self._set_state(StackerState.READY)
                if reload_on_error:
                    try:
                        await self._load()
                    except StackAttackError as load_error:
                        logger.error(f"Reload after {name} failed: {load_error}")
                raise
            self._set_state(StackerState.READY)
            await self._load()
            return result

    @staticmethod
    def _lookup(repo: Repository, commit: CommitRef) -> Commit:
        commit_hash = commit.hash if isinstance(commit, Commit) else commit
        found = repo.get(commit_hash)
        if found is None:
            raise AmbiguousOrMissingCommitError(commit_hash)
        return found

    async def rebase(self, root: CommitRef, target: CommitRef) -> Repository:
        """Move the tree rooted at ``root`` onto ``target``, then reload."""
        def operation(repo: Repository) -> Repository:
            root_commit = self._lookup(repo, root)
            target_commit = self._lookup(repo, target)
            return self.rebaser.rebase(root_commit.hash, target_commit.hash, repo)

        await self._run("rebase", operation)
        return ensure(self.repository, "No snapshot after rebase")

    async def pr_one_commit(self, commit: CommitRef) -> StackSyncReport:
        """Create or update the PR for a single commit."""
        def operation(repo: Repository) -> StackSyncReport:
            return self.synchronizer.create_or_update_stack_prs([self._lookup(repo, commit)], repo)

        return await self._run("pr-commit", operation, reload_on_error=True)

    async def pr_stack(self, commit: CommitRef) -> StackSyncReport:
        """Create or update PRs for the tree rooted at ``commit`` and relink the stack."""
        def operation(repo: Repository) -> StackSyncReport:
            root = self._lookup(repo, commit)
            tree = [repo.commits[h] for h in repo.subtree(root.hash)]
            created = self.synchronizer.create_or_update_stack_prs(tree, repo)
            try:
                synced = self.synchronizer.sync_descriptions_for_stack_containing(
                    root.hash, created.repository)
            except UnboundedStackError as e:
                # Branches and PRs exist by now
                logger.error(f"Not syncing descriptions: {e}")
                created.failures.append((root.hash, str(e)))
                return created
            synced.failures[:0] = created.failures
            return synced

        return await self._run("pr-stack", operation, reload_on_error=True)
