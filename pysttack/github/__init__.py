"""GitHub interfaces and implementation."""

import os
import logging
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, runtime_checkable

import yaml

from ..config.models import SttackConfig
from ..typing import (
    BranchName, CommitHash, PullRequestAPIError, PullRequestInfo, PullRequestNumber,
)

# Get module logger
logger = logging.getLogger(__name__)


# Define protocols for GitHub objects
@runtime_checkable
class GitHubRefProtocol(Protocol):
    """Protocol for GitHub ref objects (base/head references)."""
    @property
    def ref(self) -> str:
        """Get the ref name (e.g., 'main', 'feature-branch')."""
        ...

    @property
    def sha(self) -> str:
        """Get the commit SHA."""
        ...

@runtime_checkable
class GitHubPullRequestProtocol(Protocol):
    """Protocol for GitHub pull request objects (real or fake)."""
    @property
    def number(self) -> int:
        ...

    @property
    def title(self) -> str:
        ...

    @property
    def body(self) -> Optional[str]:
        ...

    @property
    def html_url(self) -> str:
        ...

    @property
    def base(self) -> GitHubRefProtocol:
        ...

    @property
    def head(self) -> GitHubRefProtocol:
        ...

    def edit(self, title: Optional[str] = None, body: Optional[str] = None,
             base: Optional[str] = None) -> None:
        """Edit the pull request."""
        ...

@runtime_checkable
class GitHubRepoProtocol(Protocol):
    """Protocol for GitHub repository objects (real or fake)."""
    def get_pull(self, number: int) -> GitHubPullRequestProtocol:
        ...

    def get_pulls(self, state: str = "open", head: str = "") -> List[GitHubPullRequestProtocol]:
        """Get pull requests, optionally filtered by "owner:branch" head."""
        ...

    def create_pull(self, title: str, body: str, base: str, head: str) -> GitHubPullRequestProtocol:
        ...

@runtime_checkable
class PyGithubProtocol(Protocol):
    """Protocol for PyGithub implementations (real or fake)."""
    def get_repo(self, full_name_or_id: str) -> GitHubRepoProtocol:
        """Get a repository by full name."""
        ...


def find_github_token(config: Optional[SttackConfig] = None) -> Optional[str]:
    """Find GitHub token from config, env var or gh CLI config."""
    if config is not None and config.user.github_token:
        return config.user.github_token

    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    # Then try gh CLI config at ~/.config/gh/hosts.yml
    try:
        gh_config_path = Path.home() / ".config" / "gh" / "hosts.yml"
        if gh_config_path.exists():
            with open(gh_config_path, "r") as f:
                gh_config = yaml.safe_load(f)
                if gh_config and "github.com" in gh_config:
                    github_config: Dict[str, object] = gh_config["github.com"]
                    token = github_config.get("oauth_token")
                    if isinstance(token, str):
                        return token
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading gh CLI config: {e}")
    return None


class GitHubClient:
    """CollaborationPlatform implementation on top of PyGithub."""

    def __init__(self, config: SttackConfig, github_client: PyGithubProtocol):
        self.config = config
        self.client = github_client
        self._repo: Optional[GitHubRepoProtocol] = None

    @property
    def repo(self) -> GitHubRepoProtocol:
        """Get GitHub repository."""
        if self._repo is None:
            owner = self.config.repo.github_repo_owner
            name = self.config.repo.github_repo_name
            if not owner or not name:
                raise PullRequestAPIError(
                    "GitHub repository unknown - set repo.github_repo_owner and repo.github_repo_name")
            with self._api(f"get repo {owner}/{name}"):
                self._repo = self.client.get_repo(f"{owner}/{name}")
        return self._repo

    @repo.setter
    def repo(self, value: GitHubRepoProtocol) -> None:
        self._repo = value

    @contextmanager
    def _api(self, action: str) -> Iterator[None]:
        try:
            yield
        except PullRequestAPIError:
            raise
        except Exception as e:
            # PyGithub raises GithubException and requests errors alike
            raise PullRequestAPIError(f"GitHub {action} failed: {e}") from e

    def _to_info(self, pr: GitHubPullRequestProtocol,
                 local_hash: Optional[CommitHash] = None) -> PullRequestInfo:
        return PullRequestInfo(
            number=PullRequestNumber(pr.number),
            url=pr.html_url,
            title=pr.title,
            description=pr.body or "",
            is_outdated=local_hash is not None and pr.head.sha != local_hash,
            head_branch=BranchName(pr.head.ref),
            base_branch=BranchName(pr.base.ref),
        )

    def _find_open_pull(self, branch_name: BranchName) -> Optional[GitHubPullRequestProtocol]:
        owner = self.config.repo.github_repo_owner
        head_filter = f"{owner}:{branch_name}"
        logger.debug(f"Searching for PR with head filter {head_filter}")
        with self._api(f"list pulls for {branch_name}"):
            pulls = self.repo.get_pulls(state='open', head=head_filter)
            for pr in pulls:
                if pr.head.ref == branch_name:
                    return pr
        return None

    def get_pr_for_branch(self, branch_name: BranchName,
                          local_hash: Optional[CommitHash] = None) -> Optional[PullRequestInfo]:
        """Open PR whose head is ``branch_name``, if any."""
        logger.info(f"> github get pull for {branch_name}")
        pr = self._find_open_pull(branch_name)
        if pr is None:
            logger.debug(f"No open PR for branch {branch_name}")
            return None
        with self._api(f"read pull #{pr.number}"):
            return self._to_info(pr, local_hash)

    def get_pr_for_commit(self, commit_hash: CommitHash) -> Optional[PullRequestInfo]:
        """Open PR whose head is exactly ``commit_hash``, if any."""
        logger.info(f"> github find pull for {commit_hash[:8]}")
        with self._api(f"list pulls for {commit_hash[:8]}"):
            for pr in self.repo.get_pulls(state='open'):
                if pr.head.sha == commit_hash:
                    return self._to_info(pr, commit_hash)
        return None

    def create_or_update_pr(self, head: BranchName, base: BranchName, title: str) -> PullRequestInfo:
        """Create a PR from ``head`` into ``base``, or retarget and retitle the open one."""
        existing = self._find_open_pull(head)
        if self.config.tool.pretend:
            logger.info(f"> github create-or-update {head} -> {base} : {title} (pretend)")
            if existing is not None:
                with self._api(f"read pull #{existing.number}"):
                    return replace(self._to_info(existing), title=title, base_branch=BranchName(base))
            return PullRequestInfo(number=PullRequestNumber(0), url="", title=title,
                                   head_branch=head, base_branch=base)
        if existing is None:
            logger.info(f"> github create {head} -> {base} : {title}")
            with self._api(f"create pull for {head}"):
                pr = self.repo.create_pull(title=title, body="", base=base, head=head)
                return self._to_info(pr)

        with self._api(f"update pull #{existing.number}"):
            changes: Dict[str, str] = {}
            if existing.title != title:
                changes['title'] = title
            if existing.base.ref != base:
                logger.info(f"  Updating base of #{existing.number} from {existing.base.ref} to {base}")
                changes['base'] = base
            if changes:
                logger.info(f"> github update #{existing.number} : {title}")
                existing.edit(**changes)
            return replace(self._to_info(existing), title=title, base_branch=BranchName(base))

    def update_pr_description(self, pr_number: PullRequestNumber, body: str) -> None:
        logger.info(f"> github update body #{pr_number}")
        if self.config.tool.pretend:
            return
        with self._api(f"update body of #{pr_number}"):
            self.repo.get_pull(pr_number).edit(body=body)
