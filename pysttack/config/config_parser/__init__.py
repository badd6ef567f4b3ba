"""Config parser logic."""

import os
from typing import Any, Dict, Optional, Protocol, Tuple
import logging
import yaml

# Get module logger
logger = logging.getLogger(__name__)

RepoConfig = Dict[str, Any]  # Use Any since yaml can return various types
Config = Dict[str, RepoConfig]

CONFIG_FILE_NAMES = ('.sttack.yaml', '.sttack.yml', 'sttack.config.json')

# camelCase keys of sttack.config.json files
LEGACY_KEYS = {
    'longLivedBranches': ('repo', 'long_lived_branches'),
    'userPrivateKeyPath': ('user', 'ssh_private_key_path'),
    'githubToken': ('user', 'github_token'),
}


class RemoteUrlReader(Protocol):
    def run_cmd(self, command: str) -> str:
        ...


def parse_remote_url(remote_url: str) -> Optional[Tuple[str, str]]:
    """Extract (owner, repo) from a GitHub remote URL.

    Handles ``https://github.com/owner/repo(.git)`` and
    ``git@github.com:owner/repo(.git)``.
    """
    url = remote_url.strip()
    if not url:
        return None
    parts = [p for chunk in url.split("/") for p in chunk.split(":")]
    parts = [p for p in parts if p]
    if len(parts) < 2:
        return None
    owner, repo = parts[-2], parts[-1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not owner or not repo:
        return None
    return owner, repo


def _load_file(path: str) -> Dict[str, Any]:
    # JSON is valid YAML, so one loader covers both formats
    with open(path, 'r') as f:
        loaded = yaml.safe_load(f)
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path} must contain a mapping, got {type(loaded).__name__}")
    return loaded


def parse_config(repo_path: str, git_cmd: Optional[RemoteUrlReader] = None) -> Config:
    """Parse config from the repository config file."""
    config: Config = {
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
        },
        'user': {},
        'tool': {
            'sttack': {
                'pretend': False,
            }
        }
    }

    for name in CONFIG_FILE_NAMES:
        path = os.path.join(repo_path, name)
        if not os.path.exists(path):
            continue
        logger.info(f"Found {name}, loading...")
        file_config = _load_file(path)
        logger.debug(f"Config from {name}: {file_config}")
        for section in ('repo', 'user'):
            if isinstance(file_config.get(section), dict):
                config[section].update(file_config[section])
        if isinstance(file_config.get('tool'), dict):
            config['tool']['sttack'].update(file_config['tool'])
        for legacy_key, (section, key) in LEGACY_KEYS.items():
            if legacy_key in file_config:
                config[section][key] = file_config[legacy_key]
        break
    else:
        logger.info("No config file found, using defaults")

    # Default the long-lived branch list to the target branch
    if not config['repo'].get('long_lived_branches'):
        config['repo']['long_lived_branches'] = [config['repo']['github_branch']]

    if git_cmd is not None and (not config['repo'].get('github_repo_owner')
                                or not config['repo'].get('github_repo_name')):
        remote = config['repo']['github_remote']
        try:
            remote_url = git_cmd.run_cmd(f"remote get-url {remote}")
        except Exception as e:
            logger.error(f"Failed to read url of remote {remote}: {e}")
        else:
            parsed = parse_remote_url(remote_url)
            if parsed:
                if not config['repo'].get('github_repo_owner'):
                    config['repo']['github_repo_owner'] = parsed[0]
                if not config['repo'].get('github_repo_name'):
                    config['repo']['github_repo_name'] = parsed[1]

    return config
