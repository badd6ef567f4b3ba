"""Config module."""

from typing import Dict, Any
from .models import RepoConfig, UserConfig, SttackConfig, ToolConfig

__all__ = ["Config", "RepoConfig", "UserConfig", "ToolConfig", "SttackConfig", "default_config"]

class Config(SttackConfig):
    """Config object holding repository, user and tool config.

    Built from the nested dict produced by ``parse_config``.
    """
    def __init__(self, config: Dict[str, Dict[str, Any]]):
        """Initialize with parsed config dict."""
        repo_config = config.get('repo', {})
        user_config = config.get('user', {})
        tool_section = config.get('tool', {})
        tool_config = tool_section.get('sttack', tool_section)

        super().__init__(
            repo=RepoConfig.model_validate(repo_config),
            user=UserConfig.model_validate(user_config),
            tool=ToolConfig.model_validate(tool_config),
            state=None
        )

def default_config() -> Config:
    """Get default config without reading any files."""
    return Config({
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
            'long_lived_branches': ['main'],
        },
        'user': {},
        'tool': {
            'sttack': {
                'pretend': False
            }
        }
    })
