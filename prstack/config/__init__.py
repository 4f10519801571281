"""Config module."""

from typing import Dict, Any
from .models import RepoConfig, UserConfig, ToolConfig, LLMConfig, PrstackConfig

class Config(PrstackConfig):
    """Config object holding repository, user, tool and llm config.

    Built from the nested dict produced by the config parser.
    """
    def __init__(self, config: Dict[str, Dict[str, Any]]):
        """Initialize with parsed config dict."""
        repo_config = config.get('repo', {})
        user_config = config.get('user', {})
        tool_section = config.get('tool', {})
        tool_config = tool_section.get('prstack', tool_section)
        llm_config = config.get('llm', {})

        super().__init__(
            repo=RepoConfig.model_validate(repo_config),
            user=UserConfig.model_validate(user_config),
            tool=ToolConfig.model_validate(tool_config),
            llm=LLMConfig.model_validate(llm_config),
        )

def default_config() -> Config:
    """Get default config without parsing git."""
    return Config({
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
        },
        'user': {},
        'tool': {
            'prstack': {
                'concurrency': 4
            }
        },
        'llm': {},
    })
