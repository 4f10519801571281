"""Config parser logic."""

import os
from pathlib import Path
from typing import Dict, Union, Any, Optional, Tuple
import logging
import yaml

from ...typing import GitInterface

# Get module logger
logger = logging.getLogger(__name__)

ConfigValue = Union[str, bool]
SectionConfig = Dict[str, Any]  # yaml can return various types
Config = Dict[str, SectionConfig]

CONFIG_FILE_NAME = ".prstack.yaml"

def parse_remote_url(remote_url: str) -> Optional[Tuple[str, str]]:
    """Extract (owner, name) from an SSH or HTTPS GitHub remote url."""
    remote_url = remote_url.strip()
    if not remote_url:
        return None
    if "://" not in remote_url and "@" in remote_url:
        # SSH format: git@github.com:owner/repo.git
        repo_part = remote_url.split(":")[-1]
    elif "github.com/" in remote_url:
        # HTTPS format: https://github.com/owner/repo.git
        repo_part = remote_url.split("github.com/")[-1]
    else:
        repo_part = remote_url.split("://")[-1].split("/", 1)[-1]

    if repo_part.endswith(".git"):
        repo_part = repo_part[:-len(".git")]
    parts = [p for p in repo_part.strip().split("/") if p]
    if len(parts) < 2:
        return None
    return parts[-2], parts[-1]

def parse_config(git_cmd: GitInterface, repo_root: Optional[str] = None) -> Config:
    """Parse config from the repository config file, git remote and environment."""
    config: Config = {
        'repo': {
            'github_remote': 'origin',
            'github_branch': 'main',
            'branch_prefix': 'prstack',
        },
        'user': {},
        'tool': {
            'prstack': {
                'concurrency': 4,
                'pretend': False,
                'max_concurrent_runs': 2,
                'state_dir': str(default_state_dir()),
            }
        },
        'llm': {},
    }

    if repo_root is None:
        try:
            repo_root = git_cmd.must_git("rev-parse --show-toplevel").strip()
        except Exception as e:
            logger.debug(f"Could not determine repository root: {e}")
            repo_root = os.getcwd()

    config_path = Path(repo_root) / CONFIG_FILE_NAME
    try:
        with open(config_path, 'r') as f:
            logger.info(f"Found {CONFIG_FILE_NAME}, loading...")
            file_config = yaml.safe_load(f)
            logger.debug(f"Config from {CONFIG_FILE_NAME}: {file_config}")
            if isinstance(file_config, dict):
                for section in ('repo', 'user', 'llm'):
                    if isinstance(file_config.get(section), dict):
                        config[section].update(file_config[section])
                tool = file_config.get('tool')
                if isinstance(tool, dict):
                    config['tool']['prstack'].update(tool.get('prstack', tool))
    except FileNotFoundError:
        logger.info(f"No {CONFIG_FILE_NAME} found, using defaults")

    if not config['repo'].get('github_repo_owner') or not config['repo'].get('github_repo_name'):
        remote = config['repo']['github_remote']
        try:
            parsed = parse_remote_url(git_cmd.run_cmd(f"remote get-url {remote}"))
            if parsed:
                if not config['repo'].get('github_repo_owner'):
                    config['repo']['github_repo_owner'] = parsed[0]
                if not config['repo'].get('github_repo_name'):
                    config['repo']['github_repo_name'] = parsed[1]
        except Exception as e:
            logger.error(f"Failed to parse git remote: {e}")

    api_key = os.environ.get("OPENROUTER_API_KEY")
    if api_key and not config['llm'].get('api_key'):
        config['llm']['api_key'] = api_key
    model = os.environ.get("PRSTACK_MODEL")
    if model:
        config['llm']['model'] = model

    return config

def default_state_dir() -> Path:
    """Get the directory where finished run records are stored."""
    return Path.home() / ".prstack" / "runs"
