"""CLI entry point."""

import json
import logging
import os
import sys
from typing import Any, Dict, Optional, Tuple

import click
import yaml
from click import Context

from ...config import Config, default_config
from ...config.config_parser import default_state_dir, parse_config
from ...errors import StackError
from ...git import RealGit
from ...github import GitHubClient, find_github_token
from ...llm import OpenRouterClient
from ...pretty import format_cleanup, format_preview, format_publish, print_json, print_run
from ...runs import StackManager
from ...runs.models import StackRequest
from ...runs.store import RunStore

logger = logging.getLogger(__name__)


class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        super().__init__(name, commands, **attrs)
        self.aliases: Dict[str, str] = {}

    def add_alias(self, alias: str, command: str) -> None:
        """Add an alias for a command."""
        self.aliases[alias] = command

    def get_command(self, ctx: Context, cmd_name: str) -> Optional[click.Command]:
        """Get a command by name, supporting aliases."""
        if cmd_name in self.aliases:
            cmd_name = self.aliases[cmd_name]
        return super().get_command(ctx, cmd_name)


@click.group(cls=AliasedGroup)
@click.pass_context
def cli(ctx: Context) -> None:
    """prstack - split a large pull request into stacked draft PRs."""
    ctx.obj = {}


cli.add_alias('st', 'status')


def setup_git(directory: Optional[str] = None) -> Tuple[Config, RealGit]:
    """Setup Git command and config."""
    if directory:
        os.chdir(directory)

    git_cmd = RealGit(default_config())
    try:
        git_cmd.must_git("rev-parse --git-dir")
    except StackError as e:
        logger.error(f"Not in a git repository: {e}")
        sys.exit(2)

    config = Config(parse_config(git_cmd))
    return config, RealGit(config)


def setup_github(config: Config) -> GitHubClient:
    """Build a GitHub client from the discovered token."""
    from github import Github
    from ...github.adapters import PyGithubAdapter

    token = find_github_token()
    if not token:
        logger.error("No GitHub token found. Set GITHUB_TOKEN or log in with 'gh auth login'")
        sys.exit(1)
    return GitHubClient(config, PyGithubAdapter(Github(token)))


def setup_manager(directory: Optional[str], verbose: int, need_github: bool = False) -> StackManager:
    from ... import setup_logging
    setup_logging(verbose)

    config, git_cmd = setup_git(directory)
    github = setup_github(config) if need_github else None
    store = RunStore(config.tool.state_dir or default_state_dir())
    return StackManager(config, git_cmd, OpenRouterClient(config.llm), github=github, store=store)


def load_request(path: str) -> StackRequest:
    """Read a run request from a JSON or YAML file."""
    with open(path, 'r') as f:
        text = f.read()
    if path.endswith(('.yaml', '.yml')):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)
    return StackRequest.model_validate(data)


def fail(e: Exception) -> None:
    logger.error(f"{e}")
    sys.exit(1)


directory_option = click.option(
    '-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
    help='Run as if prstack was started in DIRECTORY instead of the current working directory')
verbose_option = click.option(
    '-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")


@cli.command(name="run", help="Split the PR described by REQUEST_FILE into stacked branches")
@click.argument('request_file', type=click.Path(exists=True, dir_okay=False))
@directory_option
@verbose_option
@click.option('--json', 'as_json', is_flag=True, help="Print the final run record as JSON")
def run(request_file: str, directory: Optional[str], verbose: int, as_json: bool) -> None:
    request = load_request(os.path.abspath(request_file))
    manager = setup_manager(directory, verbose)
    try:
        run_id = manager.start(request)
        for event in manager.stream(run_id):
            if "current" in event:
                click.echo(f"[{event['phase']}] {event['current']}/{event['total']} {event['message']}")
            elif event["type"] == "progress":
                click.echo(f"[{event['phase']}] {event['message']}")
        record = manager.status(run_id)
    except StackError as e:
        fail(e)
        return
    finally:
        manager.shutdown()

    if as_json:
        print_json(record.to_json_dict())
    else:
        print_run(record)
    if record.status != "done":
        sys.exit(1)


@cli.command(name="status", help="Show a stack run, or list all runs")
@click.argument('run_id', required=False)
@directory_option
@verbose_option
@click.option('--json', 'as_json', is_flag=True, help="Print run records as JSON")
def status(run_id: Optional[str], directory: Optional[str], verbose: int, as_json: bool) -> None:
    manager = setup_manager(directory, verbose)
    try:
        records = [manager.status(run_id)] if run_id else manager.list_runs()
    except StackError as e:
        fail(e)
        return
    finally:
        manager.shutdown()
    if as_json:
        print_json([r.to_json_dict() for r in records])
        return
    if not records:
        click.echo("No stack runs")
    for record in records:
        print_run(record)


@cli.command(name="preview", help="Render the PR titles and bodies a publish would create")
@click.argument('run_id')
@directory_option
@verbose_option
def preview(run_id: str, directory: Optional[str], verbose: int) -> None:
    manager = setup_manager(directory, verbose)
    try:
        result = manager.publish_preview(run_id)
    except StackError as e:
        fail(e)
        return
    finally:
        manager.shutdown()
    click.echo(format_preview(result))


@cli.command(name="publish", help="Push stack branches and open chained draft PRs")
@click.argument('run_id')
@directory_option
@verbose_option
@click.option('--force', is_flag=True, help="Publish even if verification failed or the run already has PRs")
@click.option('--pretend', is_flag=True, help="Push nothing and create no PRs, just show what would happen")
def publish(run_id: str, directory: Optional[str], verbose: int, force: bool, pretend: bool) -> None:
    manager = setup_manager(directory, verbose, need_github=True)
    manager.config.tool.pretend = pretend
    try:
        result = manager.publish(run_id, force=force)
    except StackError as e:
        fail(e)
        return
    finally:
        manager.shutdown()
    click.echo(format_publish(result))
    if result.failures:
        sys.exit(1)


@cli.command(name="cleanup", help="Close the PRs of a published stack, or delete its local branches")
@click.argument('run_id')
@directory_option
@verbose_option
@click.option('--mode', type=click.Choice(['close', 'delete'], case_sensitive=False), default='close',
              help="'close' only closes PRs; 'delete' also deletes their remote branches")
@click.option('--local', is_flag=True, help="Only delete the run's local stack branches; GitHub is not touched")
def cleanup(run_id: str, directory: Optional[str], verbose: int, mode: str, local: bool) -> None:
    if local:
        cleanup_local(run_id, directory, verbose)
        return
    manager = setup_manager(directory, verbose, need_github=True)
    try:
        result = manager.publish_cleanup(run_id, 'delete' if mode.lower() == 'delete' else 'close')
    except StackError as e:
        fail(e)
        return
    finally:
        manager.shutdown()
    click.echo(format_cleanup(result))
    if any(item.message for item in result.items):
        sys.exit(1)


def cleanup_local(run_id: str, directory: Optional[str], verbose: int) -> None:
    manager = setup_manager(directory, verbose)
    try:
        removed = manager.remove_local_branches(run_id)
    except StackError as e:
        fail(e)
        return
    finally:
        manager.shutdown()
    if not removed:
        click.echo("No local branches to remove")
    for ref in removed:
        click.echo(f"Deleted {ref}")


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
