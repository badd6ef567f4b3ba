"""CLI entry point."""

import asyncio
import os
import sys
import click
import logging
from typing import Any, Coroutine, Dict, NoReturn, Optional, Tuple, TypeVar
from click import Context

from ...config import Config
from ...config.config_parser import parse_config
from ...git import RealGit
from ...github import GitHubClient, find_github_token
from ...pretty import format_repository, print_header, print_json, repository_to_dict
from ...stack import StackSyncReport
from ...stacker import Stacker
from ...typing import Repository, StackAttackError
from ...util import ensure

# Get module logger
logger = logging.getLogger(__name__)

T = TypeVar('T')


def check(err: Exception) -> NoReturn:
    """Log the error and exit."""
    logger.error(f"{err}")
    sys.exit(1)

class AliasedGroup(click.Group):
    """Command group with support for aliases."""

    def __init__(self, name: Optional[str] = None, commands: Optional[Dict[str, click.Command]] = None, **attrs: Any) -> None:
        """Initialize with aliases map."""
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
    """Stack Attack - stacked commits as stacked pull requests."""
    ctx.obj = {}

def setup_stacker(directory: Optional[str] = None, pretend: bool = False) -> Tuple[Config, Stacker]:
    """Read config and wire git and GitHub into a Stacker."""
    from ...config import default_config
    from ...github.adapters import PyGithubAdapter
    from github import Auth, Github

    path = os.path.abspath(directory or os.getcwd())

    # Check git dir
    git_cmd = RealGit(default_config(), path)
    try:
        git_cmd.run_cmd("rev-parse --git-dir")
        path = git_cmd.working_dir
        cfg = parse_config(path, git_cmd)
    except (StackAttackError, ValueError, OSError) as e:
        check(e)

    config = Config(cfg)
    config.tool.pretend = config.tool.pretend or pretend
    git_cmd = RealGit(config, path)

    token = find_github_token(config)
    if not token:
        logger.warning("No GitHub token found - set user.github_token, GITHUB_TOKEN or run 'gh auth login'")
        github = Github()
    else:
        github = Github(auth=Auth.Token(token))
    platform = GitHubClient(config, PyGithubAdapter(github))

    return config, Stacker(path, git_cmd, platform, config)

def run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a Stacker coroutine, exiting on failure."""
    try:
        return asyncio.run(coro)
    except StackAttackError as e:
        check(e)

def print_report(report: StackSyncReport) -> None:
    for _, pr in report.pull_requests:
        print(f"   {pr}")
        if pr.url:
            print(f"      {pr.url}")
    for commit_hash, reason in report.failures:
        print(f"   ✗ {commit_hash[:8]}: {reason}")
    if not report.ok:
        sys.exit(1)

def print_repository(repo: Repository) -> None:
    print_header("Stack Attack", use_emoji=True)
    print("")
    print(format_repository(repo))
    print("")

def common_options(f: Any) -> Any:
    f = click.option('-v', '--verbose', count=True, help="Increase verbosity (can be used multiple times for more verbosity)")(f)
    f = click.option('-C', '--directory', type=click.Path(exists=True, file_okay=False, dir_okay=True),
                     help='Run as if sttack was started in DIRECTORY instead of the current working directory')(f)
    return f

@cli.command(name="status", help="Show the commit graph with branches and pull requests")
@common_options
@click.option('--fetch', is_flag=True, help="Fetch from the remote first")
@click.option('--json', 'as_json', is_flag=True, help="Print the graph as JSON")
@click.pass_context
def status(ctx: Context, directory: Optional[str], verbose: int, fetch: bool, as_json: bool) -> None:
    """Status command."""
    from ... import setup_logging
    setup_logging(verbose)

    _, stacker = setup_stacker(directory)
    repo = run(stacker.load(fetch=fetch))
    if as_json:
        print_json(repository_to_dict(repo))
    else:
        print_repository(repo)

@cli.command(name="rebase", help="Rebase the tree of commits rooted at ROOT onto TARGET")
@common_options
@click.argument('root')
@click.argument('target')
@click.pass_context
def rebase(ctx: Context, directory: Optional[str], verbose: int, root: str, target: str) -> None:
    """Rebase command."""
    from ... import setup_logging
    setup_logging(verbose)

    _, stacker = setup_stacker(directory)

    async def go() -> Repository:
        root_commit = await stacker.get_commit_by_hash(root)
        target_commit = await stacker.get_commit_by_hash(target)
        return await stacker.rebase(root_commit, target_commit)

    print_repository(run(go()))

@cli.command(name="pr-commit", help="Create or update the pull request for a single commit")
@common_options
@click.option('--pretend', is_flag=True, help="Don't actually push or create/update pull requests, just show what would happen")
@click.argument('commit')
@click.pass_context
def pr_commit(ctx: Context, directory: Optional[str], verbose: int, pretend: bool, commit: str) -> None:
    """PR for one commit."""
    from ... import setup_logging
    setup_logging(verbose)

    _, stacker = setup_stacker(directory, pretend)

    async def go() -> StackSyncReport:
        return await stacker.pr_one_commit(await stacker.get_commit_by_hash(commit))

    print_report(run(go()))

@cli.command(name="pr-stack", help="Create or update pull requests for the tree rooted at COMMIT")
@common_options
@click.option('--pretend', is_flag=True, help="Don't actually push or create/update pull requests, just show what would happen")
@click.argument('commit')
@click.pass_context
def pr_stack(ctx: Context, directory: Optional[str], verbose: int, pretend: bool, commit: str) -> None:
    """PR for a stack."""
    from ... import setup_logging
    setup_logging(verbose)

    _, stacker = setup_stacker(directory, pretend)

    async def go() -> StackSyncReport:
        return await stacker.pr_stack(await stacker.get_commit_by_hash(commit))

    print_report(run(go()))

INTERACTIVE_HELP = """Commands:
  status                  show the graph
  reload                  fetch and reload
  rebase <root> <target>  rebase a tree of commits
  pr <commit>             create or update the PR for one commit
  stack <commit>          create or update PRs for a tree of commits
  help                    show this help
  quit                    leave"""

@cli.command(name="interactive", help="Prompt for commands against a loaded repository")
@common_options
@click.option('--pretend', is_flag=True, help="Don't actually push or create/update pull requests, just show what would happen")
@click.pass_context
def interactive(ctx: Context, directory: Optional[str], verbose: int, pretend: bool) -> None:
    """Interactive command loop."""
    from ... import setup_logging
    setup_logging(verbose)

    _, stacker = setup_stacker(directory, pretend)
    run(interactive_loop(stacker))

async def interactive_loop(stacker: Stacker) -> None:
    """Line-oriented prompt; errors are reported and the loop continues."""
    stacker.listener = lambda repo: logger.debug(f"Snapshot with {len(repo)} commits published")
    print_repository(await stacker.load())
    click.echo(INTERACTIVE_HELP)

    while True:
        try:
            line = await asyncio.to_thread(click.prompt, "sttack", default="", show_default=False)
        except (EOFError, click.Abort):
            break
        words = line.split()
        if not words:
            continue
        command, args = words[0], words[1:]
        try:
            if command in ('q', 'quit', 'exit'):
                break
            elif command in ('h', 'help', '?'):
                click.echo(INTERACTIVE_HELP)
            elif command in ('s', 'status'):
                print_repository(ensure(stacker.repository))
            elif command == 'reload':
                print_repository(await stacker.load(fetch=True))
            elif command == 'rebase' and len(args) == 2:
                root = await stacker.get_commit_by_hash(args[0])
                target = await stacker.get_commit_by_hash(args[1])
                print_repository(await stacker.rebase(root, target))
            elif command in ('pr', 'stack') and len(args) == 1:
                commit = await stacker.get_commit_by_hash(args[0])
                if command == 'pr':
                    report = await stacker.pr_one_commit(commit)
                else:
                    report = await stacker.pr_stack(commit)
                for _, pr in report.pull_requests:
                    click.echo(f"   {pr}")
                for commit_hash, reason in report.failures:
                    click.echo(f"   ✗ {commit_hash[:8]}: {reason}")
            else:
                click.echo(f"Unknown command: {line.strip()} (try 'help')")
        except StackAttackError as e:
            logger.error(f"{e}")
            click.echo(f"Error: {e}")


cli.aliases['st'] = 'status'
cli.aliases['i'] = 'interactive'

def main() -> None:
    """Main entry point."""
    cli(obj={})

if __name__ == "__main__":
    main()
