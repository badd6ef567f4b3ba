"""Pretty formatting utilities for CLI output."""

import json
import shutil
import sys
from typing import Dict, IO, List, Optional

from ..git import REMOTE_REF_PREFIX, is_local_ref, local_ref_to_branch_name
from ..typing import Commit, CommitHash, Repository

def get_term_width() -> int:
    """Get terminal width, default to 80 if can't detect."""
    try:
        return shutil.get_terminal_size().columns
    except (OSError, ValueError):
        return 80


def header(text: str, use_emoji: bool = True) -> str:
    """Create a boxed header with optional emoji."""
    width = get_term_width()

    h_line = "─" * (width - 2)
    v_line = "│"
    emoji = "🥞 " if use_emoji else ""

    result = [
        f"┌{h_line}┐",
        f"{v_line} {emoji}{text}{' ' * max(width - len(text) - len(emoji) - 3, 0)}{v_line}",
        f"└{h_line}┘"
    ]

    return "\n".join(result)


def short_ref_name(ref_name: str) -> str:
    """``main`` for local refs, ``origin/main`` for remote-tracking refs."""
    if is_local_ref(ref_name):
        return local_ref_to_branch_name(ref_name)
    if ref_name.startswith(REMOTE_REF_PREFIX):
        return ref_name[len(REMOTE_REF_PREFIX):]
    return ref_name


def format_commit(commit: Commit, is_head: bool = False) -> str:
    """One line for a commit: hash, title, refs and PR."""
    marker = "@" if is_head else "o"
    parts = [marker, commit.short_hash, commit.title]
    if commit.ref_names:
        parts.append(f"({', '.join(short_ref_name(r) for r in commit.ref_names)})")
    pr = commit.pull_request_info
    if pr is not None:
        outdated = " outdated" if pr.is_outdated else ""
        parts.append(f"[#{pr.number}{outdated}]")
    return " ".join(parts)


def format_repository(repo: Repository) -> str:
    """Render the snapshot as an indented tree, oldest commit first.

    A commit with one child continues at the same depth; siblings are
    indented one level below their parent.
    """
    lines: List[str] = []
    if repo.has_uncommitted_changes:
        lines.append("(uncommitted changes)")

    # Iterative depth-first walk; stacks can be deep
    pending = [(repo.earliest_interesting_commit, 0)]
    seen = set()
    while pending:
        commit_hash, depth = pending.pop()
        commit = repo.get(commit_hash)
        if commit is None or commit_hash in seen:
            continue
        seen.add(commit_hash)
        lines.append("  " * depth + format_commit(commit, commit_hash == repo.head_hash))
        children = [c for c in commit.child_hashes if c in repo.commits]
        child_depth = depth if len(children) == 1 else depth + 1
        for child in reversed(children):
            pending.append((child, child_depth))
    return "\n".join(lines)


def repository_to_dict(repo: Repository) -> Dict[str, object]:
    """Plain-data view of a snapshot for JSON output."""
    commits: Dict[CommitHash, Dict[str, object]] = {}
    for commit in repo:
        pr = commit.pull_request_info
        commits[commit.hash] = {
            "title": commit.title,
            "timestamp": commit.timestamp.isoformat(),
            "author": commit.author.email,
            "refs": list(commit.ref_names),
            "parents": list(commit.parent_hashes),
            "children": list(commit.child_hashes),
            "pull_request": None if pr is None else {
                "number": pr.number,
                "url": pr.url,
                "title": pr.title,
                "outdated": pr.is_outdated,
            },
        }
    return {
        "path": repo.path,
        "head": repo.head_hash,
        "earliest_interesting_commit": repo.earliest_interesting_commit,
        "has_uncommitted_changes": repo.has_uncommitted_changes,
        "commits": commits,
    }


def pretty_json(data: object, prefix: str = "") -> str:
    """Format JSON data with optional prefix."""
    raw = json.dumps(data, indent=2)
    if prefix:
        lines = raw.split("\n")
        return "\n".join(f"{prefix}{line}" for line in lines)
    return raw


def print_json(data: object, prefix: str = "", file: Optional[IO[str]] = None) -> None:
    """Print JSON data to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(pretty_json(data, prefix), file=file)


def print_header(text: str, use_emoji: bool = True, file: Optional[IO[str]] = None) -> None:
    """Print a header to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(header(text, use_emoji), file=file)
