"""Shared fixtures for pysttack tests."""

import logging
from typing import Dict

import pytest

from pysttack.config import Config, default_config
from pysttack.graph import CommitGraphBuilder
from pysttack.tests.fakes import FakeCollaborationPlatform, FakeVersionControl
from pysttack.typing import CommitHash, Repository

logger = logging.getLogger(__name__)


def build(vc: FakeVersionControl) -> Repository:
    """Snapshot of whatever the fake currently holds."""
    return CommitGraphBuilder(vc).build("/repo")


@pytest.fixture
def config() -> Config:
    cfg = default_config()
    cfg.repo.github_repo_owner = "owner"
    cfg.repo.github_repo_name = "repo"
    return cfg


@pytest.fixture
def vc() -> FakeVersionControl:
    return FakeVersionControl()


@pytest.fixture
def platform() -> FakeCollaborationPlatform:
    return FakeCollaborationPlatform()


@pytest.fixture
def linear(vc: FakeVersionControl) -> Dict[str, CommitHash]:
    """R <- M <- A <- B <- C, with main (and origin/main) at M and feature at C.

    A second line D hangs off M on branch ``other``.
    """
    h: Dict[str, CommitHash] = {}
    h["R"] = vc.commit("root")
    h["M"] = vc.commit("mainline", h["R"])
    h["A"] = vc.commit("add parser", h["M"])
    h["B"] = vc.commit("use parser", h["A"])
    h["C"] = vc.commit("document parser", h["B"])
    h["D"] = vc.commit("unrelated fix", h["M"])
    vc.branch("main", h["M"])
    vc.branch("main", h["M"], remote="origin")
    vc.branch("feature", h["C"])
    vc.branch("other", h["D"])
    vc.checkout("feature")
    return h
