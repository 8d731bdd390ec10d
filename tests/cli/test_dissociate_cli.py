import argparse
from pathlib import Path
from typing import Generator
from unittest import mock

import pytest

from git_sticky_mirror.cli.arguments import CLIArgumentNamespace, get_log_level_options_parser
from git_sticky_mirror.cli.commands.dissociate import add_subparser, main
from git_sticky_mirror.errors import MirrorOperationError


@pytest.fixture
def patched_parser() -> Generator[argparse.ArgumentParser, None, None]:
    subparsers = argparse.ArgumentParser().add_subparsers()
    parser = add_subparser(subparsers, [get_log_level_options_parser()])
    with mock.patch.object(parser, "error") as err_func:
        err_func.side_effect = SystemExit()
        yield parser


@pytest.fixture
def mocked_dissociate():
    with mock.patch("git_sticky_mirror.cli.commands.dissociate.dissociate") as mocked:
        yield mocked


def test_cli_missing_workspace(patched_parser):
    with pytest.raises(SystemExit):
        patched_parser.parse_args([], namespace=CLIArgumentNamespace())
    patched_parser.error.assert_called_once()


def test_main_success(patched_parser, mocked_dissociate):
    args = patched_parser.parse_args(["ws"], namespace=CLIArgumentNamespace())
    assert main(args) == 0
    mocked_dissociate.assert_called_once_with(Path("ws"))


def test_main_failure(patched_parser, mocked_dissociate):
    mocked_dissociate.side_effect = MirrorOperationError("repack")
    args = patched_parser.parse_args(["ws"], namespace=CLIArgumentNamespace())
    assert main(args) == 1
