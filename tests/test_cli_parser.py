"""Tests for CLI command parsing."""

import pytest

from cli.models import GcCommand, PullCommand, PushCommand, ServeCommand, StatusCommand, VerifyCommand
from cli.parser import ParseError, parse_command, parse_tokens

STREAM_ID = "AB" * 32


def test_parse_push():
    assert parse_command("push data/file.bin") == PushCommand(path="data/file.bin")


def test_parse_push_quoted_path():
    """Test paths with spaces survive shell-style quoting."""
    assert parse_command('push "my files/report.pdf"') == PushCommand(path="my files/report.pdf")


def test_parse_pull_lowercases_id():
    cmd = parse_command(f"pull {STREAM_ID} ./out")
    assert cmd == PullCommand(object_id=STREAM_ID.lower(), dest="./out")


def test_parse_status():
    assert parse_command("status .") == StatusCommand(path=".")


def test_parse_gc_and_verify():
    assert parse_command("gc") == GcCommand()
    assert parse_command("verify") == VerifyCommand()


@pytest.mark.parametrize("line", ["gc now", "verify all"])
def test_no_arg_commands_reject_arguments(line):
    with pytest.raises(ParseError):
        parse_command(line)


def test_parse_serve_defaults():
    assert parse_command("serve") == ServeCommand()


def test_parse_serve_options():
    cmd = parse_command("serve --host 127.0.0.1 --port 9000 /srv/repo")
    assert cmd == ServeCommand(root="/srv/repo", host="127.0.0.1", port=9000)


@pytest.mark.parametrize("line", [
    "serve --port",
    "serve --port abc",
    "serve --port 70000",
    "serve --verbose",
    "serve one two",
])
def test_parse_serve_errors(line):
    with pytest.raises(ParseError):
        parse_command(line)


@pytest.mark.parametrize("line", [
    "",
    "   ",
    "push",
    "push a b",
    "pull onlyid",
    "status",
    "frobnicate",
    'push "unterminated',
])
def test_invalid_commands(line):
    with pytest.raises(ParseError):
        parse_command(line)


def test_parse_tokens_from_argv():
    assert parse_tokens(["push", "file with spaces.txt"]) == PushCommand(path="file with spaces.txt")


def test_parse_tokens_empty():
    with pytest.raises(ParseError):
        parse_tokens([])
