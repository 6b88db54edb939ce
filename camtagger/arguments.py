from collections.abc import Sequence
from dataclasses import dataclass

import argclass

from camtagger.tags import Mode, parse_tags

SEPARATOR = "--"

SYNOPSIS = "%(prog)s [options] add|del tag,tag... -- file file..."

USAGE = """\
Usage: {prog} [options] add|del tag,tag... -- file file...

Files are matched with permanodes by filename and size (exact match).

Results format: path permanode tag tag...
            or: path outcome
Fields are separated by single spaces, lines have no trailing space.

A tag prefixed with ! could not be changed.
Run with --help for the list of options."""


class UsageError(ValueError):
    pass


class Parser(argclass.Parser):
    url: str = argclass.Argument(default="http://localhost:3179", help="Perkeep server base URL")
    username: str = argclass.Argument(default="", help="HTTP basic auth user name")
    password: str = argclass.Argument(default="", secret=True, help="HTTP basic auth password")
    timeout: float = argclass.Argument(default=0.0, help="Per-request timeout in seconds, 0 waits forever")

    log_level: int = argclass.LogLevel


@dataclass(frozen=True)
class Invocation:
    mode: Mode
    tags: frozenset[str]
    paths: tuple[str, ...]


def split_argv(argv: Sequence[str]) -> tuple[list[str], list[str], list[str]]:
    """
    Split arguments into options, the mode and tag list, and the files.

    Everything after the first ``--`` is a file. The two words right before
    it are the mode and the tag list, taken verbatim so tags may start with
    a dash. Whatever precedes them is left to the option parser.
    """
    argv = list(argv)
    if SEPARATOR not in argv:
        raise UsageError(f"missing {SEPARATOR!r} before the file list")
    index = argv.index(SEPARATOR)
    head, paths = argv[:index], argv[index + 1 :]
    if len(head) < 2:
        raise UsageError("expected a mode and a tag list before --")
    return head[:-2], head[-2:], paths


def build_invocation(command: Sequence[str], paths: Sequence[str]) -> Invocation:
    if len(command) != 2:
        raise UsageError("expected a mode and a tag list before --")

    raw_mode, raw_tags = command
    try:
        mode = Mode.parse(raw_mode)
    except ValueError as e:
        raise UsageError(f"unknown mode {raw_mode!r}") from e

    tags = parse_tags(raw_tags)
    if not tags:
        raise UsageError("empty tag list")
    if not paths:
        raise UsageError("no files given")

    return Invocation(mode=mode, tags=tags, paths=tuple(paths))
