import logging
import os
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

import httpx

from camtagger.arguments import Invocation, Parser
from camtagger.client import CamliClient, CamliError
from camtagger.mutations import apply_mutations
from camtagger.resolver import fetch_attributes, resolve
from camtagger.tags import Mode, current_tags, reconcile

log = logging.getLogger(__name__)


@dataclass
class FileReport:
    """One output line: the path, the permanode once known, then the outcome words."""

    path: str
    permanode: str | None = None
    words: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        parts = [self.path]
        if self.permanode:
            parts.append(self.permanode)
        parts.extend(self.words)
        return " ".join(parts)


def _one_line(error: Exception) -> str:
    return " ".join(str(error).split()) or error.__class__.__name__


def _stat(target: Path) -> os.stat_result | None:
    # unreadable parents and over-long names count as missing
    try:
        return target.stat()
    except OSError as e:
        log.debug("Cannot stat %s: %s", target, e)
        return None


async def tag_file(client: CamliClient, path: str, mode: Mode, tags: frozenset[str]) -> FileReport:
    report = FileReport(path)
    target = Path(path)

    info = _stat(target)
    if info is None:
        report.words.append("NON-EXISTENT")
        return report

    if stat.S_ISDIR(info.st_mode):
        report.words.append("DIRECTORY")
        return report

    try:
        nodes = await resolve(client, target.name, info.st_size)
        if len(nodes) != 1:
            report.words += [str(len(nodes)), "NODES"]
            return report

        report.permanode = nodes[0]
        attrs = await fetch_attributes(client, report.permanode)
        if attrs is None:
            report.words += ["NO", "ATTRS"]
            return report

        changes = reconcile(mode, tags, current_tags(attrs))
        if not changes:
            report.words.append(mode.nothing_to_do)
            return report

        mutations = await apply_mutations(client, mode, report.permanode, changes)
        report.words.extend(map(str, mutations))
    except (CamliError, httpx.HTTPError, OSError) as e:
        log.debug("Processing %s failed", path, exc_info=True)
        report.words += ["ERROR", _one_line(e)]

    return report


async def run(client: CamliClient, invocation: Invocation, stream: TextIO = sys.stdout) -> None:
    log.debug("%s %s on %d path(s)", invocation.mode.value, sorted(invocation.tags), len(invocation.paths))
    for path in invocation.paths:
        report = await tag_file(client, path, invocation.mode, invocation.tags)
        print(report, file=stream, flush=True)


async def amain(parser: Parser, invocation: Invocation) -> None:
    async with CamliClient(
        base_url=parser.url,
        username=parser.username,
        password=parser.password,
        timeout=parser.timeout,
    ) as client:
        log.debug("Client initialized: %s", client)
        await run(client, invocation)
