import logging
from collections.abc import Iterable
from dataclasses import dataclass

import httpx

from .client import CamliClient, CamliError
from .tags import TAG_ATTRIBUTE, Mode

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mutation:
    tag: str
    claim: str | None = None

    @property
    def ok(self) -> bool:
        return self.claim is not None

    def __str__(self) -> str:
        return self.tag if self.ok else f"!{self.tag}"


async def apply_mutations(client: CamliClient, mode: Mode, permanode: str, tags: Iterable[str]) -> list[Mutation]:
    """One claim per tag. A failed claim is logged and the remaining tags are still attempted."""
    mutations = []
    for tag in sorted(tags):
        try:
            claim = await client.set_attribute(mode.claim_type, permanode, TAG_ATTRIBUTE, tag)
        except (CamliError, httpx.HTTPError) as e:
            log.warning("Failed to %s tag %r on %s: %s", mode.value, tag, permanode, e)
            mutations.append(Mutation(tag))
            continue
        log.debug("%s tag %r on %s: claim %s", mode.value, tag, permanode, claim)
        mutations.append(Mutation(tag, claim))
    return mutations
