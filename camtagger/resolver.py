import logging

from .client import CamliClient, MalformedResponseError

log = logging.getLogger(__name__)


async def resolve(client: CamliClient, name: str, size: int) -> list[str]:
    """
    Find the permanodes representing a local file.

    Content blobs are matched by exact file name and size, then every
    permanode whose ``camliContent`` points at one of those blobs is
    collected. The result is deduplicated and keeps first-seen order.
    """
    blobs = await client.find_content_blobs(name, size)
    if not blobs:
        return []

    permanodes: dict[str, None] = {}
    for blob in blobs:
        for permanode in await client.find_permanodes(blob):
            permanodes.setdefault(permanode)

    log.debug("%s (%d bytes): %d blob(s), %d permanode(s)", name, size, len(blobs), len(permanodes))
    return list(permanodes)


async def fetch_attributes(client: CamliClient, permanode: str) -> dict[str, list[str]] | None:
    """Current attributes of ``permanode``, or None when the server shows none."""
    try:
        response = await client.describe(permanode)
    except MalformedResponseError as e:
        log.warning("Unreadable description of %s: %s", permanode, e.message)
        return None

    if not response.meta:
        return None

    described = response.meta.get(permanode)
    if described is None or described.permanode is None or described.permanode.attr is None:
        log.debug("Description of %s carries no attributes", permanode)
        return None

    return dict(described.permanode.attr)
