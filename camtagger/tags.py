from collections.abc import Iterable, Mapping
from enum import Enum

from .backend_types import ClaimType

TAG_ATTRIBUTE = "tag"


class Mode(str, Enum):
    ADD = "add"
    DEL = "del"

    @classmethod
    def parse(cls, value: str) -> "Mode":
        return cls(value.lower())

    @property
    def claim_type(self) -> ClaimType:
        return ClaimType.ADD_ATTRIBUTE if self is Mode.ADD else ClaimType.DEL_ATTRIBUTE

    @property
    def nothing_to_do(self) -> str:
        return "ALL TAGS PRESENT" if self is Mode.ADD else "NO TAGS TO REMOVE"


def parse_tags(value: str) -> frozenset[str]:
    """Split a comma separated tag list, dropping empty items."""
    return frozenset(tag for tag in value.split(",") if tag)


def current_tags(attrs: Mapping[str, Iterable[str]]) -> frozenset[str]:
    return frozenset(attrs.get(TAG_ATTRIBUTE, ()))


def reconcile(mode: Mode, requested: Iterable[str], current: Iterable[str]) -> frozenset[str]:
    """
    Tags that actually need a claim.

    Adding skips tags the permanode already carries, deleting skips
    tags it does not carry.
    """
    requested = frozenset(requested)
    if mode is Mode.ADD:
        return requested - frozenset(current)
    return requested & frozenset(current)
