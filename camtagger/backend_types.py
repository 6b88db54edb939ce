from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_defaults=True)


# =============================================================================
# Discovery
# =============================================================================


class SigningDiscovery(WireModel):
    public_key_blob_ref: str = Field(alias="publicKeyBlobRef")
    sign_handler: str = Field(alias="signHandler")


class Discovery(WireModel):
    blob_root: str = Field(alias="blobRoot")
    search_root: str = Field(alias="searchRoot")
    signing: SigningDiscovery | None = None


# =============================================================================
# Search
# =============================================================================


class StringConstraint(WireModel):
    equals: str


class IntConstraint(WireModel):
    """Integer range. Zero bounds are omitted on the wire, so they need the zero flags."""

    min: int = 0
    max: int = 0
    zero_min: bool = Field(default=False, alias="zeroMin")
    zero_max: bool = Field(default=False, alias="zeroMax")

    @classmethod
    def exactly(cls, value: int) -> "IntConstraint":
        return cls(min=value, max=value, zero_min=value == 0, zero_max=value == 0)


class FileConstraint(WireModel):
    file_name: StringConstraint | None = Field(default=None, alias="fileName")
    file_size: IntConstraint | None = Field(default=None, alias="fileSize")


class PermanodeConstraint(WireModel):
    attr: str
    value: str


class Constraint(WireModel):
    file: FileConstraint | None = None
    permanode: PermanodeConstraint | None = None


class SearchQuery(WireModel):
    constraint: Constraint
    limit: int = 0

    @classmethod
    def content_blobs(cls, name: str, size: int) -> "SearchQuery":
        """Files whose name equals ``name`` and whose size is exactly ``size``."""
        return cls(
            constraint=Constraint(
                file=FileConstraint(
                    file_name=StringConstraint(equals=name),
                    file_size=IntConstraint.exactly(size),
                )
            )
        )

    @classmethod
    def permanodes_with_content(cls, blob: str) -> "SearchQuery":
        return cls(constraint=Constraint(permanode=PermanodeConstraint(attr="camliContent", value=blob)))


class SearchResultBlob(WireModel):
    blob: str | None = None


class SearchResult(WireModel):
    blobs: list[SearchResultBlob] | None = None

    def blob_refs(self) -> list[str]:
        return [entry.blob for entry in self.blobs or () if entry.blob]


# =============================================================================
# Describe
# =============================================================================


class DescribedPermanode(WireModel):
    attr: dict[str, list[str]] | None = None

    @field_validator("attr", mode="before")
    @classmethod
    def _values_as_lists(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: [v] if isinstance(v, str) else v for k, v in value.items()}
        return value


class DescribedBlob(WireModel):
    blob_ref: str | None = Field(default=None, alias="blobRef")
    camli_type: str | None = Field(default=None, alias="camliType")
    permanode: DescribedPermanode | None = None


class DescribeResponse(WireModel):
    meta: dict[str, DescribedBlob] = Field(default_factory=dict)

    @field_validator("meta", mode="before")
    @classmethod
    def _null_meta(cls, value: Any) -> Any:
        return {} if value is None else value


# =============================================================================
# Claims and uploads
# =============================================================================


class ClaimType(str, Enum):
    ADD_ATTRIBUTE = "add-attribute"
    DEL_ATTRIBUTE = "del-attribute"


def format_claim_date(now: datetime | None = None) -> str:
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class Claim(WireModel):
    # camliVersion has to come first, the signer checks the JSON prefix
    camli_version: int = Field(default=1, alias="camliVersion")
    camli_type: Literal["claim"] = Field(default="claim", alias="camliType")
    camli_signer: str = Field(alias="camliSigner")
    claim_date: str = Field(default_factory=lambda: format_claim_date(), alias="claimDate")
    claim_type: ClaimType = Field(alias="claimType")
    perma_node: str = Field(alias="permaNode")
    attribute: str
    value: str

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ReceivedBlob(WireModel):
    blob_ref: str = Field(alias="blobRef")
    size: int = 0


class UploadResponse(WireModel):
    received: list[ReceivedBlob] = Field(default_factory=list)
