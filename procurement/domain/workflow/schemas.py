"""Input schemas for workflow operations.

Submissions and resubmissions are validated with Pydantic before the engine
touches the store. Validation failures are re-raised as the workflow's own
ValidationError so callers only deal with one error taxonomy.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from procurement.core.errors import ValidationError
from procurement.domain.requests.entities import PurchaseRequestEntity, Urgency

M = TypeVar("M", bound=BaseModel)


class RequestDraft(BaseModel):
    """What a requester submits.

    Product fields are optional; blanks are filled from the metadata
    extractor when one is configured.

    Examples:
        >>> RequestDraft.model_validate({"url": "https://amazon.com/dp/B000000001", "quantity": 2, "justification": "need it"}).quantity
        2
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    url: str = Field(min_length=1, max_length=2000)
    quantity: int = Field(ge=1)
    justification: str = Field(min_length=1)
    urgency: Urgency = Urgency.NORMAL

    product_title: str = Field(default="", max_length=500)
    product_image_url: str = Field(default="", max_length=2000)
    product_description: str = ""
    estimated_price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, max_length=10)

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        return _require_http_url(value)


class MetadataLookup(BaseModel):
    """A product link to look up before submitting."""

    model_config = ConfigDict(str_strip_whitespace=True)

    url: str = Field(min_length=1, max_length=2000)

    @field_validator("url")
    @classmethod
    def _absolute_http_url(cls, value: str) -> str:
        return _require_http_url(value)


class RequestUpdate(BaseModel):
    """Fields a requester may change when answering an info request."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    quantity: Optional[int] = Field(default=None, ge=1)
    justification: Optional[str] = Field(default=None, min_length=1)
    urgency: Optional[Urgency] = None
    product_title: Optional[str] = Field(default=None, max_length=500)
    product_description: Optional[str] = None
    estimated_price: Optional[float] = Field(default=None, ge=0)

    def changes_against(self, record: PurchaseRequestEntity) -> dict[str, Any]:
        """Return only the provided fields whose value differs from the record."""
        provided = self.model_dump(exclude_unset=True, exclude_none=True)
        return {
            name: value
            for name, value in provided.items()
            if getattr(record, name) != value
        }


def parse_input(model: type[M], payload: M | dict[str, Any]) -> M:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(describe_errors(exc)) from exc


def describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ())) or "input"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _require_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return value
