from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class Pagination(CamelModel):
    page: int
    limit: int
    has_more: bool

    @classmethod
    def for_page(cls, *, page: int, limit: int, returned: int) -> Pagination:
        # A full page is reported as "more", even when it happens to be the last one.
        return cls(page=page, limit=limit, has_more=returned == limit)
