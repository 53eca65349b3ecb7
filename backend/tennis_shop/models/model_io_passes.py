from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PackageOrderCreateRequest(_CamelModel):
    plan_id: Annotated[str, Field(description="예: package-10 / e.g. package-10")]


class PassExtendRequest(_CamelModel):
    """
    만료일 연장. days 모드는 일수 가산, absolute 모드는 지정일로 변경.
    Extend expiry by days, or set an absolute date.
    """

    mode: Literal["days", "absolute"] = "days"
    days: int | None = None
    new_expiry: str | None = None
    reason: str = ""

    def parsed_new_expiry(self) -> datetime | None:
        if not self.new_expiry:
            return None
        try:
            parsed = datetime.fromisoformat(self.new_expiry.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed


class PassAdjustSessionsRequest(_CamelModel):
    delta: int
    reason: str = ""
