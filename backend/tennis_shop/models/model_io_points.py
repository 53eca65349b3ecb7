from typing import Annotated

from pydantic import BaseModel, Field


class AdminPointsAdjustRequest(BaseModel):
    """
    관리자 포인트 조정. 양수는 지급, 음수는 차감 (0 은 서비스에서 거절).
    Admin points adjustment; positive grants, negative deducts.
    """

    model_config = {"populate_by_name": True}

    user_id: Annotated[str, Field(alias="userId")]
    amount: int
    reason: str | None = None
    ref_key: Annotated[str | None, Field(alias="refKey")] = None
