from typing import Annotated

from pydantic import BaseModel, Field


class MessageSendRequest(BaseModel):
    to_user_id: Annotated[str, Field(alias="toUserId")]
    title: str = ""
    body: str = ""

    model_config = {"populate_by_name": True}


class BroadcastRequest(BaseModel):
    """
    전체 회원에게 보내는 관리자 쪽지.
    Admin message sent to every active user.
    """

    title: str = ""
    body: str = ""
