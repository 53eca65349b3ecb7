"""
카카오톡 "나에게 보내기" 메모 발송 + 알림 아웃박스.

주문/신청서 이벤트가 생기면 notifications_outbox 에 dedupeKey 기준으로 한 번만
기록하고, 새로 기록된 경우에만 카카오 메모로 운영자에게 알린다.

KakaoTalk "send to me" memo sender plus a notification outbox: each
event is recorded once per dedupeKey and dispatched only when new.
"""

import json
import logging
from datetime import datetime
from typing import Any, Final
from urllib import error as urlerror
from urllib import parse, request

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from shop_core import KST, utc_now

from tennis_shop.config import Settings

logger = logging.getLogger(__name__)


KAKAO_MEMO_ENDPOINT: Final[str] = "https://kapi.kakao.com/v2/api/talk/memo/default/send"

EVENT_TITLES: Final[dict[str, str]] = {
    "order.created": "새 주문 접수",
    "order.cancel_requested": "주문 취소 요청",
    "stringing.application_submitted": "스트링 교체 신청 접수",
    "stringing.status_updated": "스트링 신청 상태 변경",
    "stringing.cancel_requested": "스트링 신청 취소 요청",
    "rental.created": "라켓 대여 신청",
    "rental.paid": "라켓 대여 결제",
    "rental.cancel_requested": "대여 취소 요청",
}


def short_code(object_id: Any) -> str:
    """
    문서 ID 끝 6자리를 고객 안내용 코드로 만든다. 예: DK-1A2B3C
    Customer-facing short code from the last 6 chars of an id.
    """
    if not object_id:
        return "-"
    return f"DK-{str(object_id)[-6:].upper()}"


def render_text(event_type: str, context: dict[str, Any]) -> str:
    """
    이벤트 종류와 문맥으로 카카오 메모 본문을 만든다.
    Build the Kakao memo text for an event.
    """
    lines: list[str] = [f"[도깨비 테니스] {EVENT_TITLES.get(event_type, event_type)}"]
    lines.append(f"- 접수번호 : {short_code(context.get('id'))}")

    if context.get("status"):
        lines.append(f"- 상태 : {context['status']}")
    if context.get("name"):
        lines.append(f"- 고객 : {context['name']}")
    if context.get("strings"):
        lines.append(f"- 스트링 : {', '.join(context['strings'])}")
    if context.get("preferredDate"):
        when = context["preferredDate"]
        if context.get("preferredTime"):
            when = f"{when} {context['preferredTime']}"
        lines.append(f"- 희망 일시 : {when}")
    if context.get("totalPrice") is not None:
        lines.append(f"- 금액 : {int(context['totalPrice']):,}원")

    # 발생 시각(KST) / Event time in KST
    lines.append(datetime.now(KST).strftime("- 발생시각 : %Y-%m-%d / %H:%M:%S"))
    return "\n".join(lines)


def send_kakao_memo(settings: Settings, text: str) -> dict[str, Any]:
    """
    카카오 "나에게 보내기" 메모 API를 호출한다.
    Call Kakao "send to me" memo API.

    반환값은 {"ok": bool, ...} 형태의 간단한 dict 이다.
    """
    access_token = settings.kakao_access_token
    if not access_token:
        return {"ok": False, "err": "kakao access token not set"}

    template_object: dict[str, Any] = {
        "object_type": "text",
        "text": text,
        "link": {},
        "button_title": settings.notification_button_title,
    }
    if settings.notification_link_url:
        template_object["link"] = {
            "web_url": settings.notification_link_url,
            "mobile_web_url": settings.notification_link_url,
        }

    # form-urlencoded 로 template_object 를 전송해야 한다.
    # The API expects template_object as URL-encoded form data.
    payload_str = json.dumps(template_object, ensure_ascii=False)
    form_data = parse.urlencode({"template_object": payload_str}).encode("utf-8")

    req = request.Request(
        KAKAO_MEMO_ENDPOINT,
        data=form_data,
        method="POST",
        headers={
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
        },
    )

    try:
        with request.urlopen(req, timeout=5.0) as resp:
            resp_body = resp.read().decode("utf-8", errors="ignore")
    except urlerror.URLError as exc:
        return {"ok": False, "err": f"request failed: {exc}"}

    try:
        data = json.loads(resp_body)
    except json.JSONDecodeError:
        return {"ok": False, "err": "invalid JSON response from Kakao", "raw": resp_body}

    # result_code == 0 이면 성공으로 본다.
    return {"ok": data.get("result_code") == 0, "response": data}


def dispatch_outbox(db: Database, settings: Settings, outbox_id: ObjectId) -> str:
    """
    아웃박스 항목 하나를 발송하고 최종 상태(queued/sent/failed)를 돌려준다.
    Dispatch one outbox entry and return its resulting status.

    알림이 꺼져 있거나 토큰이 없으면 queued 로 남긴다.
    """
    entry = db.notifications_outbox.find_one({"_id": outbox_id})
    if entry is None:
        return "missing"
    if not settings.notifications_enabled or not settings.kakao_access_token:
        return entry.get("status", "queued")

    text = (entry.get("rendered") or {}).get("text", "")
    result = send_kakao_memo(settings, text)
    now = utc_now()

    if result.get("ok"):
        db.notifications_outbox.update_one(
            {"_id": outbox_id},
            {"$set": {"status": "sent", "sentAt": now}, "$inc": {"attempts": 1}},
        )
        return "sent"

    logger.warning("kakao memo dispatch failed outbox=%s err=%s", outbox_id, result.get("err"))
    db.notifications_outbox.update_one(
        {"_id": outbox_id},
        {
            "$set": {"status": "failed", "lastError": str(result.get("err") or result)},
            "$inc": {"attempts": 1},
        },
    )
    return "failed"


def notify(
    db: Database,
    settings: Settings,
    event_type: str,
    dedupe_key: str,
    context: dict[str, Any],
) -> ObjectId | None:
    """
    이벤트를 아웃박스에 한 번만 기록하고, 새로 기록된 경우에만 발송한다.
    Record the event once per dedupe key and dispatch when newly queued.

    이 함수는 실패해도 예외를 전파하지 않고 경고만 남긴다.
    This function never raises; failures are logged as warnings.
    """
    try:
        inserted = db.notifications_outbox.insert_one(
            {
                "eventType": event_type,
                "dedupeKey": dedupe_key,
                "payload": context,
                "rendered": {"text": render_text(event_type, context)},
                "status": "queued",
                "attempts": 0,
                "createdAt": utc_now(),
            },
        )
    except DuplicateKeyError:
        return None
    except PyMongoError as exc:
        logger.warning("failed to queue notification %s: %s", dedupe_key, exc)
        return None

    try:
        dispatch_outbox(db, settings, inserted.inserted_id)
    except PyMongoError as exc:
        logger.warning("failed to dispatch notification %s: %s", dedupe_key, exc)
    return inserted.inserted_id
