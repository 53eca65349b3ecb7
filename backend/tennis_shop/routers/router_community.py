"""
커뮤니티 게시판 라우터.

변경 요청(글/댓글 작성, 좋아요, 신고 등)은 모두 double-submit CSRF 검증을 거친다.
좋아요/신고/조회수 집계는 60초 윈도 요청 제한을 받는다.

Community board router. Every mutation goes through the double-submit CSRF
check; likes, reports and view counting are rate limited per 60s window.
"""

from typing import Any
from urllib.parse import urlsplit

from fastapi import APIRouter, HTTPException, Request, Response, status
from pymongo.database import Database

from shop_core import Err, Ok

from tennis_shop.dependencies import (
    AdminDep,
    CommunityCsrf,
    DatabaseDep,
    OptionalPrincipalDep,
    PrincipalDep,
    SettingsDep,
    client_ip,
    parse_path_id,
)
from tennis_shop.errors import ShopError, map_shop_error_to_http_exception
from tennis_shop.models.model_io_community import (
    AdminPostStatusRequest,
    BoardType,
    CommentCreateRequest,
    PostCreateRequest,
    PostUpdateRequest,
    ReportRequest,
    ReportStatusRequest,
)
from tennis_shop.principal import Principal
from tennis_shop.security import COMMUNITY_CSRF_COOKIE, new_csrf_token
from tennis_shop.services import service_community

router = APIRouter()


def _http_error(error: ShopError) -> HTTPException:
    exc = map_shop_error_to_http_exception(error)
    retry_after = error.extra.get("retryAfterSec")
    if retry_after:
        exc.headers = {"Retry-After": str(retry_after)}
    return exc


def _unwrap(result: Any) -> dict[str, Any]:
    match result:
        case Ok(value=body):
            return body
        case Err(error=error):
            raise _http_error(error)


def _enforce_rate_limit(
    db: Database,
    action: str,
    principal: Principal | None,
    request: Request,
) -> None:
    result = service_community.consume_rate_limit(
        db, action, principal.id if principal else None, client_ip(request),
    )
    match result:
        case Ok():
            return
        case Err(error=error):
            raise _http_error(error)


def _is_same_origin(request: Request) -> bool:
    """
    Sec-Fetch-Site 또는 Origin 헤더로 같은 출처 요청인지 판단한다.
    Decide same-origin from Sec-Fetch-Site, falling back to the Origin header.
    """
    fetch_site = (request.headers.get("sec-fetch-site") or "").strip().lower()
    if fetch_site:
        return fetch_site in ("same-origin", "same-site")
    origin = (request.headers.get("origin") or "").strip()
    if not origin:
        return False
    return urlsplit(origin).netloc == (request.headers.get("host") or "")


@router.get(
    "/community/csrf",
    summary="커뮤니티 CSRF 토큰 발급 / Issue community CSRF token",
)
def issue_csrf_endpoint(response: Response, settings: SettingsDep) -> dict[str, str]:
    token = new_csrf_token()
    # 클라이언트 JS 가 읽어서 헤더로 다시 보내야 하므로 httpOnly 가 아니다.
    response.set_cookie(
        COMMUNITY_CSRF_COOKIE,
        token,
        httponly=False,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    return {"csrfToken": token}


# --- 게시글 / Posts ---


@router.get(
    "/community/posts",
    summary="게시글 목록 / List posts",
)
def list_posts_endpoint(
    db: DatabaseDep,
    type: BoardType | None = None,
    brand: str | None = None,
    q: str | None = None,
    sort: str = "latest",
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    return service_community.list_posts(
        db, post_type=type, brand=brand, q=q, sort=sort, page=page, limit=limit,
    )


@router.post(
    "/community/posts",
    summary="게시글 작성 / Create post",
    status_code=status.HTTP_201_CREATED,
    dependencies=[CommunityCsrf],
)
def create_post_endpoint(
    request: PostCreateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    return _unwrap(service_community.create_post(db, principal, request))


@router.get(
    "/community/posts/{id_or_no}",
    summary="게시글 상세 / Post detail",
)
def get_post_endpoint(
    id_or_no: str,
    principal: OptionalPrincipalDep,
    db: DatabaseDep,
    type: BoardType | None = None,
) -> dict[str, Any]:
    """
    ObjectId 또는 글 번호(+type)로 조회한다.
    Look up by ObjectId, or by post number together with the board type.
    """
    return _unwrap(service_community.get_post(db, id_or_no, type, principal))


@router.patch(
    "/community/posts/{post_id}",
    summary="게시글 수정 / Update post",
    dependencies=[CommunityCsrf],
)
def update_post_endpoint(
    post_id: str,
    request: PostUpdateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(post_id)
    return _unwrap(service_community.update_post(db, principal, oid, request))


@router.delete(
    "/community/posts/{post_id}",
    summary="게시글 삭제 / Delete post",
    dependencies=[CommunityCsrf],
)
def delete_post_endpoint(post_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_community.delete_post(db, principal, parse_path_id(post_id)))


@router.post(
    "/community/posts/{post_id}/like",
    summary="좋아요 토글 / Toggle like",
    dependencies=[CommunityCsrf],
)
def toggle_like_endpoint(
    post_id: str,
    request: Request,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(post_id)
    _enforce_rate_limit(db, "like", principal, request)
    return _unwrap(service_community.toggle_like(db, principal, oid))


@router.post(
    "/community/posts/{post_id}/report",
    summary="게시글 신고 / Report post",
    status_code=status.HTTP_201_CREATED,
    dependencies=[CommunityCsrf],
)
def report_post_endpoint(
    post_id: str,
    body: ReportRequest,
    request: Request,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(post_id)
    _enforce_rate_limit(db, "report", principal, request)
    return _unwrap(service_community.report(db, principal, "post", oid, body.reason))


@router.post(
    "/community/posts/{post_id}/view",
    summary="조회수 집계 / Register a view",
)
def register_view_endpoint(
    post_id: str,
    request: Request,
    principal: OptionalPrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    """
    같은 조회자(viewerKey)는 글마다 한 번만 집계된다.
    Each viewer key is counted once per post.
    """
    oid = parse_path_id(post_id)
    _enforce_rate_limit(db, "view", principal, request)
    result = service_community.register_view(
        db,
        oid,
        principal,
        client_ip(request),
        request.headers.get("user-agent"),
        _is_same_origin(request),
    )
    return _unwrap(result)


# --- 댓글 / Comments ---


@router.get(
    "/community/posts/{post_id}/comments",
    summary="댓글 목록 / List comments",
)
def list_comments_endpoint(
    post_id: str,
    db: DatabaseDep,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return service_community.list_comments(db, parse_path_id(post_id), page, limit)


@router.post(
    "/community/posts/{post_id}/comments",
    summary="댓글 작성 / Create comment",
    status_code=status.HTTP_201_CREATED,
    dependencies=[CommunityCsrf],
)
def create_comment_endpoint(
    post_id: str,
    body: CommentCreateRequest,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(post_id)
    return _unwrap(service_community.create_comment(db, principal, oid, body.content))


@router.delete(
    "/community/comments/{comment_id}",
    summary="댓글 삭제 / Delete comment",
    dependencies=[CommunityCsrf],
)
def delete_comment_endpoint(comment_id: str, principal: PrincipalDep, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_community.delete_comment(db, principal, parse_path_id(comment_id)))


@router.post(
    "/community/comments/{comment_id}/report",
    summary="댓글 신고 / Report comment",
    status_code=status.HTTP_201_CREATED,
    dependencies=[CommunityCsrf],
)
def report_comment_endpoint(
    comment_id: str,
    body: ReportRequest,
    request: Request,
    principal: PrincipalDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(comment_id)
    _enforce_rate_limit(db, "report", principal, request)
    return _unwrap(service_community.report(db, principal, "comment", oid, body.reason))


@router.get(
    "/community/authors/{user_id}/overview",
    summary="작성자 요약 / Author overview",
)
def author_overview_endpoint(user_id: str, db: DatabaseDep) -> dict[str, Any]:
    return _unwrap(service_community.author_overview(db, parse_path_id(user_id)))


# --- 관리자 / Admin ---


@router.get(
    "/admin/community/reports",
    summary="신고 목록(관리자) / List reports (admin)",
)
def list_reports_endpoint(
    _admin: AdminDep,
    db: DatabaseDep,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return service_community.list_reports(db, status, page, limit)


@router.patch(
    "/admin/community/reports/{report_id}/status",
    summary="신고 처리(관리자) / Resolve report (admin)",
)
def update_report_status_endpoint(
    report_id: str,
    body: ReportStatusRequest,
    admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(report_id)
    return _unwrap(service_community.update_report_status(db, admin, oid, body.action))


@router.get(
    "/admin/community/posts",
    summary="게시글 목록(관리자) / List posts (admin)",
)
def admin_list_posts_endpoint(
    _admin: AdminDep,
    db: DatabaseDep,
    status: str | None = None,
    type: BoardType | None = None,
    q: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    return service_community.admin_list_posts(
        db, status=status, post_type=type, q=q, page=page, limit=limit,
    )


@router.patch(
    "/admin/community/posts/{post_id}",
    summary="게시글 공개/숨김(관리자) / Show or hide post (admin)",
)
def admin_update_post_endpoint(
    post_id: str,
    body: AdminPostStatusRequest,
    _admin: AdminDep,
    db: DatabaseDep,
) -> dict[str, Any]:
    oid = parse_path_id(post_id)
    return _unwrap(service_community.admin_update_post(db, oid, body.status))
