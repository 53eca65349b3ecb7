"""
이 모듈은 notifications_outbox 컬렉션에서 최근 알림을 읽어와
터미널에 간단한 테이블 형태로 출력하는 CLI 유틸입니다.

This module provides a simple CLI utility that reads recent entries
from the notifications_outbox collection and prints them as a table.

    python -m tennis_shop.internal.cli_show_outbox --status failed --limit 20
"""

import argparse
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pymongo import DESCENDING
from pymongo.database import Database

from shop_core import KST

from tennis_shop.db import get_database


@dataclass
class OutboxRow:
    """단일 아웃박스 행. / A single outbox row."""

    created_at: str
    event_type: str
    status: str
    attempts: int
    summary: str


def _format_time(value: Any) -> str:
    # 저장값은 naive UTC, 출력은 KST / stored as naive UTC, shown in KST
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc).astimezone(KST).strftime("%Y-%m-%d %H:%M:%S")
    return ""


def _summarize(entry: dict[str, Any]) -> str:
    """
    발송 문구의 첫 줄 또는 마지막 에러를 한 줄로 요약한다.
    Summarize the first rendered line, or the last error.
    """
    if entry.get("status") == "failed" and entry.get("lastError"):
        return f"ERR {entry['lastError']}"
    text = (entry.get("rendered") or {}).get("text") or ""
    lines = [line for line in text.splitlines() if line.strip()]
    return " / ".join(lines[:2])


def load_recent_outbox(db: Database, limit: int, status: str | None = None) -> list[OutboxRow]:
    query = {"status": status} if status else {}
    cursor = db.notifications_outbox.find(query).sort("createdAt", DESCENDING).limit(limit)
    return [
        OutboxRow(
            created_at=_format_time(entry.get("createdAt")),
            event_type=str(entry.get("eventType") or ""),
            status=str(entry.get("status") or ""),
            attempts=int(entry.get("attempts") or 0),
            summary=_summarize(entry),
        )
        for entry in cursor
    ]


def print_table(rows: list[OutboxRow]) -> None:
    """OutboxRow 리스트를 터미널 테이블로 출력한다.
    Print a list of OutboxRow objects as a simple table in the terminal.
    """
    if not rows:
        print("No notifications found.")
        return

    headers = ["#", "Created(KST)", "Event", "Status", "Try", "Summary"]

    index_width = max(len(headers[0]), len(str(len(rows))))
    ts_width = max(len(headers[1]), *(len(r.created_at) for r in rows))
    type_width = max(len(headers[2]), *(len(r.event_type) for r in rows))
    status_width = max(len(headers[3]), *(len(r.status) for r in rows))
    try_width = max(len(headers[4]), *(len(str(r.attempts)) for r in rows))

    # Summary 는 너무 넓어지지 않도록 자른다. / Limit summary width.
    summary_width_max = 80
    summary_width = min(
        max(len(headers[5]), *(len(r.summary) for r in rows)),
        summary_width_max,
    )

    row_fmt = (
        f"{{:>{index_width}}}  "
        f"{{:<{ts_width}}}  "
        f"{{:<{type_width}}}  "
        f"{{:<{status_width}}}  "
        f"{{:>{try_width}}}  "
        f"{{:<{summary_width}}}"
    )

    print(row_fmt.format(*headers))
    print("-" * (index_width + ts_width + type_width + status_width + try_width + summary_width + 10))

    for idx, row in enumerate(rows, start=1):
        summary = row.summary
        if len(summary) > summary_width:
            summary = summary[: summary_width - 3] + "..."
        print(row_fmt.format(idx, row.created_at, row.event_type, row.status, row.attempts, summary))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "알림 아웃박스의 최근 항목을 테이블로 출력합니다.\n"
            "Print recent notification outbox entries as a table."
        ),
    )
    parser.add_argument(
        "--status",
        choices=["queued", "failed", "sent"],
        default=None,
        help="상태 필터 / Filter by status.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="가져올 최대 개수 (기본: 50). / Maximum number of rows (default: 50).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI 엔트리 포인트. / CLI entry point."""
    args = parse_args(argv)
    limit = max(1, args.limit)
    rows = load_recent_outbox(get_database(), limit=limit, status=args.status)
    print_table(rows)


if __name__ == "__main__":
    main()
