"""Opponent report when a PK battle starts, with repeat filtering per room."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .api import ApiError
from .context import ServiceContext

log = logging.getLogger(__name__)

QUEUE_SIZE = 1000
PK_WINDOW = 10.0
PK_FAILED = "PK信息获取失败!"
_POLL = 0.2


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _entries(value: Any) -> list[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _count_guards(items: Iterable[Mapping[str, Any]]) -> int:
    return sum(1 for item in items if _int(item.get("guard_level")) > 0)


def report_opponent(svc: ServiceContext, room_id: int) -> None:
    """Collect the opponent room's guards and ranking and announce a summary."""
    session = svc.session
    if session is None:
        log.error("PK信息获取失败：未登录")
        return
    try:
        master = session.master_info(room_id)
    except ApiError as exc:
        log.error("%s", exc)
        return
    info = master.get("info") if isinstance(master.get("info"), Mapping) else {}
    anchor_uid = _int(info.get("uid"))
    uname = info.get("uname", "")

    try:
        guards = session.top_list(room_id, anchor_uid, 1)
    except ApiError as exc:
        log.error("%s", exc)
        svc.push_bullet(PK_FAILED)
        return
    guard_info = guards.get("info") if isinstance(guards.get("info"), Mapping) else {}
    guard_list = _entries(guards.get("list"))
    for page in range(2, _int(guard_info.get("page")) + 1):
        try:
            more = session.top_list(room_id, anchor_uid, page)
        except ApiError as exc:
            log.error("%s", exc)
            continue
        guard_list.extend(_entries(more.get("list")))

    svc.other_side_uid.clear()
    svc.other_side_uid.update(_int(entry.get("uid")) for entry in guard_list)

    try:
        rank = session.rank_list(room_id, anchor_uid, 1)
    except ApiError as exc:
        svc.push_bullet(PK_FAILED)
        log.error("%s", exc)
        return
    items = _entries(rank.get("OnlineRankItem"))
    online_num = _int(rank.get("onlineNum"))
    rank_score = sum(_int(item.get("score")) for item in items)
    online_guards = _count_guards(items)
    svc.other_side_uid.update(_int(item.get("uid")) for item in items)

    if 0 < len(items) < online_num:
        total_pages = online_num // len(items)
        if online_num % 50 > 0:
            total_pages += 1
        for _ in range(2, total_pages + 1):
            try:
                more = session.rank_list(room_id, anchor_uid, 1)
            except ApiError as exc:
                log.error("%s", exc)
                continue
            items.extend(_entries(more.get("OnlineRankItem")))
        online_guards += _count_guards(items)
        svc.other_side_uid.update(_int(item.get("uid")) for item in items)

    svc.push_bullet(f"当前对手:{uname}")
    svc.push_bullet(f"共{guard_info.get('num', 0)}船，{master.get('follower_num', 0)}粉")
    svc.push_bullet(f"当前{online_guards}船在线，高能榜{online_num}人")
    svc.push_bullet(f"榜前50贡献{rank_score}分")


class PkWatcher:
    """Reports PK opponents, ignoring a room seen again within the window."""

    def __init__(
        self,
        svc: ServiceContext,
        *,
        window: float = PK_WINDOW,
        clock: Callable[[], float] = time.time,
        reporter: Callable[[ServiceContext, int], None] = report_opponent,
    ):
        self.svc = svc
        self.window = window
        self._clock = clock
        self._reporter = reporter
        self._seen: dict[int, float] = {}
        self._lock = threading.Lock()
        self._queue: queue.Queue[int] = queue.Queue(QUEUE_SIZE)

    def push(self, room_id: int) -> None:
        """Queue an opponent room."""
        self._queue.put(room_id)

    def handle(self, room_id: int, now: float | None = None) -> bool:
        """Report the room unless it was reported recently; True if reported."""
        now = self._clock() if now is None else now
        with self._lock:
            last = self._seen.get(room_id)
            if last is not None and int(last + self.window) >= int(now):
                log.debug("pk room %s 10秒内重复获取数据已被过滤", room_id)
                return False
            log.debug("正在处理pk信息")
            self._reporter(self.svc, room_id)
            self._seen[room_id] = now
        log.debug("pk room %s 已进入重复过滤列表", room_id)
        return True

    def prune(self, now: float | None = None) -> None:
        """Forget rooms whose window has passed."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [room for room, seen in self._seen.items() if int(seen + self.window) < int(now)]
            for room in expired:
                del self._seen[room]
                log.debug("pk room %s 已从重复过滤列表移除", room)

    def run(self, stop: threading.Event) -> None:
        """Handle queued rooms and prune the filter until `stop` is set."""
        next_prune = self._clock() + self.window
        while not stop.is_set():
            wait = min(_POLL, max(0.0, next_prune - self._clock()))
            try:
                room_id = self._queue.get(timeout=wait)
            except queue.Empty:
                room_id = None
            if room_id is not None:
                self.handle(room_id)
            if self._clock() >= next_prune:
                self.prune()
                next_prune = self._clock() + self.window