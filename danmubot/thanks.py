"""Grouped thanks for gifts and blind-box profit summaries."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .api import ReplyInfo
from .context import ServiceContext

log = logging.getLogger(__name__)

QUEUE_SIZE = 1000
GENEROUS_COST = 50000
_MIN_WAIT = 0.01
_POLL = 0.2


@dataclass
class _GiftTally:
    cost: int = 0
    count: int = 0


@dataclass
class _BoxTally:
    count: int = 0
    profit: int = 0


def _blind(gift: Mapping[str, Any]) -> Mapping[str, Any]:
    blind = gift.get("blind_gift")
    return blind if isinstance(blind, Mapping) else {}


def guard_thanks(svc: ServiceContext, gift: Mapping[str, Any], reply: ReplyInfo | None = None) -> None:
    """Thank for a guard purchase; `gift` is the data of a GUARD_BUY message."""
    gift_name = str(gift.get("gift_name", ""))
    if reply is not None:
        svc.push_bullet("感谢" + gift_name, reply)
    else:
        svc.push_bullet("感谢 " + str(gift.get("username", "")) + " 的 " + gift_name)


class GiftThanker:
    """Collects gifts per sender and thanks them in batches.

    Gifts are the data mappings of SEND_GIFT messages.
    """

    def __init__(
        self,
        svc: ServiceContext,
        *,
        timer_factory: Callable[..., Any] = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.svc = svc
        self._timer_factory = timer_factory
        self._clock = clock
        self._lock = threading.RLock()
        self._queue: queue.Queue[Mapping[str, Any]] = queue.Queue(QUEUE_SIZE)
        self._name_uid: dict[str, int] = {}
        self._gifts: dict[str, dict[str, _GiftTally]] = {}
        self._boxes: dict[str, dict[str, _BoxTally]] = {}
        self._box_timers: dict[int, Any] = {}

    def push(self, gift: Mapping[str, Any]) -> None:
        """Queue a gift for counting."""
        self._queue.put(gift)

    def add(self, gift: Mapping[str, Any]) -> None:
        """Count one gift into the tables."""
        config = self.svc.config
        uname = str(gift.get("uname", ""))
        uid = int(gift.get("uid", 0) or 0)
        price = int(gift.get("price", 0) or 0)
        num = int(gift.get("num", 0) or 0)
        blind = _blind(gift)
        original = str(blind.get("original_gift_name", "") or "")
        with self._lock:
            if config.thanks_gift_use_at:
                self._name_uid[uname] = uid
            gift_name = str(gift.get("giftName", ""))
            if original:
                gift_name += "(" + original.replace("盲盒", "") + ")"
            tally = self._gifts.setdefault(uname, {}).setdefault(gift_name, _GiftTally())
            tally.cost += price
            tally.count += num
            if config.blind_box_profit_loss_stat and original:
                self._restart_box_timer(uid)
                original_price = int(blind.get("original_gift_price", 0) or 0)
                box = self._boxes.setdefault(uname, {}).setdefault(original, _BoxTally())
                box.count += num
                box.profit += (price - original_price) * num

    def _restart_box_timer(self, uid: int) -> None:
        old = self._box_timers.get(uid)
        if old is not None:
            old.cancel()
        timer = self._timer_factory(self.svc.config.thanks_gift_timeout, self._box_timer_fired, args=(uid,))
        timer.daemon = True
        self._box_timers[uid] = timer
        timer.start()

    def _box_timer_fired(self, uid: int) -> None:
        with self._lock:
            self.summarize_blind_boxes()
            self._box_timers.pop(uid, None)

    def _reply_for(self, name: str) -> ReplyInfo:
        return ReplyInfo(str(self._name_uid.get(name, 0)), "")

    def summarize_blind_boxes(self) -> None:
        """Announce each sender's blind-box gains or losses and clear them."""
        config = self.svc.config
        with self._lock:
            boxes, self._boxes = self._boxes, {}
            for name, tallies in boxes.items():
                parts = []
                for box_name, tally in tallies.items():
                    amount = tally.profit / 1000
                    if tally.profit > 0:
                        parts.append(f"{tally.count}个{box_name}赚了＋{amount:.2f}元")
                    else:
                        parts.append(f"{tally.count}个{box_name}亏了－{abs(amount):.2f}元")
                short = "，".join(parts)
                msg = short if config.thanks_gift_use_at else name + "的" + short
                if len(msg) > config.danmu_len:
                    if config.thanks_gift_use_at:
                        self.svc.push_bullet(short, self._reply_for(name))
                    else:
                        self.svc.push_bullet(name + "的")
                        self.svc.push_bullet(short)
                elif config.thanks_gift_use_at:
                    self.svc.push_bullet(msg, self._reply_for(name))
                else:
                    self.svc.push_bullet(msg)

    def summarize_gifts(self) -> None:
        """Thank each sender for the gifts counted so far and clear them."""
        config = self.svc.config
        with self._lock:
            gifts, self._gifts = self._gifts, {}
            for name, tallies in gifts.items():
                parts = [f"{tally.count}个{gift}" for gift, tally in tallies.items()]
                total_cost = sum(tally.cost for tally in tallies.values())
                short = "，".join(parts)
                prefix = "感谢" if config.thanks_gift_use_at else "感谢" + name + "的"
                msg = prefix + short
                if total_cost < config.thanks_min_cost:
                    pass
                elif len(msg) > config.danmu_len:
                    if config.thanks_gift_use_at:
                        self.svc.push_bullet(short, self._reply_for(name))
                    else:
                        self.svc.push_bullet("感谢 " + name + " 的")
                        self.svc.push_bullet(short)
                elif config.thanks_gift_use_at:
                    self.svc.push_bullet(msg, self._reply_for(name))
                else:
                    self.svc.push_bullet(msg)
                if total_cost >= GENEROUS_COST:
                    self.svc.push_bullet(name + "老板大气大气")

    def run(self, stop: threading.Event) -> None:
        """Count queued gifts and thank once no gift arrived for the timeout."""
        window = float(self.svc.config.thanks_gift_timeout)
        deadline = self._clock() + window
        try:
            while not stop.is_set():
                wait = min(_POLL, max(_MIN_WAIT, deadline - self._clock()))
                try:
                    gift = self._queue.get(timeout=wait)
                except queue.Empty:
                    if self._clock() >= deadline:
                        self.summarize_gifts()
                        deadline = self._clock() + window
                    continue
                self.add(gift)
                deadline = self._clock() + window
        finally:
            with self._lock:
                for timer in self._box_timers.values():
                    timer.cancel()
                self._box_timers.clear()