"""Handlers for the live-room events the bot reacts to."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from .api import ReplyInfo
from .commands import save_blind_box_stat
from .context import ServiceContext
from .thanks import guard_thanks
from .welcome import on_entry_effect, on_interact_word

log = logging.getLogger(__name__)

LOT_START_NOTICE = "识别到天选，欢迎弹幕已临时关闭"
LOT_END_NOTICE = "天选结束，欢迎弹幕已恢复默认"
RED_POCKET_START_NOTICE = "识别到红包，欢迎弹幕已临时关闭"
RED_POCKET_END_NOTICE = "红包结束，欢迎弹幕已恢复默认"

PK_END_COMMANDS = ("PK_BATTLE_END", "PK_END", "PK_BATTLE_CRIT", "PK_BATTLE_SETTLE_NEW")
PK_START_COMMANDS = ("PK_BATTLE_START_NEW", "PK_BATTLE_START")


class _Pushable(Protocol):
    def push(self, item: Any) -> None: ...


def _parse(raw: str | bytes) -> Mapping[str, Any] | None:
    try:
        doc = json.loads(raw)
    except ValueError as exc:
        log.error("%s", exc)
        return None
    return doc if isinstance(doc, Mapping) else None


def _data(raw: str | bytes) -> Mapping[str, Any]:
    doc = _parse(raw) or {}
    data = doc.get("data")
    return data if isinstance(data, Mapping) else {}


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _welcome_enabled(svc: ServiceContext) -> bool:
    config = svc.config
    return config.interact_word or config.entry_effect or config.welcome_high_wealthy


def _disable_welcome(svc: ServiceContext) -> None:
    config = svc.config
    config.interact_word = False
    config.entry_effect = False
    config.welcome_high_wealthy = False


def _restore_welcome(svc: ServiceContext) -> None:
    config, auto = svc.config, svc.auto_interact
    config.interact_word = auto.interact_word
    config.entry_effect = auto.entry_effect
    config.welcome_high_wealthy = auto.welcome_high_wealthy


def on_anchor_lot_start(svc: ServiceContext, raw: str | bytes) -> None:
    """A lottery began: switch welcomes off for its duration."""
    if _welcome_enabled(svc):
        _disable_welcome(svc)
    svc.push_bullet(LOT_START_NOTICE)


def on_anchor_lot_award(svc: ServiceContext, raw: str | bytes) -> None:
    """A lottery ended: restore the welcome switches."""
    _restore_welcome(svc)
    svc.push_bullet(LOT_END_NOTICE)


def on_room_block(svc: ServiceContext, raw: str | bytes) -> None:
    """Announce that a user was muted or unmuted."""
    if not svc.config.show_block_msg:
        return
    doc = _parse(raw)
    if doc is None:
        log.error("禁言数据解析失败:%s", raw)
        return
    data = doc.get("data") if isinstance(doc.get("data"), Mapping) else {}
    operator = _int(data.get("operator"))
    if operator == 2:
        oper, op = "主播", "禁言"
    elif operator == 1:
        oper, op = "房管", "禁言"
    else:
        oper, op = "", "解开禁言"
    svc.push_bullet(f"用户 {data.get('uname', '')} 被{oper} {op}!")


def on_preparing(svc: ServiceContext, raw: str | bytes) -> None:
    """The stream ended: send the goodbye message."""
    if svc.config.goodbye_info:
        svc.push_bullet(svc.config.goodbye_info)


def clear_other_side(svc: ServiceContext) -> None:
    """Forget the users of the last PK opponent."""
    svc.other_side_uid.clear()


def on_pk_battle_start(svc: ServiceContext, raw: str | bytes) -> int | None:
    """The opponent's room id of a starting PK, or None."""
    if not svc.config.pk_notice:
        return None
    doc = _parse(raw)
    if doc is None:
        log.error("pk数据解析失败:%s", raw)
        return None
    data = doc.get("data") if isinstance(doc.get("data"), Mapping) else {}
    init = data.get("init_info") if isinstance(data.get("init_info"), Mapping) else {}
    match = data.get("match_info") if isinstance(data.get("match_info"), Mapping) else {}
    if _int(init.get("room_id")) == svc.config.room_id:
        room_id = _int(match.get("room_id"))
    else:
        room_id = _int(init.get("room_id"))
    log.debug("开始pk")
    if room_id == 0:
        log.error("未获取的pk对手信息")
        return None
    return room_id


def on_send_gift(svc: ServiceContext, raw: str | bytes) -> Mapping[str, Any] | None:
    """Record a blind-box opening; return the gift data when gifts are to be thanked."""
    data = _data(raw)
    save_blind_box_stat(svc, data)
    return data if svc.config.thanks_gift else None


def on_guard_buy(svc: ServiceContext, raw: str | bytes) -> None:
    """Thank for a guard purchase."""
    if not svc.config.thanks_gift:
        return
    data = _data(raw)
    if svc.config.thanks_gift_use_at:
        guard_thanks(svc, data, ReplyInfo(str(_int(data.get("uid")))))
    else:
        guard_thanks(svc, data)


def on_common_notice(svc: ServiceContext, raw: str | bytes) -> None:
    """Thank for a guard blind box announced by a common notice."""
    if not svc.config.thanks_gift:
        return
    segments = _data(raw).get("content_segments")
    if not isinstance(segments, list):
        return
    texts = [str(seg.get("text", "")) if isinstance(seg, Mapping) else "" for seg in segments]
    if len(texts) == 5 and texts[1] == "投喂" and texts[2] == "大航海盲盒":
        svc.push_bullet(f"感谢 {texts[0]} 的 {texts[4]}")
    elif len(texts) == 6 and texts[2] == "投喂" and texts[3] == "大航海盲盒":
        svc.push_bullet(f"感谢 {texts[1]} 的 {texts[5]}")


class EventRouter:
    """Sends each room event to its handler and the workers behind it."""

    def __init__(
        self,
        svc: ServiceContext,
        *,
        interact: _Pushable | None = None,
        danmu: _Pushable | None = None,
        thanks: _Pushable | None = None,
        pk: _Pushable | None = None,
    ):
        self.svc = svc
        self.interact = interact
        self.danmu = danmu
        self.thanks = thanks
        self.pk = pk
        self.red_pockets = 0
        self._lock = threading.Lock()
        self._handlers: dict[str, Callable[[str | bytes], None]] = {
            "ENTRY_EFFECT": self._entry_effect,
            "INTERACT_WORD": self._interact_word,
            "DANMU_MSG": self._danmu,
            "ANCHOR_LOT_START": lambda raw: on_anchor_lot_start(self.svc, raw),
            "ANCHOR_LOT_AWARD": lambda raw: on_anchor_lot_award(self.svc, raw),
            "ROOM_BLOCK_MSG": lambda raw: on_room_block(self.svc, raw),
            "SEND_GIFT": self._send_gift,
            "GUARD_BUY": lambda raw: on_guard_buy(self.svc, raw),
            "COMMON_NOTICE_DANMAKU": lambda raw: on_common_notice(self.svc, raw),
            "POPULARITY_RED_POCKET_NEW": self.on_red_pocket_new,
            "POPULARITY_RED_POCKET_WINNER_LIST": self.on_red_pocket_winners,
        }
        for cmd in PK_START_COMMANDS:
            self._handlers[cmd] = self._pk_start
        for cmd in PK_END_COMMANDS:
            self._handlers[cmd] = lambda raw: clear_other_side(self.svc)

    def _entry_effect(self, raw: str | bytes) -> None:
        item = on_entry_effect(self.svc, raw)
        if item is not None and self.interact is not None:
            self.interact.push(item)

    def _interact_word(self, raw: str | bytes) -> None:
        for item in on_interact_word(self.svc, raw):
            if self.interact is not None:
                self.interact.push(item)

    def _danmu(self, raw: str | bytes) -> None:
        if self.danmu is not None:
            self.danmu.push(raw)

    def _send_gift(self, raw: str | bytes) -> None:
        gift = on_send_gift(self.svc, raw)
        if gift is not None and self.thanks is not None:
            self.thanks.push(gift)

    def _pk_start(self, raw: str | bytes) -> None:
        room_id = on_pk_battle_start(self.svc, raw)
        if room_id is not None and self.pk is not None:
            self.pk.push(room_id)

    def on_red_pocket_new(self, raw: str | bytes) -> None:
        """A red pocket was sent: thank for it and pause welcomes."""
        data = _data(raw)
        with self._lock:
            self.red_pockets += 1
        config = self.svc.config
        if config.thanks_gift:
            price = _int(data.get("price"))
            gift_name = data.get("gift_name", "")
            if config.thanks_gift_use_at:
                self.svc.push_bullet(
                    f"感谢 {price} 电池的 {gift_name}", ReplyInfo(str(_int(data.get("uid"))))
                )
            else:
                self.svc.push_bullet(f"感谢 {data.get('uname', '')} {price}电池的 {gift_name}")
        if _welcome_enabled(self.svc):
            _disable_welcome(self.svc)
            config.lottery_enable = False
            self.svc.push_bullet(RED_POCKET_START_NOTICE)

    def on_red_pocket_winners(self, raw: str | bytes) -> None:
        """A red pocket was drawn: restore welcomes once none is pending."""
        with self._lock:
            self.red_pockets = max(0, self.red_pockets - 1)
            remaining = self.red_pockets
        log.info("中奖名单:")
        winners = _data(raw).get("winner_info")
        for winner in winners if isinstance(winners, list) else []:
            if isinstance(winner, list) and len(winner) > 1:
                log.info(" >>> %s %s", winner[0], winner[1])
        if remaining <= 0:
            _restore_welcome(self.svc)
            self.svc.push_bullet(RED_POCKET_END_NOTICE)
            with self._lock:
                self.red_pockets = 0

    def dispatch(self, cmd: str, raw: str | bytes) -> bool:
        """Handle one event; False when the command is not one the bot reacts to."""
        handler = self._handlers.get(cmd)
        if handler is None:
            return False
        handler(raw)
        return True