"""Incoming chat messages: parsing, the chat-robot trigger and command dispatch."""

from __future__ import annotations

import json
import logging
import queue
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .api import ReplyInfo
from .commands import (
    anchor_command,
    badge_active_check,
    blind_box_stat,
    draw_lot,
    keyword_reply,
    sign_in,
)
from .config import Config
from .context import ServiceContext
from .sender import Bullet, BulletRobot

log = logging.getLogger(__name__)

QUEUE_SIZE = 1000
HELP_COMMAND = "@帮助"
DEFAULT_CARD = "无信仰"
_POLL = 0.2
_BRACKETS = re.compile(r"\[(.*?)\]")

_COMMAND_HELP = [
    "发送「签到/打卡」即可签到",
    "发送「查询弹幕」查询自己近三天的弹幕数",
    "发送「X月盲盒」查询在本直播间的盲盒盈亏",
    "发送「抽签」即可抽签",
    "主播发送「关闭欢迎弹幕」即可关闭欢迎弹幕",
    "主播发送「开启欢迎弹幕」即可开启欢迎弹幕",
]


class CmdMatch(Enum):
    """How a message addresses the chat robot."""

    NONE = 0
    CONTAINED = 1
    HAS_PREFIX = 2


@dataclass
class DanmuEvent:
    """The parts of a DANMU_MSG the bot acts on."""

    msg: str
    uid: str
    uname: str
    reply: ReplyInfo
    card_level: str = "0"
    card: str = DEFAULT_CARD
    reply_mid: int = 0
    reply_uname: str = ""


def help_lines(config: Config) -> list[str]:
    """The lines sent in answer to the help command."""
    cmd = config.talk_robot_cmd
    if cmd:
        lines = [f"发送带有 {cmd} 的弹幕和我互动", "请尽情调戏我吧!"]
    else:
        lines = ["互动聊天已禁用..."]
    return lines + list(_COMMAND_HELP)


def match_robot_cmd(msg: str, config: Config) -> CmdMatch:
    """Whether the message talks to the robot, and how."""
    cmd = config.talk_robot_cmd
    if cmd in msg and config.fuzzy_match_cmd:
        return CmdMatch.CONTAINED
    if msg.startswith(cmd):
        return CmdMatch.HAS_PREFIX
    return CmdMatch.NONE


def robot_chat(svc: ServiceContext, msg: str, reply: ReplyInfo | None = None) -> Bullet | None:
    """Answer the help command and return the question meant for the robot, if any."""
    config = svc.config
    if msg == HELP_COMMAND:
        for line in help_lines(config):
            svc.push_bullet(line)
    match = match_robot_cmd(msg, config)
    if match is CmdMatch.NONE:
        return None
    cmd = config.talk_robot_cmd
    if match is CmdMatch.CONTAINED:
        content = msg.replace(cmd, "")
    else:
        content = msg[len(cmd):]
    if content and cmd and msg != config.entry_msg:
        return Bullet(content, reply)
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_extra(text: str) -> dict:
    try:
        extra = json.loads(text.replace('\\"', '"'))
    except ValueError as exc:
        log.critical("%s", exc)
        return {}
    return extra if isinstance(extra, dict) else {}


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def parse_danmu(raw: str | bytes) -> DanmuEvent:
    """Read a DANMU_MSG; raises ValueError when its layout is not the expected one."""
    try:
        doc = json.loads(raw)
    except ValueError as exc:
        raise ValueError(f"invalid danmaku JSON: {exc}") from exc
    info = doc.get("info") if isinstance(doc, dict) else None
    if not isinstance(info, list) or len(info) < 3:
        raise ValueError("danmaku without info")
    extras, text, sender = info[0], info[1], info[2]
    if not isinstance(text, str):
        raise ValueError("danmaku text is not a string")
    if (
        not isinstance(sender, list)
        or len(sender) < 2
        or not _is_number(sender[0])
        or not isinstance(sender[1], str)
    ):
        raise ValueError("danmaku sender is malformed")
    if (
        not isinstance(extras, list)
        or len(extras) < 16
        or not isinstance(extras[15], dict)
        or not isinstance(extras[15].get("extra"), str)
    ):
        raise ValueError("danmaku extra is malformed")
    uid = f"{sender[0]:.0f}"
    tag = _parse_extra(extras[15]["extra"])
    event = DanmuEvent(
        msg=_BRACKETS.sub("", text),
        uid=uid,
        uname=sender[1],
        reply=ReplyInfo(uid, str(tag.get("id_str", "") or "")),
        reply_mid=_int(tag.get("reply_mid")),
        reply_uname=str(tag.get("reply_uname", "") or ""),
    )
    if len(info) > 3 and isinstance(info[3], list) and len(info[3]) > 1:
        card_info = info[3]
        if _is_number(card_info[0]):
            event.card_level = f"{card_info[0]:.0f}"
        event.card = str(card_info[1])
    return event


def handle_danmu(svc: ServiceContext, raw: str | bytes) -> Bullet | None:
    """Run every enabled command for one message; return the question for the robot, if any."""
    event = parse_danmu(raw)
    config = svc.config
    msg, uid, reply = event.msg, event.uid, event.reply
    question = None
    if msg and uid != svc.robot_id:
        question = robot_chat(svc, msg, reply)
        if config.danmu_cnt_enable:
            badge_active_check(svc, msg, uid, reply)
        if config.keyword_reply:
            keyword_reply(svc, msg, reply)
    if config.sign_in_enable:
        sign_in(svc, msg, uid, reply)
    if config.draw_by_lot:
        draw_lot(svc, msg, reply)
    if config.blind_box_stat:
        blind_box_stat(svc, msg, uid, reply)
    if msg and uid == str(svc.user_id):
        anchor_command(svc, msg, uid)
    shown = f"@{event.reply_uname} {msg}" if event.reply_mid > 0 else msg
    log.info("%s 「%s %s」%s:%s", uid, event.card_level, event.card, event.uname, shown)
    return question


class DanmuWorker:
    """Handles queued chat messages and hands robot questions to the robot."""

    def __init__(self, svc: ServiceContext, robot: BulletRobot | None = None):
        self.svc = svc
        self.robot = robot
        self._queue: queue.Queue[str | bytes] = queue.Queue(QUEUE_SIZE)

    def push(self, raw: str | bytes) -> None:
        """Queue a raw DANMU_MSG."""
        self._queue.put(raw)

    def run(self, stop: threading.Event) -> None:
        """Handle queued messages until `stop` is set."""
        while not stop.is_set():
            try:
                raw = self._queue.get(timeout=_POLL)
            except queue.Empty:
                continue
            try:
                question = handle_danmu(self.svc, raw)
            except ValueError as exc:
                log.error("%s", exc)
                continue
            if question is not None and self.robot is not None:
                self.robot.push(question.msg, question.reply)