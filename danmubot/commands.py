"""Chat commands: sign-in, message counts, blind-box stats, lots, keywords and anchor switches."""

from __future__ import annotations

import datetime
import logging
import random
import re
import sqlite3
import time
from collections.abc import Mapping
from typing import Any

from .api import ReplyInfo
from .context import ServiceContext
from .store import BlindBoxRecord, DanmuCountRecord, RecordNotFound, SignInRecord

log = logging.getLogger(__name__)

SIGN_IN_ERROR = "签到服务异常"
BLIND_BOX_ERROR = "盲盒统计服务异常"
NO_LOTS = "别抽签，抽主播!"
_MONTH_QUERY = re.compile(r"([0-9]+)月盲盒")


def _parse_uid(uid: str) -> int | None:
    try:
        return int(uid)
    except (TypeError, ValueError) as exc:
        log.error("%s", exc)
        return None


def badge_active_check(svc: ServiceContext, msg: str, uid: str, reply: ReplyInfo | None = None) -> None:
    """Count today's message of the user and answer the 查询弹幕 query."""
    model = svc.danmu_cnt_model
    today = model.date_str(0)
    user = _parse_uid(uid)
    if user is None:
        svc.push_bullet(SIGN_IN_ERROR, reply)
        return
    found = True
    try:
        record = model.find_one(user, today)
    except RecordNotFound:
        found = False
        try:
            model.insert(DanmuCountRecord(uid=user, date=today, count=1))
        except sqlite3.Error as exc:
            svc.push_bullet(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
    except sqlite3.Error as exc:
        log.error("%s", exc)
        return
    else:
        try:
            model.update_count(user)
        except sqlite3.Error as exc:
            svc.push_bullet(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
        record.count += 1
        if record.count == 10:
            svc.push_bullet(f"好耶！今天发了{record.count}条弹幕了耶！", reply)

    if msg != "查询弹幕":
        return
    today_num = record.count if found else 0
    counts = []
    for days_ago in (1, 2):
        try:
            counts.append(model.find_one(user, model.date_str(days_ago)).count)
        except (RecordNotFound, sqlite3.Error):
            counts.append(0)
    svc.push_bullet(f"今/昨/前天各发送了：{today_num}，{counts[0]}，{counts[1]}条弹幕", reply)


def save_blind_box_stat(svc: ServiceContext, gift: Mapping[str, Any]) -> None:
    """Record a blind-box opening; `gift` is the data of a SEND_GIFT message."""
    blind = gift.get("blind_gift")
    blind = blind if isinstance(blind, Mapping) else {}
    name = str(blind.get("original_gift_name", "") or "")
    log.info(name)
    if not name:
        return
    today = datetime.date.today()
    try:
        svc.blind_box_stat_model.insert(
            BlindBoxRecord(
                uid=int(gift.get("uid", 0) or 0),
                blind_box_name=name,
                price=int(gift.get("price", 0) or 0),
                original_gift_price=int(blind.get("original_gift_price", 0) or 0),
                cnt=int(gift.get("num", 0) or 0),
                year=today.year,
                month=today.month,
                day=today.day,
            )
        )
    except sqlite3.Error as exc:
        log.critical("保存盲盒数据出错!!! %s", exc)
    else:
        log.info("盲盒数据保存成功!!! ")


def blind_box_stat(svc: ServiceContext, msg: str, uid: str, reply: ReplyInfo | None = None) -> None:
    """Answer 'N月盲盒' with the month's blind-box result; the anchor sees everyone's."""
    if not svc.config.blind_box_stat:
        return
    match = _MONTH_QUERY.fullmatch(msg)
    if match is None:
        return
    month_text = match.group(1)
    month = int(month_text)
    if not 1 <= month <= 12:
        svc.push_bullet(f"月份「{month_text}」不正确!", reply)
        return
    user = _parse_uid(uid)
    if user is None:
        svc.push_bullet(BLIND_BOX_ERROR, reply)
        return
    year = datetime.date.today().year
    model = svc.blind_box_stat_model
    try:
        if svc.user_id == user:
            result = model.total(year, month, 0)
        else:
            result = model.total_for_user(user, year, month, 0)
    except sqlite3.Error as exc:
        svc.push_bullet(BLIND_BOX_ERROR, reply)
        log.critical("盲盒统计出错了!%s", exc)
        return
    amount = result.profit / 1000
    if result.profit > 0:
        text = f"{month_text}月共开{result.count}个, 赚了＋{amount:.2f}元"
    elif result.profit == 0:
        text = f"{month_text}月共开{result.count}个, 没亏没赚!"
    else:
        text = f"{month_text}月共开{result.count}个, 亏了－{abs(amount):.2f}元"
    svc.push_bullet(text, reply)


def anchor_command(svc: ServiceContext, msg: str, uid: str) -> None:
    """Let the anchor switch welcome messages off or on."""
    if uid != str(svc.user_id):
        return
    if msg == "关闭欢迎弹幕":
        enabled, answer = False, "已临时关闭欢迎弹幕"
    elif msg == "开启欢迎弹幕":
        enabled, answer = True, "已临时开启欢迎弹幕"
    else:
        return
    for target in (svc.config, svc.auto_interact):
        target.interact_word = enabled
        target.entry_effect = enabled
        target.welcome_high_wealthy = enabled
    svc.push_bullet(answer)


def draw_lot(svc: ServiceContext, msg: str, reply: ReplyInfo | None = None) -> None:
    """Answer 抽签 with a random lot."""
    if msg != "抽签":
        return
    lots = svc.config.draw_lots_list
    svc.push_bullet(random.choice(lots) if lots else NO_LOTS, reply)


def keyword_reply(svc: ServiceContext, msg: str, reply: ReplyInfo | None = None) -> None:
    """Answer with the reply of the first configured keyword found in the message."""
    for keyword, answer in svc.config.keyword_reply_list.items():
        if keyword in msg:
            svc.push_bullet(answer, reply)
            break


def sign_in(svc: ServiceContext, msg: str, uid: str, reply: ReplyInfo | None = None) -> None:
    """Handle 签到 / 打卡: one sign-in per calendar day."""
    if msg not in ("签到", "打卡"):
        return
    user = _parse_uid(uid)
    if user is None:
        svc.push_bullet(SIGN_IN_ERROR, reply)
        return
    model = svc.sign_in_model
    now = time.time()
    try:
        record = model.find_one(user)
    except RecordNotFound:
        try:
            model.insert(SignInRecord(uid=user, last_day=int(now), count=1))
        except sqlite3.Error as exc:
            svc.push_bullet(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
        svc.push_bullet("已签到1天", reply)
        return
    except sqlite3.Error as exc:
        svc.push_bullet(SIGN_IN_ERROR, reply)
        log.error("%s", exc)
        return
    last = datetime.datetime.fromtimestamp(record.last_day).date()
    if last != datetime.datetime.fromtimestamp(now).date():
        try:
            model.update_count(user)
        except sqlite3.Error as exc:
            svc.push_bullet(SIGN_IN_ERROR, reply)
            log.error("%s", exc)
            return
        svc.push_bullet(f"已签到{record.count + 1}天", reply)
    else:
        svc.push_bullet(f"今天已经签到过了,已签到{record.count}天", reply)