"""Welcome messages for viewers entering the room and thanks for follows and shares."""

from __future__ import annotations

import datetime
import json
import logging
import random
from collections.abc import Iterable, Mapping
from typing import Any

from .api import ReplyInfo
from .context import ServiceContext
from .sender import InteractMessage

log = logging.getLogger(__name__)

USER = "{user}"
VISIT_AT = "欢迎过来串门~"
_VISIT_TEMPLATE = "欢迎  过来串门~"
_GUARD_NAMES = {1: "总督", 2: "提督", 3: "舰长"}
_SEPARATORS = (", ", ",", "，")

MSG_ENTER = 1
MSG_FOLLOW = 2
MSG_SHARE = 3
MSG_MUTUAL_FOLLOW = 5


def time_key(hour: int | None = None) -> str:
    """The period-of-day key for an hour (the current one by default)."""
    if hour is None:
        hour = datetime.datetime.now().hour
    if not 0 <= hour <= 23:
        raise ValueError(f"hour out of range: {hour}")
    if hour <= 1:
        return "midnight"
    if hour <= 4:
        return "earlymorning"
    if hour <= 8:
        return "morning"
    if hour <= 10:
        return "latemorning"
    if hour <= 13:
        return "noon"
    if hour <= 19:
        return "afternoon"
    return "night"


def _collapse(text: str, marker: str, replacement: str) -> str:
    for sep in _SEPARATORS:
        text = text.replace(marker + sep, replacement)
    return text


def _markers(use_at: bool) -> tuple[str, str]:
    if use_at:
        return " " + USER, "，"
    return USER, USER + "\n"


def random_welcome(svc: ServiceContext, msg: str, hour: int | None = None) -> str:
    """A random welcome template filled with `msg`."""
    config = svc.config
    text = ""
    if config.interact_word_by_time and config.welcome_danmu_by_time:
        key = time_key(hour)
        for entry in config.welcome_danmu_by_time:
            if entry.key == key:
                if entry.enabled and entry.danmu:
                    text = random.choice(entry.danmu)
                else:
                    text = random.choice(config.welcome_danmu)
                break
    else:
        text = random.choice(config.welcome_danmu)
    if not text:
        text = random.choice(config.welcome_danmu)
    marker, replacement = _markers(config.welcome_use_at)
    text = _collapse(text, marker, replacement)
    return text.replace(marker, msg)


def short_name(uname: str, already_len: int, danmu_len: int) -> str:
    """Shorten a name with an ellipsis so it fits beside `already_len` other characters."""
    max_len = danmu_len - already_len
    if len(uname) > max_len > 0:
        return uname[:max_len - 1] + "…"
    return uname


def strip_welcome(name: str) -> str:
    """Remove the first 欢迎 from a user name."""
    return name.replace("欢迎", "", 1)


def in_wide(target: str, words: Iterable[str]) -> bool:
    """Whether any word occurs inside the target."""
    return any(word in target for word in words)


def in_exact(target: str, words: Iterable[str]) -> bool:
    """Whether the target equals one of the words."""
    return target in set(words)


def _visit_message(svc: ServiceContext, uname: str) -> str:
    config = svc.config
    if config.welcome_use_at:
        return VISIT_AT
    max_len = config.danmu_len - len(_VISIT_TEMPLATE)
    if len(uname) > max_len > 0:
        return "欢迎 " + uname[:max_len - 1] + "… 过来串门~"
    return "欢迎 " + uname + " 过来串门~"


def _fill_template(svc: ServiceContext, template: str, uname: str, at_tail: str, extra_break: bool) -> str:
    config = svc.config
    if config.welcome_use_at:
        marker, replacement = _markers(True)
        return _collapse(template, marker, replacement).replace(marker, at_tail)
    marker, replacement = _markers(False)
    welcome = template.replace(marker, short_name(uname, 3, config.danmu_len))
    if len(welcome) <= config.danmu_len:
        return welcome
    text = _collapse(template, marker, replacement)
    if extra_break:
        text = text.replace(marker, replacement)
    return text.replace(marker, uname)


def interact_message(svc: ServiceContext, uid: int, uname: str) -> str:
    """The welcome for a viewer entering the room."""
    if uid in svc.other_side_uid:
        return _visit_message(svc, uname)
    template = random.choice(svc.config.welcome_danmu)
    return _fill_template(svc, template, uname, "，", True)


def interact_message_by_time(svc: ServiceContext, uid: int, uname: str, hour: int | None = None) -> str:
    """The welcome for a viewer, taken from the period-of-day list when it applies."""
    if uid in svc.other_side_uid:
        return interact_message(svc, uid, uname)
    config = svc.config
    if config.interact_word_by_time and config.welcome_danmu_by_time:
        key = time_key(hour)
        for entry in config.welcome_danmu_by_time:
            if entry.key == key:
                if entry.enabled and entry.danmu:
                    template = random.choice(entry.danmu)
                    return _fill_template(svc, template, uname, "", False)
                return interact_message(svc, uid, uname)
    return interact_message(svc, uid, uname)


def _data(raw: str | bytes) -> Mapping[str, Any]:
    try:
        doc = json.loads(raw)
    except ValueError as exc:
        log.error("%s", exc)
        return {}
    data = doc.get("data") if isinstance(doc, Mapping) else None
    return data if isinstance(data, Mapping) else {}


def _get(mapping: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(mapping, Mapping):
            return None
        mapping = mapping.get(key)
    return mapping


def _int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _skip_user(svc: ServiceContext, uid: int) -> bool:
    config = svc.config
    if not config.interact_self and str(uid) == svc.robot_id:
        return True
    return not config.interact_anchor and uid == svc.user_id


def on_entry_effect(svc: ServiceContext, raw: str | bytes) -> InteractMessage | None:
    """The welcome for an ENTRY_EFFECT message, or None."""
    data = _data(raw)
    config = svc.config
    uid = _int(data.get("uid"))
    if _skip_user(svc, uid):
        return None
    custom = config.welcome_string.get(str(uid))
    if config.welcome_switch and custom is not None and config.entry_effect:
        return InteractMessage(uid, custom)
    if not config.entry_effect:
        return None
    log.info("特效欢迎")
    name = str(_get(data, "uinfo", "base", "name") or "")
    level = _GUARD_NAMES.get(_int(_get(data, "uinfo", "guard", "level")), "")
    msg = ""
    if level:
        msg = f"{level} {name}"
    elif config.welcome_high_wealthy:
        if _int(_get(data, "uinfo", "wealth", "level")) >= config.welcome_high_wealthy_level:
            msg = name
    log.info(msg)
    if msg:
        return InteractMessage(uid, random_welcome(svc, msg))
    return None


def _thank(svc: ServiceContext, uid: int, uname: str, at_text: str, plain_action: str) -> None:
    config = svc.config
    if config.welcome_use_at:
        msg = at_text + random.choice(config.focus_danmu)
        svc.push_bullet(msg, ReplyInfo(str(uid)))
        return
    svc.push_bullet("感谢 " + short_name(uname, 8, config.danmu_len) + plain_action)
    if config.focus_danmu:
        svc.push_bullet(random.choice(config.focus_danmu))


def on_interact_word(svc: ServiceContext, raw: str | bytes) -> list[InteractMessage]:
    """Handle an INTERACT_WORD: return welcomes, and queue thanks for follows and shares."""
    data = _data(raw)
    config = svc.config
    uid = _int(data.get("uid"))
    uname = str(data.get("uname", "") or "")
    msg_type = _int(data.get("msg_type"))
    if msg_type == MSG_ENTER:
        if _skip_user(svc, uid):
            return []
        custom = config.welcome_string.get(str(uid))
        if config.welcome_switch and custom is not None:
            return [InteractMessage(uid, custom)]
        if not config.interact_word:
            return []
        if in_wide(uname, config.welcome_blacklist_wide) or in_exact(uname, config.welcome_blacklist):
            return []
        if config.interact_word_by_time:
            msg = interact_message_by_time(svc, uid, strip_welcome(uname))
            log.debug(msg)
            return [InteractMessage(uid, msg)]
        msg = interact_message(svc, uid, strip_welcome(uname))
        parts = msg.split("\n")
        if len(parts) > 1:
            return [InteractMessage(uid + offset, part) for offset, part in enumerate(parts)]
        return [InteractMessage(uid, msg)]
    if msg_type in (MSG_FOLLOW, MSG_MUTUAL_FOLLOW):
        if config.thanks_focus and uname:
            _thank(svc, uid, uname, "感谢关注!", " 的关注!")
        return []
    if msg_type == MSG_SHARE:
        if config.thanks_share and uname:
            _thank(svc, uid, uname, "感谢分享!", " 的分享!")
        return []
    log.info(">>>>>>>>>>>>> 未识别的类型: %s", raw)
    return []