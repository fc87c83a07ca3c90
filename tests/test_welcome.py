import json

import pytest

from danmubot.api import ReplyInfo
from danmubot.config import Config, WelcomeByTime
from danmubot.context import ServiceContext
from danmubot.sender import InteractMessage
from danmubot.welcome import (
    in_exact,
    in_wide,
    interact_message,
    interact_message_by_time,
    on_entry_effect,
    on_interact_word,
    random_welcome,
    short_name,
    strip_welcome,
    time_key,
)


def make_svc(**overrides):
    return ServiceContext(config=Config(**overrides))


def drain(svc):
    items = []
    while not svc.outbox.empty():
        items.append(svc.outbox.get_nowait())
    return items


def entry_raw(uid=42, name="小明", guard=0, wealth=0):
    data = {"uid": uid, "uinfo": {"base": {"name": name}, "wealth": {"level": wealth}, "guard": {"level": guard}}}
    return json.dumps({"cmd": "ENTRY_EFFECT", "data": data})


def interact_raw(uid=42, uname="小明", msg_type=1):
    return json.dumps({"cmd": "INTERACT_WORD", "data": {"uid": uid, "uname": uname, "msg_type": msg_type}})


@pytest.mark.parametrize(
    "hour, key",
    [
        (0, "midnight"),
        (1, "midnight"),
        (2, "earlymorning"),
        (5, "morning"),
        (9, "latemorning"),
        (13, "noon"),
        (19, "afternoon"),
        (23, "night"),
    ],
)
def test_time_key(hour, key):
    assert time_key(hour) == key


def test_time_key_rejects_bad_hour():
    with pytest.raises(ValueError):
        time_key(24)


def test_random_welcome_fills_user():
    svc = make_svc(welcome_danmu=["hi {user}"])
    assert random_welcome(svc, "舰长 小明") == "hi " + "舰长 小明"


def test_random_welcome_at_mode_collapses_separator():
    svc = make_svc(welcome_danmu=["欢迎 {user}, 你好"], welcome_use_at=True)
    assert random_welcome(svc, "小明") == "欢迎" + "，" + "你好"


def test_random_welcome_by_time_uses_period_list():
    periods = [WelcomeByTime(enabled=True, key="night", danmu=["晚上好 {user}"])]
    svc = make_svc(welcome_danmu=["hi {user}"], interact_word_by_time=True, welcome_danmu_by_time=periods)
    assert random_welcome(svc, "小明", hour=21) == "晚上好 " + "小明"
    assert random_welcome(svc, "小明", hour=10) == "hi " + "小明"


def test_random_welcome_disabled_period_falls_back():
    periods = [WelcomeByTime(enabled=False, key="night", danmu=["晚上好 {user}"])]
    svc = make_svc(welcome_danmu=["hi {user}"], interact_word_by_time=True, welcome_danmu_by_time=periods)
    assert random_welcome(svc, "小明", hour=21) == "hi " + "小明"


@pytest.mark.parametrize("name", ["abcdefghijklmnop", "一二三四五六七八九十十一十二"])
def test_short_name_fits_limit(name):
    result = short_name(name, 3, 10)
    assert len(result) == 10 - 3
    assert result.endswith("…")
    assert name.startswith(result[:-1])


def test_short_name_keeps_short_or_unlimited():
    assert short_name("abc", 3, 10) == "abc"
    assert short_name("abcdefghij", 10, 10) == "abcdefghij"


def test_strip_welcome_only_first():
    name = "欢迎欢迎小明"
    result = strip_welcome(name)
    assert result.count("欢迎") == name.count("欢迎") - 1
    assert strip_welcome("小明") == "小明"


def test_blacklists():
    assert in_wide("坏人小号", ["坏人"]) is True
    assert in_wide("好人", ["坏人"]) is False
    assert in_exact("小明", ["小红", "小明"]) is True
    assert in_exact("小明啊", ["小明"]) is False


def test_interact_message_other_side_at_mode():
    svc = make_svc(welcome_use_at=True)
    svc.other_side_uid.add(5)
    assert interact_message(svc, 5, "小明") == "欢迎过来串门~"


def test_interact_message_other_side_long_name_fits():
    svc = make_svc(danmu_len=20)
    svc.other_side_uid.add(5)
    result = interact_message(svc, 5, "x" * 30)
    assert result.startswith("欢迎 ")
    assert result.endswith("… 过来串门~")
    assert len(result) == svc.config.danmu_len


def test_interact_message_short_template():
    svc = make_svc(welcome_danmu=["hi {user}!"])
    assert interact_message(svc, 1, "小明") == "hi " + "小明" + "!"


def test_interact_message_too_long_breaks_line():
    svc = make_svc(welcome_danmu=["欢迎 {user} ~"], danmu_len=5)
    assert interact_message(svc, 1, "abcdef") == "欢迎 " + "abcdef" + "\n ~"


def test_interact_message_at_mode():
    svc = make_svc(welcome_danmu=["欢迎 {user}, 你好"], welcome_use_at=True)
    assert interact_message(svc, 1, "小明") == "欢迎" + "，" + "你好"


def test_interact_message_by_time_at_mode_drops_user():
    periods = [WelcomeByTime(enabled=True, key="morning", danmu=["早 {user}"])]
    svc = make_svc(welcome_use_at=True, interact_word_by_time=True, welcome_danmu_by_time=periods)
    assert interact_message_by_time(svc, 1, "小明", hour=6) == "早"


def test_interact_message_by_time_other_side_matches_plain():
    svc = make_svc(interact_word_by_time=True)
    svc.other_side_uid.add(9)
    assert interact_message_by_time(svc, 9, "小明", hour=6) == interact_message(svc, 9, "小明")


def test_entry_effect_guard_welcome():
    svc = make_svc(entry_effect=True, welcome_danmu=["hi {user}"])
    assert on_entry_effect(svc, entry_raw(uid=42, name="小明", guard=3)) == InteractMessage(42, "hi " + "舰长 小明")


def test_entry_effect_wealth_threshold():
    svc = make_svc(entry_effect=True, welcome_high_wealthy=True, welcome_high_wealthy_level=20, welcome_danmu=["hi {user}"])
    assert on_entry_effect(svc, entry_raw(wealth=19)) is None
    assert on_entry_effect(svc, entry_raw(wealth=20, name="小明")).msg == "hi " + "小明"


def test_entry_effect_skips_self():
    svc = make_svc(entry_effect=True, interact_self=False)
    svc.robot_id = "42"
    assert on_entry_effect(svc, entry_raw(uid=42, guard=3)) is None


def test_interact_word_custom_welcome():
    svc = make_svc(welcome_switch=True, welcome_string={"42": "hello"})
    assert on_interact_word(svc, interact_raw(uid=42)) == [InteractMessage(42, "hello")]


def test_interact_word_splits_lines_with_shifted_uids():
    svc = make_svc(interact_word=True, welcome_danmu=["{user}, hi"], danmu_len=5)
    messages = on_interact_word(svc, interact_raw(uid=100, uname="abcdef"))
    assert [m.uid for m in messages] == [100, 101, 102]
    assert messages[0].msg == "abcdef"


def test_interact_word_blacklisted():
    svc = make_svc(interact_word=True, welcome_blacklist=["小明"])
    assert on_interact_word(svc, interact_raw(uname="小明")) == []


def test_follow_thanks_plain():
    svc = make_svc(thanks_focus=True, focus_danmu=["谢谢"])
    assert on_interact_word(svc, interact_raw(uname="小明", msg_type=2)) == []
    assert drain(svc) == [("感谢 " + "小明" + " 的关注!", None), ("谢谢", None)]


def test_share_thanks_at_mode():
    svc = make_svc(thanks_share=True, welcome_use_at=True, focus_danmu=["谢谢"])
    on_interact_word(svc, interact_raw(uid=42, uname="小明", msg_type=3))
    assert drain(svc) == [("感谢分享!" + "谢谢", ReplyInfo("42"))]


def test_follow_thanks_needs_name():
    svc = make_svc(thanks_focus=True, focus_danmu=["谢谢"])
    on_interact_word(svc, interact_raw(uname="", msg_type=5))
    assert drain(svc) == []