import json
import threading
import time

import pytest

from danmubot.api import ReplyInfo
from danmubot.config import Config
from danmubot.context import ServiceContext
from danmubot.danmu import (
    CmdMatch,
    DanmuWorker,
    handle_danmu,
    help_lines,
    match_robot_cmd,
    parse_danmu,
    robot_chat,
)


def make_svc(**overrides):
    overrides.setdefault("sign_in_enable", False)
    overrides.setdefault("blind_box_stat", False)
    return ServiceContext(config=Config(**overrides))


def drain(svc):
    items = []
    while not svc.outbox.empty():
        items.append(svc.outbox.get_nowait())
    return items


def danmu_raw(msg, uid=1001, uname="viewer", id_str="dm1", reply_mid=0, reply_uname="", card=(5, "牌子")):
    extra = json.dumps({"id_str": id_str, "reply_mid": reply_mid, "reply_uname": reply_uname})
    head = [0] * 15 + [{"extra": extra}]
    info = [head, msg, [uid, uname]]
    if card is not None:
        info.append(list(card))
    return json.dumps({"cmd": "DANMU_MSG", "info": info})


def test_help_lines_with_command():
    lines = help_lines(Config(talk_robot_cmd="test"))
    assert lines[0] == "发送带有 test 的弹幕和我互动"
    assert lines[1] == "请尽情调戏我吧!"
    assert lines[-1] == "主播发送「开启欢迎弹幕」即可开启欢迎弹幕"


def test_help_lines_without_command():
    lines = help_lines(Config(talk_robot_cmd=""))
    assert lines[0] == "互动聊天已禁用..."
    assert len(lines) == len(help_lines(Config())) - 1


@pytest.mark.parametrize(
    "msg, fuzzy, expected",
    [
        ("test hello", False, CmdMatch.HAS_PREFIX),
        ("say test", True, CmdMatch.CONTAINED),
        ("say test", False, CmdMatch.NONE),
        ("nothing", True, CmdMatch.NONE),
    ],
)
def test_match_robot_cmd(msg, fuzzy, expected):
    assert match_robot_cmd(msg, Config(talk_robot_cmd="test", fuzzy_match_cmd=fuzzy)) is expected


def test_robot_chat_prefix_strips_command():
    svc = make_svc(talk_robot_cmd="test")
    reply = ReplyInfo("7", "m")
    question = robot_chat(svc, "test 你好", reply)
    assert question.msg == " 你好"
    assert question.reply == reply


def test_robot_chat_fuzzy_removes_command():
    svc = make_svc(talk_robot_cmd="test", fuzzy_match_cmd=True)
    question = robot_chat(svc, "你好test吗")
    assert question.msg == "你好吗"


def test_robot_chat_ignores_entry_message_and_bare_command():
    svc = make_svc(talk_robot_cmd="test", entry_msg="test hi")
    assert robot_chat(svc, "test hi") is None
    assert robot_chat(svc, "test") is None


def test_robot_chat_help_pushes_lines():
    svc = make_svc(talk_robot_cmd="test")
    assert robot_chat(svc, "@帮助") is None
    assert [msg for msg, _ in drain(svc)] == help_lines(svc.config)


def test_parse_danmu_fields():
    event = parse_danmu(danmu_raw("hi[dog]there", uid=1001, uname="viewer", id_str="dm1"))
    assert event.msg == "hithere"
    assert event.uid == "1001"
    assert event.uname == "viewer"
    assert event.reply == ReplyInfo("1001", "dm1")
    assert event.card_level == "5"
    assert event.card == "牌子"


def test_parse_danmu_float_uid_and_missing_card():
    event = parse_danmu(danmu_raw("x", uid=1001.0, card=None))
    assert event.uid == "1001"
    assert event.card == "无信仰"
    assert event.card_level == "0"


def test_parse_danmu_bad_extra_json_keeps_going():
    raw = json.loads(danmu_raw("x"))
    raw["info"][0][15]["extra"] = "not json"
    event = parse_danmu(json.dumps(raw))
    assert event.reply.reply_msg_id == ""
    assert event.msg == "x"


@pytest.mark.parametrize(
    "raw",
    ["not json", json.dumps({"info": []}), json.dumps({"info": [[], 1, [1, "a"]]})],
)
def test_parse_danmu_rejects_malformed(raw):
    with pytest.raises(ValueError):
        parse_danmu(raw)


def test_handle_danmu_returns_robot_question():
    svc = make_svc(talk_robot_cmd="test")
    question = handle_danmu(svc, danmu_raw("test 你好", uid=55, id_str="abc"))
    assert question.msg == " 你好"
    assert question.reply == ReplyInfo("55", "abc")


def test_handle_danmu_skips_robot_for_own_messages():
    svc = make_svc(talk_robot_cmd="test")
    svc.robot_id = "55"
    assert handle_danmu(svc, danmu_raw("test 你好", uid=55)) is None


def test_handle_danmu_draw_lot_and_keyword():
    svc = make_svc(draw_lots_list=["签A"], keyword_reply=True, keyword_reply_list={"抽": "world"})
    handle_danmu(svc, danmu_raw("抽签", uid=9, id_str="z"))
    sent = drain(svc)
    reply = ReplyInfo("9", "z")
    assert ("world", reply) in sent
    assert ("签A", reply) in sent


def test_handle_danmu_anchor_command():
    svc = make_svc(interact_word=True)
    svc.user_id = 77
    handle_danmu(svc, danmu_raw("关闭欢迎弹幕", uid=77))
    assert svc.config.interact_word is False
    assert ("已临时关闭欢迎弹幕", None) in drain(svc)


class _FakeRobot:
    def __init__(self):
        self.calls = []

    def push(self, content, reply=None):
        self.calls.append((content, reply))


def test_worker_hands_question_to_robot():
    svc = make_svc(talk_robot_cmd="test")
    robot = _FakeRobot()
    worker = DanmuWorker(svc, robot)
    stop = threading.Event()
    thread = threading.Thread(target=worker.run, args=(stop,))
    thread.start()
    try:
        worker.push("garbage")
        worker.push(danmu_raw("test hey", uid=3, id_str="q"))
        deadline = time.time() + 3
        while not robot.calls and time.time() < deadline:
            time.sleep(0.01)
    finally:
        stop.set()
        thread.join()
    assert robot.calls == [(" hey", ReplyInfo("3", "q"))]