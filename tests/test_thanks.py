import queue
import threading
import time

from danmubot.api import ReplyInfo
from danmubot.config import Config
from danmubot.context import ServiceContext
from danmubot.thanks import GiftThanker, guard_thanks


class FakeTimer:
    def __init__(self, interval, fn, args=()):
        self.interval = interval
        self.fn = fn
        self.args = args
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fn(*self.args)


def make(**kwargs):
    svc = ServiceContext(config=Config(**kwargs))
    timers = []

    def factory(interval, fn, args=()):
        timer = FakeTimer(interval, fn, args)
        timers.append(timer)
        return timer

    return svc, GiftThanker(svc, timer_factory=factory), timers


def gift(uname="alice", uid=7, name="辣条", price=100, num=2, original="", original_price=0):
    data = {"uname": uname, "uid": uid, "giftName": name, "price": price, "num": num}
    data["blind_gift"] = {"original_gift_name": original, "original_gift_price": original_price}
    return data


def drain(svc):
    items = []
    while True:
        try:
            items.append(svc.outbox.get_nowait())
        except queue.Empty:
            return items


def test_summarize_gifts_and_clear():
    svc, thanker, _ = make()
    thanker.add(gift())
    thanker.summarize_gifts()
    assert drain(svc) == [("感谢alice的2个辣条", None)]
    thanker.summarize_gifts()
    assert drain(svc) == []


def test_min_cost_discards():
    svc, thanker, _ = make(thanks_min_cost=1000)
    thanker.add(gift(price=10))
    thanker.summarize_gifts()
    assert drain(svc) == []


def test_generous_sender_praised():
    svc, thanker, _ = make(danmu_len=40)
    thanker.add(gift(price=50000, num=1))
    thanker.summarize_gifts()
    msgs = [m for m, _ in drain(svc)]
    assert msgs[-1] == "alice老板大气大气"


def test_long_thanks_split():
    svc, thanker, _ = make(danmu_len=5)
    thanker.add(gift())
    thanker.summarize_gifts()
    assert drain(svc) == [("感谢 alice 的", None), ("2个辣条", None)]


def test_use_at_replies_with_uid():
    svc, thanker, _ = make(thanks_gift_use_at=True)
    thanker.add(gift(uid=7))
    thanker.summarize_gifts()
    assert drain(svc) == [("感谢2个辣条", ReplyInfo("7", ""))]


def test_blind_box_named_and_summarized_on_timer():
    svc, thanker, timers = make(danmu_len=40)
    thanker.add(gift(price=1000, num=1, original="心动盲盒", original_price=500))
    thanker.summarize_gifts()
    assert drain(svc) == [("感谢alice的1个辣条(心动)", None)]
    assert len(timers) == 1 and timers[0].started
    assert timers[0].interval == svc.config.thanks_gift_timeout
    timers[0].fire()
    msgs = [m for m, _ in drain(svc)]
    assert len(msgs) == 1
    assert msgs[0].startswith("alice的1个心动盲盒赚了＋")


def test_blind_box_loss():
    svc, thanker, timers = make(danmu_len=40)
    thanker.add(gift(price=100, num=1, original="心动盲盒", original_price=500))
    timers[0].fire()
    msgs = [m for m, _ in drain(svc) if "盲盒" in m]
    assert "亏了－" in msgs[0]


def test_blind_box_timer_restarts_per_user():
    svc, thanker, timers = make()
    thanker.add(gift(original="心动盲盒", original_price=10))
    thanker.add(gift(original="心动盲盒", original_price=10))
    assert len(timers) == 2
    assert timers[0].cancelled and not timers[1].cancelled


def test_blind_stat_disabled_no_timer():
    svc, thanker, timers = make(blind_box_profit_loss_stat=False)
    thanker.add(gift(original="心动盲盒", original_price=10))
    assert timers == []


def test_guard_thanks_forms():
    svc = ServiceContext(config=Config())
    data = {"username": "bob", "gift_name": "舰长"}
    guard_thanks(svc, data, ReplyInfo("3"))
    guard_thanks(svc, data)
    assert drain(svc) == [("感谢舰长", ReplyInfo("3")), ("感谢 bob 的 舰长", None)]


def test_run_thanks_after_timeout():
    svc, thanker, _ = make(thanks_gift_timeout=0)
    thanker.push(gift())
    stop = threading.Event()
    thread = threading.Thread(target=thanker.run, args=(stop,))
    thread.start()
    try:
        msg, reply = svc.outbox.get(timeout=3)
    finally:
        stop.set()
        thread.join(timeout=3)
    assert (msg, reply) == ("感谢alice的2个辣条", None)
    assert not thread.is_alive()