"""Outgoing message queue, chat-robot replies and duplicate-welcome filtering."""

from __future__ import annotations

import logging
import queue
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .api import ApiError, ReplyInfo, chatgpt_reply, qingyunke_reply
from .config import Config
from .context import ServiceContext

log = logging.getLogger(__name__)

QUEUE_SIZE = 1000
ROBOT_BROKEN = "不好意思，机器人坏掉了..."
INTERACT_WINDOW = 10.0
_POLL = 0.2
_FACE = re.compile(r"\{face:.*\}")


@dataclass(frozen=True)
class Bullet:
    """A message waiting to be sent, with whom it replies to."""

    msg: str
    reply: ReplyInfo | None = None


def split_message(msg: str, length: int) -> list[str]:
    """Cut a message into pieces of at most `length` characters."""
    if length <= 0:
        raise ValueError(f"message length must be positive, got {length}")
    return [msg[start:start + length] for start in range(0, len(msg), length)]


def split_robot_reply(content: str, robot_name: str) -> list[str]:
    """Rename the robot, drop face codes and split the reply on {br}."""
    content = content.replace("菲菲", robot_name)
    content = _FACE.sub("", content)
    return content.split("{br}")


class BulletSender:
    """Sends queued messages to the room, split to the configured length."""

    def __init__(
        self,
        svc: ServiceContext,
        *,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.svc = svc
        self.interval = interval
        self._sleep = sleep

    def push(self, msg: str, reply: ReplyInfo | None = None) -> None:
        """Queue a message for sending."""
        self.svc.push_bullet(msg, reply)

    def send_now(self, bullet: Bullet) -> None:
        """Send every piece of one message, pausing between pieces."""
        session = self.svc.session
        if session is None:
            log.error("弹幕发送失败：未登录 msg: %s", bullet.msg)
            return
        for piece in split_message(bullet.msg, self.svc.config.danmu_len):
            if session.send(piece, self.svc.config.room_id, bullet.reply):
                log.info("弹幕发送成功：%s", piece)
            else:
                log.error("弹幕发送失败 msg: %s", piece)
            self._sleep(self.interval)

    def run(self, stop: threading.Event) -> None:
        """Send queued messages until `stop` is set."""
        while not stop.is_set():
            try:
                msg, reply = self.svc.outbox.get(timeout=_POLL)
            except queue.Empty:
                continue
            self.send_now(Bullet(msg, reply))


class BulletRobot:
    """Answers chat requests through the configured robot backend."""

    def __init__(
        self,
        svc: ServiceContext,
        *,
        chatgpt: Callable[[str, Config], str] = chatgpt_reply,
        qingyunke: Callable[[str], str] = qingyunke_reply,
    ):
        self.svc = svc
        self._chatgpt = chatgpt
        self._qingyunke = qingyunke
        self._queue: queue.Queue[Bullet] = queue.Queue(QUEUE_SIZE)

    def push(self, content: str, reply: ReplyInfo | None = None) -> None:
        """Queue a question for the robot."""
        log.info("PushToBulletRobot成功：%s", content)
        self._queue.put(Bullet(content, reply))

    def handle(self, bullet: Bullet) -> None:
        """Ask the robot and queue its answer."""
        config = self.svc.config
        try:
            if config.robot_mode == "ChatGPT":
                answer = self._chatgpt(bullet.msg, config)
            else:
                answer = self._qingyunke(bullet.msg)
        except ApiError as exc:
            log.error("请求机器人失败：%s", exc)
            self.svc.push_bullet(ROBOT_BROKEN, bullet.reply)
            return
        if config.robot_mode == "ChatGPT":
            self.svc.push_bullet(answer, bullet.reply)
            log.info("机器人回复：%s", answer)
            return
        for part in split_robot_reply(answer, config.robot_name):
            self.svc.push_bullet(part, bullet.reply)

    def run(self, stop: threading.Event) -> None:
        """Answer queued questions until `stop` is set."""
        while not stop.is_set():
            try:
                bullet = self._queue.get(timeout=_POLL)
            except queue.Empty:
                continue
            self.handle(bullet)


@dataclass
class InteractMessage:
    """A welcome or thanks message addressed to one user."""

    uid: int
    msg: str
    reply: ReplyInfo | None = None


class InteractGate:
    """Passes welcomes on, dropping repeats for the same user within a window."""

    def __init__(
        self,
        svc: ServiceContext,
        *,
        window: float = INTERACT_WINDOW,
        clock: Callable[[], float] = time.time,
    ):
        self.svc = svc
        self.window = window
        self._clock = clock
        self._seen: dict[int, float] = {}
        self._lock = threading.Lock()
        self._queue: queue.Queue[InteractMessage] = queue.Queue(QUEUE_SIZE)

    def push(self, item: InteractMessage) -> None:
        """Queue a welcome."""
        self._queue.put(item)

    def handle(self, item: InteractMessage, now: float | None = None) -> bool:
        """Queue the welcome's lines unless the user was welcomed recently; True if queued."""
        now = self._clock() if now is None else now
        with self._lock:
            last = self._seen.get(item.uid)
            if last is not None and int(last + self.window) >= int(now):
                log.debug("用户 %s 10秒内重复欢迎已被过滤", item.uid)
                return False
            for line in item.msg.split("\n"):
                if self.svc.config.welcome_use_at:
                    item.reply = ReplyInfo(str(item.uid))
                    self.svc.push_bullet(line, item.reply)
                else:
                    self.svc.push_bullet(line)
                log.debug(line)
            self._seen[item.uid] = now
        log.debug("用户%s 已进入重复过滤列表", item.uid)
        return True

    def prune(self, now: float | None = None) -> None:
        """Forget users whose window has passed."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [uid for uid, seen in self._seen.items() if int(seen + self.window) < int(now)]
            for uid in expired:
                del self._seen[uid]
                log.debug("用户 %s 已从重复过滤列表移除", uid)

    def run(self, stop: threading.Event) -> None:
        """Handle queued welcomes and prune the filter until `stop` is set."""
        next_prune = self._clock() + self.window
        while not stop.is_set():
            wait = min(_POLL, max(0.0, next_prune - self._clock()))
            try:
                item = self._queue.get(timeout=wait)
            except queue.Empty:
                item = None
            if item is not None:
                self.handle(item)
            if self._clock() >= next_prune:
                self.prune()
                next_prune = self._clock() + self.window