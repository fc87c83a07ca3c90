"""The running bot: its workers, scheduled messages and configuration reloads."""

from __future__ import annotations

import datetime
import logging
import random
import re
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .api import ApiError, load_session, session_exists
from .config import Config, CronDanmu, load_config
from .context import ServiceContext, create_service_context
from .danmu import DanmuWorker
from .events import EventRouter
from .pk import PkWatcher
from .sender import BulletRobot, BulletSender, InteractGate, split_message
from .thanks import GiftThanker

log = logging.getLogger(__name__)

CONFIG_PATH = "etc/bilidanmaku-api.yaml"
TOKEN_DIR = "token"
_SECOND = datetime.timedelta(seconds=1)
_MAX_CATCH_UP = 60

_MONTHS = {name: i for i, name in enumerate(
    ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], 1)}
_DOWS = {name: i for i, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}
_FIELDS = [(0, 59, {}), (0, 59, {}), (0, 23, {}), (1, 31, {}), (1, 12, _MONTHS), (0, 6, _DOWS)]
_DESCRIPTORS = {
    "@yearly": "0 0 0 1 1 *",
    "@annually": "0 0 0 1 1 *",
    "@monthly": "0 0 0 1 * *",
    "@weekly": "0 0 0 * * 0",
    "@daily": "0 0 0 * * *",
    "@midnight": "0 0 0 * * *",
    "@hourly": "0 0 * * * *",
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "μs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}


def _field_value(text: str, names: dict[str, int]) -> int:
    lowered = text.lower()
    if lowered in names:
        return names[lowered]
    return int(text)


def _parse_field(expr: str, low: int, high: int, names: dict[str, int]) -> tuple[frozenset[int], bool]:
    values: set[int] = set()
    star = False
    for part in expr.split(","):
        range_part, slash, step_text = part.partition("/")
        step = int(step_text) if slash else 1
        if step <= 0:
            raise ValueError(f"step must be positive: {part}")
        if range_part in ("*", "?"):
            start, end = low, high
            if step == 1:
                star = True
        else:
            first, dash, last = range_part.partition("-")
            start = _field_value(first, names)
            if dash:
                end = _field_value(last, names)
            else:
                end = high if slash else start
        if start < low or end > high or start > end:
            raise ValueError(f"value out of range in {part!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values), star


@dataclass
class _CronSpec:
    seconds: frozenset[int]
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    days_star: bool
    weekdays_star: bool

    def due(self, moment: datetime.datetime) -> bool:
        if (
            moment.second not in self.seconds
            or moment.minute not in self.minutes
            or moment.hour not in self.hours
            or moment.month not in self.months
        ):
            return False
        dom = moment.day in self.days
        dow = (moment.weekday() + 1) % 7 in self.weekdays
        if self.days_star or self.weekdays_star:
            return dom and dow
        return dom or dow


@dataclass
class _Every:
    interval: datetime.timedelta
    next_run: datetime.datetime | None = None

    def due(self, moment: datetime.datetime) -> bool:
        if self.next_run is None:
            self.next_run = moment + self.interval
            return False
        if moment >= self.next_run:
            self.next_run = moment + self.interval
            return True
        return False


def _parse_duration(text: str) -> datetime.timedelta:
    pos, total = 0, 0.0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration: {text!r}")
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if not text:
        raise ValueError("empty duration")
    return datetime.timedelta(seconds=max(1, int(total)))


def _parse_schedule(spec: str) -> _CronSpec | _Every:
    spec = spec.strip()
    if not spec:
        raise ValueError("empty cron spec")
    if spec.startswith("@every "):
        return _Every(_parse_duration(spec[len("@every "):].strip()))
    if spec.startswith("@"):
        if spec not in _DESCRIPTORS:
            raise ValueError(f"unknown descriptor: {spec}")
        spec = _DESCRIPTORS[spec]
    fields = spec.split()
    if len(fields) == 5:
        fields.insert(0, "0")
    if len(fields) != 6:
        raise ValueError(f"expected 5 or 6 fields, found {len(fields)}: {spec}")
    parsed = [_parse_field(expr, low, high, names) for expr, (low, high, names) in zip(fields, _FIELDS)]
    return _CronSpec(
        seconds=parsed[0][0],
        minutes=parsed[1][0],
        hours=parsed[2][0],
        days=parsed[3][0],
        months=parsed[4][0],
        weekdays=parsed[5][0],
        days_star=parsed[3][1],
        weekdays_star=parsed[5][1],
    )


@dataclass
class _CronJob:
    index: int
    schedule: _CronSpec | _Every


def cron_lists_equal(a: Sequence[CronDanmu], b: Sequence[CronDanmu]) -> bool:
    """Whether two scheduled-message lists hold the same entries in the same order."""
    if len(a) != len(b):
        return False
    return all(x == y for x, y in zip(a, b))


def load_service(config_path: str | Path = CONFIG_PATH, token_dir: str | Path = TOKEN_DIR) -> ServiceContext:
    """Load the configuration and the saved login and set up the service context."""
    Path(token_dir).mkdir(parents=True, exist_ok=True)
    config = load_config(config_path)
    db_dir = Path(config.db_path)
    try:
        db_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        log.error("文件夹创建失败：%s", config.db_path)
        raise
    if not session_exists(token_dir):
        log.error("用户登录失败")
        raise ApiError("用户登录失败")
    session = load_session(token_dir)
    log.info("用户登录成功")
    uid = session.cookies.get("DedeUserID")
    if uid is None:
        log.info("uid加载失败，请重新登录")
        raise ApiError("uid加载失败，请重新登录")
    svc = create_service_context(config, session)
    svc.robot_id = uid
    try:
        svc.user_id = int(session.room_init(config.room_id).get("uid", 0) or 0)
    except ApiError as exc:
        log.error("%s", exc)
    return svc


class Bot:
    """All workers of one room, fed by `dispatch` with the room's events."""

    def __init__(self, svc: ServiceContext, *, sleep: Callable[[float], None] = time.sleep):
        self.svc = svc
        self._sleep = sleep
        self.sender = BulletSender(svc, sleep=sleep)
        self.robot = BulletRobot(svc)
        self.danmu = DanmuWorker(svc, self.robot)
        self.interact = InteractGate(svc)
        self.thanks = GiftThanker(svc)
        self.pk = PkWatcher(svc)
        self.router = EventRouter(
            svc, interact=self.interact, danmu=self.danmu, thanks=self.thanks, pk=self.pk
        )
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._cron_lock = threading.Lock()
        self._cron_jobs: list[_CronJob] = []
        self._cron_counters: dict[int, int] = {}

    def _load_cron_jobs(self) -> None:
        jobs = []
        config = self.svc.config
        if config.cron_danmu:
            for index, entry in enumerate(config.cron_danmu_list):
                if not entry.danmu:
                    continue
                try:
                    jobs.append(_CronJob(index, _parse_schedule(entry.cron)))
                except ValueError as exc:
                    log.error("第%d条定时弹幕配置出现错误: %s", index + 1, exc)
        with self._cron_lock:
            self._cron_jobs = jobs

    def next_cron_message(self, index: int) -> str | None:
        """The next message of scheduled entry `index`, random or in turn."""
        entries = self.svc.config.cron_danmu_list
        if not 0 <= index < len(entries):
            return None
        entry = entries[index]
        if not entry.danmu:
            return None
        if entry.random:
            return random.choice(entry.danmu)
        with self._cron_lock:
            count = self._cron_counters.get(index, 0) + 1
            self._cron_counters[index] = count
        return entry.danmu[count % len(entry.danmu)]

    def _fire_due(self, moment: datetime.datetime) -> None:
        with self._cron_lock:
            jobs = list(self._cron_jobs)
        for job in jobs:
            if job.schedule.due(moment):
                msg = self.next_cron_message(job.index)
                if msg:
                    self.svc.push_bullet(msg)

    def _cron_loop(self, stop: threading.Event) -> None:
        last = datetime.datetime.now().replace(microsecond=0)
        while not stop.wait(1.0 - time.time() % 1.0):
            now = datetime.datetime.now().replace(microsecond=0)
            moment = last + _SECOND
            if now - last > _SECOND * _MAX_CATCH_UP:
                moment = now
            while moment <= now:
                self._fire_due(moment)
                moment += _SECOND
            last = now

    def start(self) -> None:
        """Start every worker and send the entry message."""
        self._stop = threading.Event()
        workers = [self.sender, self.robot, self.danmu, self.interact, self.thanks, self.pk]
        self._threads = [
            threading.Thread(target=worker.run, args=(self._stop,), daemon=True) for worker in workers
        ]
        self._load_cron_jobs()
        self._threads.append(threading.Thread(target=self._cron_loop, args=(self._stop,), daemon=True))
        for thread in self._threads:
            thread.start()
        log.info("弹幕机器人已开启")
        config = self.svc.config
        if config.entry_msg != "off" and self.svc.session is not None:
            self.svc.session.send(config.entry_msg, config.room_id)

    def stop(self) -> None:
        """Stop every worker and drop the scheduled messages."""
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []
        with self._cron_lock:
            self._cron_jobs = []

    def say_goodbye(self) -> None:
        """Send the goodbye message directly, split to the message length."""
        config = self.svc.config
        session = self.svc.session
        if not config.goodbye_info or session is None:
            return
        for piece in split_message(config.goodbye_info, config.danmu_len):
            if not session.send(piece, config.room_id):
                log.error("下播弹幕发送失败 msg: %s", piece)
            self._sleep(1.0)

    def reload(self, config: Config) -> None:
        """Switch to a new configuration, following room and schedule changes."""
        old = self.svc.config
        self.svc.config = config
        if config.room_id != old.room_id:
            log.info("房间号更改，更换房间号 ：%s", config.room_id)
            if self.svc.session is not None:
                try:
                    self.svc.user_id = int(self.svc.session.room_init(config.room_id).get("uid", 0) or 0)
                except ApiError as exc:
                    log.error("%s", exc)
        if config.cron_danmu != old.cron_danmu or not cron_lists_equal(
            config.cron_danmu_list, old.cron_danmu_list
        ):
            log.info("识别到定时弹幕配置发生变化，重新加载")
            self._load_cron_jobs()

    def dispatch(self, cmd: str, raw: str | bytes) -> bool:
        """Hand one room event to its handler; False when it is not handled."""
        return self.router.dispatch(cmd, raw)