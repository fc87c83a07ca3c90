"""Shared state of a running bot."""

from __future__ import annotations

import logging
import queue
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from .api import BiliSession, ReplyInfo
from .config import Config
from .store import BlindBoxStatModel, DanmuCountModel, SignInModel, open_database

log = logging.getLogger(__name__)

OUTBOX_SIZE = 1000


@dataclass
class AutoInteract:
    """Welcome switches to restore after a lottery or red pocket ends."""

    entry_effect: bool = False
    welcome_high_wealthy: bool = False
    interact_word: bool = False


@dataclass
class ServiceContext:
    """Configuration, account, storage and the queue of messages to send."""

    config: Config
    session: BiliSession | None = None
    sign_in_model: SignInModel | None = None
    danmu_cnt_model: DanmuCountModel | None = None
    blind_box_stat_model: BlindBoxStatModel | None = None
    db: sqlite3.Connection | None = None
    user_id: int = 0
    robot_id: str = ""
    auto_interact: AutoInteract = field(default_factory=AutoInteract)
    other_side_uid: set[int] = field(default_factory=set)
    outbox: queue.Queue = field(default_factory=lambda: queue.Queue(OUTBOX_SIZE))

    def push_bullet(self, msg: str, reply: ReplyInfo | None = None) -> None:
        """Queue a message for the sender; blocks while the queue is full."""
        log.info("PushToBulletSender成功 %s", msg)
        self.outbox.put((msg, reply))


def create_service_context(config: Config, session: BiliSession | None = None) -> ServiceContext:
    """Open the database named by the config and set up the per-room tables."""
    db = open_database(Path(config.db_path) / config.db_name)
    return ServiceContext(
        config=config,
        session=session,
        sign_in_model=SignInModel(db, config.room_id),
        danmu_cnt_model=DanmuCountModel(db, config.room_id),
        blind_box_stat_model=BlindBoxStatModel(db, config.room_id),
        db=db,
    )