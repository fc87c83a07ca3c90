"""Bot configuration: defaults, dictionary conversion and YAML files."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import yaml

ROBOT_MODES = ("QingYunKe", "ChatGPT")

DEFAULT_PROMPT = "你是一个非常幽默的机器人助理，可以使用emoji表情符号，可以使用颜文字"

DEFAULT_DRAW_LOTS = [
    "恭喜您抽到吉签，好运常伴，心想事成！",
    "恭喜您获得上上签，一帆风顺，万事如意！",
    "喜获佳签，吉星高照，未来可期！",
    "抽到福签，福运亨通，好事连连！",
    "吉签在手，好运相随，笑口常开！",
    "恭喜您抽中好签，好运不断，步步高升！",
    "喜得吉签，好运自来，前程似锦！",
    "抽到吉签啦，事事顺心，幸福安康！",
    "恭喜您抽中如意签，心想事成，万事如意！",
    "喜获吉祥签，好运连连，快乐无边！",
    "抽到小凶签，近期小心行事。",
    "遗憾，下签，请保持警惕。",
    "不吉之签，需谨慎处理。",
    "抽到凶签，冷静应对挑战。",
    "抽到稍逊签，行事需谨慎。",
    "抽到小凶签，请留意周围事物。",
    "抽到下签，调整心态面对。",
    "运势不佳，努力克服困难。",
    "抽到下下签，但也请信心面对未来。",
    "我是签，抽我抽我",
]


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"expected a boolean, got {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValueError(f"expected an integer, got {value!r}")


def _to_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (Mapping, list, tuple)):
        raise ValueError(f"expected a string, got {value!r}")
    return str(value)


def _as_list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [value]
    raise ValueError(f"expected a list, got {value!r}")


def _to_str_list(value: Any) -> list[str]:
    return [_to_str(item) for item in _as_list(value)]


def _to_str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        raise ValueError(f"expected a mapping, got {value!r}")
    return {_to_str(k): _to_str(v) for k, v in value.items()}


def _to_mapping(value: Any) -> dict:
    if not isinstance(value, Mapping):
        raise ValueError(f"expected a mapping, got {value!r}")
    return dict(value)


def _opt(key: str, conv: Callable[[Any], Any], default: Any = None, factory: Callable[[], Any] | None = None):
    meta = {"key": key, "conv": conv}
    if factory is not None:
        return field(default_factory=factory, metadata=meta)
    return field(default=default, metadata=meta)


def _from_mapping(cls, data: Any):
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"expected a mapping for {cls.__name__}, got {data!r}")
    lowered = {str(k).lower(): v for k, v in data.items()}
    kwargs = {}
    for f in fields(cls):
        value = lowered.get(f.metadata["key"].lower())
        if value is not None:
            kwargs[f.name] = f.metadata["conv"](value)
    return cls(**kwargs)


def _nested(cls) -> Callable[[Any], Any]:
    return lambda value: _from_mapping(cls, value)


def _nested_list(cls) -> Callable[[Any], list]:
    return lambda value: [_from_mapping(cls, item) for item in _as_list(value)]


def _dump(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.metadata["key"]: _dump(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


@dataclass
class ChatGPTConfig:
    """Settings of the OpenAI-compatible chat backend."""

    api_url: str = _opt("APIUrl", _to_str, "https://api.openai.com/v1")
    api_token: str = _opt("APIToken", _to_str, "")
    prompt: str = _opt("Prompt", _to_str, DEFAULT_PROMPT)
    limit: bool = _opt("Limit", _to_bool, True)
    model: str = _opt("Model", _to_str, "gpt-3.5-turbo")


@dataclass
class WelcomeByTime:
    """Welcome messages used during one period of the day."""

    enabled: bool = _opt("Enabled", _to_bool, False)
    key: str = _opt("Key", _to_str, "")
    random: bool = _opt("Random", _to_bool, False)
    danmu: list[str] = _opt("Danmu", _to_str_list, factory=list)


@dataclass
class CronDanmu:
    """A scheduled list of messages."""

    cron: str = _opt("Cron", _to_str, "")
    random: bool = _opt("Random", _to_bool, False)
    danmu: list[str] = _opt("Danmu", _to_str_list, factory=list)


@dataclass
class Config:
    """All settings of the bot."""

    log: dict = _opt("Log", _to_mapping, factory=dict)

    room_id: int = _opt("RoomId", _to_int, 4699397)
    ws_server_url: str = _opt("WsServerUrl", _to_str, "wss://broadcastlv.chat.bilibili.com:2245/sub")

    danmu_len: int = _opt("DanmuLen", _to_int, 20)
    entry_msg: str = _opt("EntryMsg", _to_str, "off")
    pk_notice: bool = _opt("PKNotice", _to_bool, True)
    show_block_msg: bool = _opt("ShowBlockMsg", _to_bool, False)
    goodbye_info: str = _opt("GoodbyeInfo", _to_str, "")

    keyword_reply: bool = _opt("KeywordReply", _to_bool, False)
    keyword_reply_list: dict[str, str] = _opt("KeywordReplyList", _to_str_map, factory=dict)

    talk_robot_cmd: str = _opt("TalkRobotCmd", _to_str, "test")
    fuzzy_match_cmd: bool = _opt("FuzzyMatchCmd", _to_bool, False)
    robot_name: str = _opt("RobotName", _to_str, "花花")
    robot_mode: str = _opt("RobotMode", _to_str, "QingYunKe")
    chatgpt: ChatGPTConfig = _opt("ChatGPT", _nested(ChatGPTConfig), factory=ChatGPTConfig)

    interact_word: bool = _opt("InteractWord", _to_bool, False)
    welcome_use_at: bool = _opt("WelcomeUseAt", _to_bool, False)
    welcome_danmu: list[str] = _opt("WelcomeDanmu", _to_str_list, factory=lambda: ["欢迎 {user} ~"])
    interact_word_by_time: bool = _opt("InteractWordByTime", _to_bool, False)
    welcome_danmu_by_time: list[WelcomeByTime] = _opt(
        "WelcomeDanmuByTime", _nested_list(WelcomeByTime), factory=list
    )
    entry_effect: bool = _opt("EntryEffect", _to_bool, False)
    welcome_high_wealthy: bool = _opt("WelcomeHighWealthy", _to_bool, False)
    welcome_high_wealthy_level: int = _opt("WelcomeHighWealthyLevel", _to_int, 20)
    thanks_focus: bool = _opt("ThanksFocus", _to_bool, False)
    thanks_share: bool = _opt("ThanksShare", _to_bool, False)
    interact_self: bool = _opt("InteractSelf", _to_bool, True)
    interact_anchor: bool = _opt("InteractAnchor", _to_bool, True)
    focus_danmu: list[str] = _opt("FocusDanmu", _to_str_list, factory=list)
    welcome_switch: bool = _opt("WelcomeSwitch", _to_bool, False)
    welcome_string: dict[str, str] = _opt("WelcomeString", _to_str_map, factory=dict)
    welcome_blacklist_wide: list[str] = _opt("WelcomeBlacklistWide", _to_str_list, factory=list)
    welcome_blacklist: list[str] = _opt("WelcomeBlacklist", _to_str_list, factory=list)

    thanks_gift: bool = _opt("ThanksGift", _to_bool, False)
    thanks_gift_timeout: int = _opt("ThanksGiftTimeout", _to_int, 3)
    thanks_blind_box_timeout: int = _opt("ThanksBlindBoxTimeout", _to_int, 6)
    thanks_min_cost: int = _opt("ThanksMinCost", _to_int, 0)
    blind_box_profit_loss_stat: bool = _opt("BlindBoxProfitLossStat", _to_bool, True)
    thanks_gift_use_at: bool = _opt("ThanksGiftUseAt", _to_bool, False)

    cron_danmu: bool = _opt("CronDanmu", _to_bool, False)
    cron_danmu_list: list[CronDanmu] = _opt("CronDanmuList", _nested_list(CronDanmu), factory=list)

    draw_by_lot: bool = _opt("DrawByLot", _to_bool, True)
    draw_lots_list: list[str] = _opt("DrawLotsList", _to_str_list, factory=lambda: list(DEFAULT_DRAW_LOTS))

    sign_in_enable: bool = _opt("SignInEnable", _to_bool, True)
    danmu_cnt_enable: bool = _opt("DanmuCntEnable", _to_bool, False)
    blind_box_stat: bool = _opt("BlindBoxStat", _to_bool, True)
    db_path: str = _opt("DBPath", _to_str, "./db")
    db_name: str = _opt("DBName", _to_str, "sqliteDataBase.db")

    customize_bullet: bool = _opt("CustomizeBullet", _to_bool, False)

    lottery_enable: bool = _opt("LotteryEnable", _to_bool, True)
    lottery_url: str = _opt("LotteryUrl", _to_str, "")

    def __post_init__(self) -> None:
        if self.robot_mode not in ROBOT_MODES:
            raise ValueError(
                f"RobotMode must be one of {', '.join(ROBOT_MODES)}, got {self.robot_mode!r}"
            )


def config_from_dict(data: Mapping[str, Any] | None) -> Config:
    """Build a config from a mapping; keys match case-insensitively, missing ones take defaults."""
    return _from_mapping(Config, data)


def config_to_dict(config: Config) -> dict[str, Any]:
    """The config as a plain mapping keyed by setting names."""
    return _dump(config)


_ENV_REF = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def _expand_env(text: str) -> str:
    return _ENV_REF.sub(lambda m: os.environ.get(m.group(1) or m.group(2), ""), text)


def load_config(path: str | os.PathLike) -> Config:
    """Read a YAML config file, expanding environment references first."""
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(_expand_env(text)) or {}
    return config_from_dict(data)


def save_config(config: Config, path: str | os.PathLike) -> None:
    """Write the config as YAML, creating the directory if needed."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    text = yaml.safe_dump(config_to_dict(config), allow_unicode=True, sort_keys=False)
    target.write_text(text, encoding="utf-8")