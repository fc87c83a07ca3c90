"""HTTP calls to the live platform and to the chat backends."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote_plus

import requests

from .config import Config

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

SEND_URL = "https://api.live.bilibili.com/msg/send"
ROOM_INIT_URL = "https://api.live.bilibili.com/room/v1/Room/room_init"
MASTER_INFO_URL = "https://api.live.bilibili.com/live_user/v1/Master/info"
TOP_LIST_URL = "https://api.live.bilibili.com/xlive/app-room/v2/guardTab/topList"
RANK_LIST_URL = "https://api.live.bilibili.com/xlive/general-interface/v1/rank/getOnlineGoldRank"
DANMU_INFO_URL = "https://api.live.bilibili.com/xlive/web-room/v1/index/getDanmuInfo"
LOGIN_URL = "https://passport.bilibili.com/x/passport-login/web/qrcode/generate"
LOGIN_POLL_URL = "https://passport.bilibili.com/x/passport-login/web/qrcode/poll"
QINGYUNKE_URL = "http://api.qingyunke.com/api.php"

TOKEN_TEXT = "bili_token.txt"
TOKEN_JSON = "bili_token.json"

ROOM_NOT_FOUND = 60004
LOGIN_EXPIRED = 86038
SEND_ATTEMPTS = 3
TIMEOUT = 10

_FULLWIDTH_QUESTION = "\uff1f"


class ApiError(Exception):
    """A remote call failed or answered with an error."""


@dataclass(frozen=True)
class ReplyInfo:
    """Whom a sent message replies to."""

    reply_uid: str
    reply_msg_id: str = ""


def _request_json(client: Any, method: str, url: str, **kwargs: Any) -> tuple[requests.Response, Any]:
    kwargs.setdefault("timeout", TIMEOUT)
    try:
        resp = client.request(method, url, **kwargs)
    except requests.RequestException as exc:
        log.error("请求失败：%s %s", url, exc)
        raise ApiError(f"request to {url} failed: {exc}") from exc
    try:
        body = resp.json()
    except ValueError as exc:
        log.error("Unmarshal失败：%s body:%s", exc, resp.text)
        raise ApiError(f"invalid JSON from {url}") from exc
    return resp, body


def _expect_dict(body: Any, url: str) -> dict:
    if not isinstance(body, dict):
        raise ApiError(f"unexpected response from {url}: {body!r}")
    return body


def _data(body: dict) -> dict:
    data = body.get("data")
    return data if isinstance(data, dict) else {}


def _set_cookie_headers(resp: requests.Response) -> list[str]:
    raw_headers = getattr(resp.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        values = raw_headers.getlist("Set-Cookie")
        if values:
            return list(values)
    header = resp.headers.get("Set-Cookie")
    return [header] if header else []


def build_send_form(
    msg: str, room_id: int, csrf: str, rnd: int, reply: ReplyInfo | None = None
) -> dict[str, str]:
    """Form fields of a message-send request."""
    form = {
        "bubble": "5",
        "msg": msg,
        "color": "4546550",
        "fontsize": "25",
        "rnd": str(rnd),
    }
    if reply is not None:
        form["reply_mid"] = reply.reply_uid
        if reply.reply_msg_id:
            form["replay_dmid"] = reply.reply_msg_id
    form["roomid"] = str(room_id)
    form["csrf"] = csrf
    form["csrf_token"] = csrf
    return form


class BiliSession:
    """A logged-in account: its cookies and the calls made with them."""

    def __init__(
        self,
        cookie_str: str = "",
        cookies: dict[str, str] | None = None,
        *,
        http: requests.Session | None = None,
        retry_delay: float = 1.0,
        poll_interval: float = 5.0,
    ):
        self.cookie_str = cookie_str
        self.cookies: dict[str, str] = dict(cookies or {})
        self.http = http or requests.Session()
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval

    @property
    def csrf(self) -> str:
        return self.cookies.get("bili_jct", "")

    def _fetch(self, url: str, headers: dict[str, str] | None = None) -> tuple[requests.Response, dict]:
        merged = {"user-agent": USER_AGENT}
        merged.update(headers or {})
        resp, body = _request_json(self.http, "GET", url, headers=merged)
        return resp, _expect_dict(body, url)

    def send(self, msg: str, room_id: int, reply: ReplyInfo | None = None) -> bool:
        """Post one message to the room, retrying; True once the server accepted it."""
        form = build_send_form(msg, room_id, self.csrf, int(time.time()), reply)
        files = {name: (None, value) for name, value in form.items()}
        headers = {"Cookie": self.cookie_str, "user-agent": USER_AGENT}
        for attempt in range(1, SEND_ATTEMPTS + 1):
            try:
                resp = self.http.post(SEND_URL, files=files, headers=headers, timeout=TIMEOUT)
            except requests.RequestException as exc:
                log.error("请求send失败：%s", exc)
            else:
                try:
                    body = resp.json()
                except ValueError as exc:
                    log.error("send弹幕响应解析失败:%s", exc)
                    return True
                if not isinstance(body, dict):
                    log.error("send弹幕响应解析失败:%r", body)
                    return True
                if body.get("code", 0) == 0:
                    return True
                log.info("请求send失败:%s", body.get("msg", ""))
            if attempt < SEND_ATTEMPTS:
                time.sleep(self.retry_delay * 2 ** (attempt - 1))
        log.error("弹幕发送失败：%s", msg)
        return False

    def room_init(self, room_id: int) -> dict:
        """Basic room data (uid, live_status); empty when the server reports another error."""
        _, body = self._fetch(f"{ROOM_INIT_URL}?id={room_id}")
        code = body.get("code")
        if code == ROOM_NOT_FOUND:
            raise ApiError("房间号不存在")
        if code == 0:
            return _data(body)
        return {}

    def master_info(self, room_id: int) -> dict:
        """Profile of the room's anchor."""
        room = self.room_init(room_id)
        uid = room.get("uid", 0)
        _, body = self._fetch(f"{MASTER_INFO_URL}?uid={uid}")
        if body.get("code") != 0:
            log.error("直播间id %s 用户id %s 获取用户信息失败", room_id, uid)
            raise ApiError("获取用户信息失败")
        return _data(body)

    def top_list(self, room_id: int, user_id: int, page: int) -> dict:
        """One page of the room's guard list."""
        url = f"{TOP_LIST_URL}?page_size=29&roomid={room_id}&page={page}&ruid={user_id}"
        _, body = self._fetch(url)
        if body.get("code") != 0:
            log.error("直播间id %s 用户id %s 获取舰长列表失败", room_id, user_id)
            raise ApiError("获取舰长列表失败")
        return _data(body)

    def rank_list(self, room_id: int, user_id: int, page: int) -> dict:
        """One page of the room's online contribution ranking."""
        url = f"{RANK_LIST_URL}?ruid={user_id}&roomId={room_id}&page={page}&pageSize=50"
        _, body = self._fetch(url)
        if body.get("code") != 0:
            log.error("直播间id %s 用户id %s 获取高能列表失败", room_id, user_id)
            raise ApiError("获取高能列表失败")
        return _data(body)

    def danmu_token(self, room_id: int, buvid3: str, buvid4: str) -> dict:
        """Host list and token for the danmaku websocket."""
        cookie = self.cookie_str + f"buvid3={buvid3};" + f"buvid4={buvid4};"
        _, body = self._fetch(f"{DANMU_INFO_URL}?id={room_id}&type=0", {"Cookie": cookie})
        log.debug("%s", body)
        if body.get("code") != 0:
            message = str(body.get("message", ""))
            log.error(message)
            raise ApiError(message)
        return _data(body)

    def login_url(self) -> dict:
        """A fresh QR login: its url and qrcode_key."""
        _, body = self._fetch(LOGIN_URL)
        data = _data(body)
        log.info("oauthKey:%s", data.get("qrcode_key", ""))
        return data

    def poll_login(self, oauth_key: str, token_dir: str | Path = "token") -> dict:
        """Wait for the QR login to complete, keep its cookies and save them to token_dir."""
        url = f"{LOGIN_POLL_URL}?qrcode_key={oauth_key}"
        log.info("等待扫码登录...")
        while True:
            resp, body = self._fetch(url)
            if body.get("code") != 0:
                raise ApiError(str(body.get("message", "")))
            data = _data(body)
            if data.get("code") == 0:
                log.info("登录成功！")
                break
            if data.get("code") == LOGIN_EXPIRED:
                message = str(data.get("message", ""))
                log.error(message)
                raise ApiError(message)
            time.sleep(self.poll_interval)
        for header in _set_cookie_headers(resp):
            first = header.split(";")[0]
            parts = first.split("=")
            name = parts[0]
            if name not in self.cookies:
                self.cookies[name] = parts[1] if len(parts) > 1 else ""
                self.cookie_str += first + ";"
        self._save_tokens(token_dir)
        return data

    def _save_tokens(self, token_dir: str | Path) -> None:
        directory = Path(token_dir)
        directory.mkdir(parents=True, exist_ok=True)
        (directory / TOKEN_TEXT).write_text(self.cookie_str, encoding="utf-8")
        (directory / TOKEN_JSON).write_text(
            json.dumps(self.cookies, ensure_ascii=False), encoding="utf-8"
        )


def session_exists(token_dir: str | Path = "token") -> bool:
    """Whether both saved token files are present."""
    directory = Path(token_dir)
    return (directory / TOKEN_TEXT).exists() and (directory / TOKEN_JSON).exists()


def load_session(token_dir: str | Path = "token") -> BiliSession:
    """Restore a session from the saved token files."""
    directory = Path(token_dir)
    cookie_str = (directory / TOKEN_TEXT).read_text(encoding="utf-8")
    cookies = json.loads((directory / TOKEN_JSON).read_text(encoding="utf-8"))
    if not isinstance(cookies, dict):
        raise ValueError(f"{directory / TOKEN_JSON} does not hold a cookie mapping")
    return BiliSession(cookie_str, {str(k): str(v) for k, v in cookies.items()})


def encode_special_char(text: str) -> str:
    """Keep ASCII letters, digits and non-ASCII; query-escape other ASCII twice."""
    out = []
    for char in text:
        if char.isascii() and char.isalnum():
            out.append(char)
        elif char.isascii():
            out.append(quote_plus(quote_plus(char, safe=""), safe=""))
        else:
            out.append(char)
    return "".join(out)


def qingyunke_reply(msg: str) -> str:
    """Ask the free Qingyunke chat robot."""
    url = (
        f"{QINGYUNKE_URL}?key=free&appid=0&msg={encode_special_char(msg)}"
        f"&_={time.time_ns() // 1000}"
    )
    _, body = _request_json(requests, "GET", url, headers={"Content-Type": "utf-8"})
    body = _expect_dict(body, QINGYUNKE_URL)
    return str(body.get("content", ""))


def build_chatgpt_messages(msg: str, config: Config) -> list[dict[str, str]]:
    """System prompt and user message for a chat completion."""
    prompt = config.chatgpt.prompt
    if config.chatgpt.limit:
        prompt += f" 尽可能的在{config.danmu_len}个字内回答"
    return [
        {"role": "assistant", "content": prompt},
        {"role": "user", "content": msg},
    ]


def clean_chatgpt_text(text: str) -> str:
    """Drop one leading full-width question mark and every blank-line break."""
    if text.startswith(_FULLWIDTH_QUESTION):
        text = text[len(_FULLWIDTH_QUESTION):]
    return text.replace("\n\n", "")


def chatgpt_reply(msg: str, config: Config) -> str:
    """Ask the configured OpenAI-compatible endpoint and join its answers."""
    gpt = config.chatgpt
    url = gpt.api_url.rstrip("/") + "/chat/completions"
    payload = {"model": gpt.model, "messages": build_chatgpt_messages(msg, config)}
    headers = {"Authorization": f"Bearer {gpt.api_token}", "Content-Type": "application/json"}
    resp, body = _request_json(requests, "POST", url, json=payload, headers=headers)
    if resp.status_code >= 400 or not isinstance(body, dict):
        error = body.get("error") if isinstance(body, dict) else None
        detail = error.get("message") if isinstance(error, dict) else resp.text
        raise ApiError(f"chat completion failed ({resp.status_code}): {detail}")
    usage = body.get("usage") or {}
    log.info("本次开销：%s tokens", usage.get("total_tokens", 0))
    parts = []
    for choice in body.get("choices") or []:
        message = choice.get("message") or {}
        parts.append(clean_chatgpt_text(str(message.get("content", ""))))
    return "".join(parts)