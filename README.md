# danmubot

A library for a live-streaming room chat bot. Given the room's events,
it reacts in chat:

- welcomes viewers as they enter, with per-user greetings, time-of-day
  greetings, name blacklists and a ten-second repeat filter per user;
- thanks for follows, shares, guard purchases and red pockets;
- batches gifts per sender and thanks them once no gift has arrived for
  `ThanksGiftTimeout` seconds, reporting blind-box profit and loss;
- pauses welcomes while a lottery or red pocket is running and restores
  them afterwards;
- announces the opponent's crew and ranking when a PK battle starts;
- answers chat commands: sign-in (`签到` / `打卡`), draw a lot (`抽签`),
  message counts (`查询弹幕`), monthly blind-box stats (`X月盲盒`),
  configured keyword replies, `@帮助`, and the anchor's `关闭欢迎弹幕` /
  `开启欢迎弹幕`;
- passes chat that carries the configured keyword to a chat robot (the
  free Qingyunke service or a ChatGPT-compatible chat-completions API);
- sends scheduled messages on cron expressions (five or six fields,
  `@daily`-style descriptors and `@every <duration>`).

Sign-in, message-count and blind-box records are kept in a local SQLite
database, one set of tables per room (`danmubot.store`).

Install with `pip install .`; the test suite needs the `test` extra.

## Configuration

Settings live in a YAML file whose keys are the setting names of
`danmubot.config.Config` (for example `RoomId`, `DanmuLen`,
`InteractWord`, `WelcomeDanmu`, `ThanksGift`, `CronDanmuList`). Keys
match case-insensitively, anything left out takes its default, and
`$VAR` / `${VAR}` references are replaced from the environment before
the file is read.

```python
from danmubot.config import load_config, save_config

config = load_config("etc/bilidanmaku-api.yaml")
config.thanks_gift = True
save_config(config, "etc/bilidanmaku-api.yaml")
```

`config_from_dict` and `config_to_dict` convert to and from plain
mappings.

## Signing in

The bot uses a saved session: a `token` directory holding
`bili_token.txt` (the cookie string) and `bili_token.json` (the same
cookies as a JSON object). `danmubot.api.load_session` restores it and
`session_exists` checks for it. To create the files,
`BiliSession.login_url()` returns the QR login's `url` and `qrcode_key`,
and `BiliSession.poll_login(qrcode_key, "token")` waits until the login
is confirmed and writes both files. Showing the URL as a QR code is up
to the caller.

## Running the bot

```python
from danmubot.bot import Bot, load_service

svc = load_service("etc/bilidanmaku-api.yaml", "token")
bot = Bot(svc)
bot.start()
bot.dispatch("DANMU_MSG", raw_json)   # feed each room event
bot.stop()
```

`load_service` reads the configuration, restores the saved session
(raising `danmubot.api.ApiError` when it is missing or has no
`DedeUserID` cookie), opens the database and looks up the room's
anchor. `Bot.start()` runs the sender, robot, chat, welcome, gift and
PK workers and the cron schedule in background threads and sends
`EntryMsg` unless it is `off`. `Bot.dispatch(cmd, raw)` hands one event
to its handler and returns `False` for commands the bot ignores.
`Bot.reload(config)` switches to a new configuration, looking up the
new anchor when the room id changed and reloading the schedule when it
changed. `Bot.say_goodbye()` posts `GoodbyeInfo` split to `DanmuLen`,
and `Bot.stop()` stops the workers.

## Smaller pieces

```python
from danmubot.packet import new_heartbeat_packet, decode_packet
from danmubot.sender import split_message
from danmubot.welcome import short_name

packet = decode_packet(new_heartbeat_packet())
split_message("a long message that needs several posts", 20)
short_name("a rather long nickname", 3, 20)
```

- `danmubot.packet` – the binary frame format of the event stream:
  building frames, decoding them and unpacking zlib or brotli batches.
- `danmubot.sender` – message splitting, the rate-limited sender, the
  chat robot worker and the welcome repeat filter.
- `danmubot.welcome`, `danmubot.events`, `danmubot.danmu`,
  `danmubot.commands` – the handlers for each kind of event and command.
- `danmubot.thanks` and `danmubot.pk` – gift batching and PK reports.
- `danmubot.store` – the SQLite models.

## What it does not do

The package does not connect to the room's websocket: there is no
client that opens the connection, sends the enter and heartbeat frames
and reads events. `danmubot.packet` builds and decodes those frames,
but the caller must run the connection and pass each event's command
and JSON body to `Bot.dispatch`. There is also no command-line program;
the bot is used from Python.