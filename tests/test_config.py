import dataclasses

import pytest

from danmubot.config import (
    ChatGPTConfig,
    Config,
    CronDanmu,
    WelcomeByTime,
    config_from_dict,
    config_to_dict,
    load_config,
    save_config,
)


def test_defaults():
    config = Config()
    assert config.room_id == 4699397
    assert config.ws_server_url == "wss://broadcastlv.chat.bilibili.com:2245/sub"
    assert config.danmu_len == 20
    assert config.entry_msg == "off"
    assert config.robot_mode == "QingYunKe"
    assert config.robot_name == "花花"
    assert config.welcome_danmu == ["欢迎 {user} ~"]
    assert config.chatgpt.model == "gpt-3.5-turbo"
    assert config.chatgpt.api_url == "https://api.openai.com/v1"
    assert config.welcome_high_wealthy_level == 20
    assert config.thanks_gift_timeout == 3
    assert config.thanks_blind_box_timeout == 6
    assert config.db_path == "./db"
    assert config.db_name == "sqliteDataBase.db"
    assert config.draw_lots_list[0] == "恭喜您抽到吉签，好运常伴，心想事成！"
    assert config.draw_lots_list[-1] == "我是签，抽我抽我"
    assert config.sign_in_enable is True
    assert config.pk_notice is True


def test_empty_mapping_gives_defaults():
    assert config_from_dict({}) == Config()
    assert config_from_dict(None) == Config()


def test_dict_round_trip_with_nested():
    config = Config(
        room_id=123,
        chatgpt=ChatGPTConfig(api_token="token", limit=False),
        welcome_danmu_by_time=[WelcomeByTime(enabled=True, key="night", danmu=["晚上好 {user}"])],
        cron_danmu_list=[CronDanmu(cron="*/5 * * * *", random=True, danmu=["a", "b"])],
        keyword_reply_list={"你好": "你也好"},
    )
    assert config_from_dict(config_to_dict(config)) == config


def test_to_dict_uses_setting_names():
    data = config_to_dict(Config())
    assert data["RoomId"] == 4699397
    assert data["ChatGPT"]["APIUrl"] == "https://api.openai.com/v1"
    assert data["PKNotice"] is True


def test_keys_are_case_insensitive():
    config = config_from_dict(
        {"roomid": 77, "danmulen": 30, "chatgpt": {"apitoken": "token"}, "cronDanmuList": [{"cron": "0 * * * *"}]}
    )
    assert config.room_id == 77
    assert config.danmu_len == 30
    assert config.chatgpt.api_token == "token"
    assert config.cron_danmu_list == [CronDanmu(cron="0 * * * *")]


def test_invalid_robot_mode_raises():
    with pytest.raises(ValueError):
        config_from_dict({"RobotMode": "Other"})


def test_invalid_bool_raises():
    with pytest.raises(ValueError):
        config_from_dict({"PKNotice": [1]})


def test_single_string_becomes_list():
    assert config_from_dict({"WelcomeDanmu": "欢迎 {user} ~"}).welcome_danmu == ["欢迎 {user} ~"]


def test_write_modify_reload(tmp_path):
    path = tmp_path / "etc" / "bilidanmaku-api.yaml"
    save_config(Config(), path)
    config = load_config(path)

    changed = dataclasses.replace(config, sign_in_enable=False, room_id=4699397, cron_danmu=False)
    save_config(changed, path)
    reloaded = load_config(path)
    assert reloaded.room_id == 4699397
    assert reloaded.sign_in_enable is False
    assert reloaded.cron_danmu is False

    changed.sign_in_enable = True
    save_config(changed, path)
    assert load_config(path).sign_in_enable is True
    assert load_config(path) == changed


def test_env_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("DANMU_ROOM", "555")
    path = tmp_path / "conf.yaml"
    path.write_text("RoomId: ${DANMU_ROOM}\nEntryMsg: $MISSING_VARIABLE_X\n", encoding="utf-8")
    config = load_config(path)
    assert config.room_id == 555
    assert config.entry_msg == "off"


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")