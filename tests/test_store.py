import datetime

import pytest

from danmubot.store import (
    BlindBoxRecord,
    BlindBoxStatModel,
    BlindBoxTotal,
    DanmuCountModel,
    DanmuCountRecord,
    RecordNotFound,
    SignInModel,
    SignInRecord,
    open_database,
)

TODAY = datetime.date(2024, 3, 3)


@pytest.fixture
def conn():
    connection = open_database(":memory:")
    yield connection
    connection.close()


def test_open_database_creates_directory(tmp_path):
    path = tmp_path / "db" / "data.db"
    connection = open_database(path)
    SignInModel(connection, 7)
    connection.close()
    assert path.exists()


def test_sign_in_missing_raises(conn):
    with pytest.raises(RecordNotFound):
        SignInModel(conn, 1).find_one(99)


def test_sign_in_insert_and_find(conn):
    model = SignInModel(conn, 1)
    record = SignInRecord(uid=10, last_day=1700000000, count=1)
    model.insert(record)
    assert record.id
    assert model.find_one(10) == record


def test_sign_in_update_count(conn):
    model = SignInModel(conn, 1, clock=lambda: 1800000000.5)
    model.insert(SignInRecord(uid=10, last_day=1700000000, count=1))
    before = model.find_one(10)
    model.update_count(10)
    after = model.find_one(10)
    assert after.count == before.count + 1
    assert after.last_day == 1800000000


def test_sign_in_tables_are_per_room(conn):
    SignInModel(conn, 1).insert(SignInRecord(uid=10, last_day=0, count=1))
    with pytest.raises(RecordNotFound):
        SignInModel(conn, 2).find_one(10)


def test_sign_in_save_with_id_replaces(conn):
    model = SignInModel(conn, 1)
    record = SignInRecord(uid=10, last_day=0, count=1)
    model.insert(record)
    record.count = 5
    model.insert(record)
    assert model.find_one(10).count == 5


def test_date_str(conn):
    model = DanmuCountModel(conn, 1, today=lambda: TODAY)
    assert model.date_str(0) == TODAY.isoformat()
    assert model.date_str(2) == "2024-03-01"


def test_danmu_count_insert_find_update(conn):
    model = DanmuCountModel(conn, 1, today=lambda: TODAY)
    today = model.date_str(0)
    with pytest.raises(RecordNotFound):
        model.find_one(5, today)
    model.insert(DanmuCountRecord(uid=5, date=today, count=1))
    before = model.find_one(5, today)
    model.update_count(5)
    assert model.find_one(5, today).count == before.count + 1


def test_recent_three_days(conn):
    model = DanmuCountModel(conn, 1, today=lambda: TODAY)
    old = DanmuCountRecord(uid=5, date=model.date_str(3), count=9)
    first = DanmuCountRecord(uid=5, date=model.date_str(2), count=4)
    last = DanmuCountRecord(uid=5, date=model.date_str(0), count=2)
    for record in (last, old, first):
        model.insert(record)
    assert model.recent_three_days(5) == [first, last]
    with pytest.raises(RecordNotFound):
        model.recent_three_days(6)


def _box(uid, cnt, price, original, month=3, day=1):
    return BlindBoxRecord(
        uid=uid,
        blind_box_name="心动盲盒",
        price=price,
        original_gift_price=original,
        cnt=cnt,
        year=2024,
        month=month,
        day=day,
    )


def test_blind_box_empty_total(conn):
    model = BlindBoxStatModel(conn, 1)
    assert model.total(2024, 3, 0) == BlindBoxTotal(count=0, profit=0)


def test_blind_box_worked_example(conn):
    model = BlindBoxStatModel(conn, 1)
    model.insert(_box(uid=1, cnt=2, price=3000, original=1500))
    assert model.total_for_user(1, 2024, 3, 0) == BlindBoxTotal(count=2, profit=3000)


def test_blind_box_total_is_sum_of_users(conn):
    model = BlindBoxStatModel(conn, 1)
    model.insert(_box(uid=1, cnt=2, price=3000, original=1500))
    model.insert(_box(uid=2, cnt=1, price=500, original=1500))
    model.insert(_box(uid=2, cnt=3, price=1500, original=1500))
    one = model.total_for_user(1, 2024, 3, 0)
    two = model.total_for_user(2, 2024, 3, 0)
    everyone = model.total(2024, 3, 0)
    assert everyone.count == one.count + two.count
    assert everyone.profit == one.profit + two.profit


def test_blind_box_filters(conn):
    model = BlindBoxStatModel(conn, 1)
    model.insert(_box(uid=1, cnt=2, price=3000, original=1500, month=3, day=1))
    march = model.total_for_user(1, 2024, 3, 0)
    model.insert(_box(uid=1, cnt=4, price=100, original=1500, month=4, day=2))
    assert model.total_for_user(1, 2024, 3, 0) == march
    assert model.total_for_user(1, 2024, 3, 1) == march
    assert model.total_for_user(1, 2023, 0, 0) == BlindBoxTotal(count=0, profit=0)
    unfiltered = model.total_for_user(1, 0, 0, 0)
    april = model.total_for_user(1, 2024, 4, 0)
    assert unfiltered.count == march.count + april.count
    assert unfiltered.profit == march.profit + april.profit