"""Tests for the PostgreSQL access layer with psycopg2 mocked out."""
from datetime import datetime, timezone

import pytest

import db_helper
from db_helper import ParkingDB
from models import ParkingSpot, SpotStatus


class FakeCursor:
    def __init__(self, rows=None, rowcount=1):
        self.rows = list(rows or [])
        self.rowcount = rowcount
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.committed = True
        else:
            self.rolled_back = True
        return False

    def cursor(self, cursor_factory=None):
        return self._cursor

    def close(self):
        self.closed = True


@pytest.fixture
def fake_db(monkeypatch):
    """Return (db, cursor, connection) with psycopg2.connect patched"""
    def install(rows=None, rowcount=1):
        cursor = FakeCursor(rows, rowcount)
        conn = FakeConnection(cursor)
        monkeypatch.setattr(db_helper.psycopg2, 'connect', lambda **kwargs: conn)
        return ParkingDB(host='db', port='5432', dbname='parking', user='u', password='p'), cursor, conn

    return install


def spot_row(**overrides):
    row = {
        'spot_id': 'A-1', 'spot_number': 1, 'spot_type': 'regular', 'status': 'available',
        'occupied_plate': None, 'occupied_since': None, 'is_paid': None, 'is_at_exit': None,
        'total_bill': None, 'reserved_user_id': None, 'reserved_car_number': None,
        'reserved_phone': None, 'reserved_at': None,
    }
    row.update(overrides)
    return row


class TestConnection:

    def test_commits_and_closes(self, fake_db):
        db, cursor, conn = fake_db(rows=[{'ok': 1}])
        assert db.ping() is True
        assert conn.committed and conn.closed

    def test_rolls_back_on_error(self, fake_db):
        db, cursor, conn = fake_db()

        def boom(query, params=None):
            raise RuntimeError('constraint violated')

        cursor.execute = boom
        with pytest.raises(RuntimeError):
            db.delete_spot('A-1')
        assert conn.rolled_back and conn.closed

    def test_missing_tables(self, fake_db):
        db, cursor, conn = fake_db(rows=[{'table_name': 'users'}, {'table_name': 'parking_spots'}])
        assert db.missing_tables() == ['camera_logs', 'parking_history']


class TestSpotQueries:

    def test_get_spot_maps_row(self, fake_db):
        since = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)
        db, cursor, conn = fake_db(rows=[spot_row(
            status='in-use', occupied_plate='MH20EE7602', occupied_since=since,
            is_paid=False, total_bill=None,
        )])

        spot = db.get_spot('A-1')

        assert spot.status == SpotStatus.IN_USE
        assert spot.occupied_by.license_plate == 'MH20EE7602'
        assert spot.occupied_by.start_time == since
        assert spot.reserved_by is None
        assert cursor.executed[0][1] == ('A-1',)

    def test_get_missing_spot(self, fake_db):
        db, cursor, conn = fake_db(rows=[])
        assert db.get_spot('Z-9') is None

    def test_occupy_is_conditional_on_status(self, fake_db):
        db, cursor, conn = fake_db(rowcount=0)
        start = datetime(2024, 5, 1, tzinfo=timezone.utc)

        assert db.occupy_spot('A-1', 'MH20EE7602', start, SpotStatus.AVAILABLE) is False

        query, params = cursor.executed[0]
        assert 'WHERE spot_id = %s AND status = %s' in query
        assert params == (SpotStatus.IN_USE, 'MH20EE7602', start, 'A-1', SpotStatus.AVAILABLE)

    def test_insert_spots_writes_every_column(self, fake_db):
        db, cursor, conn = fake_db()
        db.insert_spots([ParkingSpot(id='A-1', spot_number=1), ParkingSpot(id='A-2', spot_number=2)])

        assert len(cursor.executed) == 2
        query, params = cursor.executed[1]
        assert query.startswith('INSERT INTO parking_spots')
        assert len(params) == len(db_helper.SPOT_COLUMNS)
        assert params[:4] == ('A-2', 2, 'regular', 'available')

    def test_save_spot_reports_missing(self, fake_db):
        db, cursor, conn = fake_db(rowcount=0)
        assert db.save_spot(ParkingSpot(id='A-1', spot_number=1)) is False
        assert cursor.executed[0][1][-1] == 'A-1'

    def test_save_spot_guards_on_status(self, fake_db):
        db, cursor, conn = fake_db(rowcount=0)
        spot = ParkingSpot(id='A-1', spot_number=1, status=SpotStatus.UNAVAILABLE)

        assert db.save_spot(spot, expected_status=SpotStatus.AVAILABLE) is False

        query, params = cursor.executed[0]
        assert query.endswith('WHERE spot_id = %s AND status = %s')
        assert list(params[-2:]) == ['A-1', SpotStatus.AVAILABLE]

    def test_release_all(self, fake_db):
        db, cursor, conn = fake_db(rowcount=3)
        assert db.release_all_spots() == 3
        assert cursor.executed[0][1] == (SpotStatus.AVAILABLE, SpotStatus.IN_USE, SpotStatus.BOOKED)


class TestUserQueries:

    def test_get_user_rejects_non_numeric_id(self, fake_db):
        db, cursor, conn = fake_db()
        assert db.get_user('abc') is None
        assert cursor.executed == []

    def test_find_user_matches_email_or_car(self, fake_db):
        db, cursor, conn = fake_db(rows=[{
            'user_id': 7, 'email': 'a@b.c', 'password_hash': 'h', 'display_name': 'A',
            'car_number': 'KA01AB1234', 'phone_number': None, 'role': 'manager', 'created_at': None,
        }])

        user = db.find_user('a@b.c', 'A@B.C')

        assert user.uid == '7'
        assert user.is_manager
        assert 'email = %s OR car_number = %s' in cursor.executed[0][0]
