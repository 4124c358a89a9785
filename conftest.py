"""Pytest configuration and fixtures for parking system tests."""
import copy
import os
import sys

import pytest

# Add the backend root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from server import app as flask_app
from auth import hash_password
from models import OccupiedDetails, ParkingSpot, Role, SpotStatus, User


class InMemoryParkingDB:
    """Stand-in for ParkingDB that keeps every table in dictionaries."""

    def __init__(self):
        self.spots = {}
        self.users = {}
        self.history = []
        self.camera_logs = []
        self.fail_history = False
        self.fail_camera_log = False
        self._next_user_id = 1

    # schema / health
    def init_schema(self):
        pass

    def missing_tables(self):
        return []

    def ping(self):
        return True

    # spots
    def count_spots(self):
        return len(self.spots)

    def count_spots_by_status(self):
        counts = {}
        for spot in self.spots.values():
            counts[spot.status] = counts.get(spot.status, 0) + 1
        return counts

    def list_spots(self):
        ordered = sorted(self.spots.values(), key=lambda s: (s.spot_number, s.id))
        return [copy.deepcopy(s) for s in ordered]

    def get_spot(self, spot_id):
        spot = self.spots.get(spot_id)
        return copy.deepcopy(spot) if spot else None

    def spot_ids_exist(self, spot_ids):
        return [spot_id for spot_id in spot_ids if spot_id in self.spots]

    def get_max_spot_number(self):
        if not self.spots:
            return None
        return max(s.spot_number for s in self.spots.values())

    def insert_spots(self, spots):
        for spot in spots:
            self.spots[spot.id] = copy.deepcopy(spot)

    def save_spot(self, spot, expected_status=None):
        stored = self.spots.get(spot.id)
        if stored is None:
            return False
        if expected_status is not None and stored.status != expected_status:
            return False
        self.spots[spot.id] = copy.deepcopy(spot)
        return True

    def delete_spot(self, spot_id):
        return self.spots.pop(spot_id, None) is not None

    def find_spot_occupied_by(self, license_plate):
        for spot in self.list_spots():
            if spot.status == SpotStatus.IN_USE and spot.occupied_by \
                    and spot.occupied_by.license_plate == license_plate:
                return spot
        return None

    def find_spot_reserved_for(self, car_number):
        for spot in self.list_spots():
            if spot.status == SpotStatus.BOOKED and spot.reserved_by \
                    and spot.reserved_by.car_number == car_number:
                return spot
        return None

    def list_available_spots(self):
        return [s for s in self.list_spots() if s.status == SpotStatus.AVAILABLE]

    def occupy_spot(self, spot_id, license_plate, start_time, expected_status):
        spot = self.spots.get(spot_id)
        if spot is None or spot.status != expected_status:
            return False
        spot.status = SpotStatus.IN_USE
        spot.occupied_by = OccupiedDetails(license_plate=license_plate, start_time=start_time)
        spot.reserved_by = None
        return True

    def mark_spot_at_exit(self, spot_id, total_bill):
        spot = self.spots.get(spot_id)
        if spot is None or spot.status != SpotStatus.IN_USE:
            return False
        spot.occupied_by.total_bill = total_bill
        spot.occupied_by.is_at_exit = True
        return True

    def mark_spot_paid(self, spot_id):
        spot = self.spots.get(spot_id)
        if spot is None or spot.status != SpotStatus.IN_USE:
            return False
        spot.occupied_by.is_paid = True
        return True

    def release_spot(self, spot_id):
        spot = self.spots.get(spot_id)
        if spot is None:
            return False
        spot.status = SpotStatus.AVAILABLE
        spot.occupied_by = None
        spot.reserved_by = None
        return True

    def release_all_spots(self):
        changed = 0
        for spot in self.spots.values():
            if spot.status in (SpotStatus.IN_USE, SpotStatus.BOOKED):
                spot.status = SpotStatus.AVAILABLE
                spot.occupied_by = None
                spot.reserved_by = None
                changed += 1
        return changed

    # users
    def create_user(self, user):
        stored = copy.deepcopy(user)
        stored.id = self._next_user_id
        self._next_user_id += 1
        self.users[stored.id] = stored
        return copy.deepcopy(stored)

    def get_user(self, user_id):
        try:
            user = self.users.get(int(user_id))
        except (TypeError, ValueError):
            return None
        return copy.deepcopy(user) if user else None

    def get_user_by_car_number(self, car_number):
        for user in self.users.values():
            if user.car_number == car_number:
                return copy.deepcopy(user)
        return None

    def find_user(self, email, car_number):
        for user in sorted(self.users.values(), key=lambda u: u.id):
            if user.email == email or user.car_number == car_number:
                return copy.deepcopy(user)
        return None

    def set_user_role(self, email, role):
        for user in self.users.values():
            if user.email == email:
                user.role = role
                return True
        return False

    def count_users(self):
        return len(self.users)

    # history
    def insert_history(self, entry):
        if self.fail_history:
            raise RuntimeError("history table unavailable")
        stored = copy.deepcopy(entry)
        stored.id = len(self.history) + 1
        self.history.append(stored)
        return copy.deepcopy(stored)

    def list_history(self, user_id, limit=20):
        rows = [h for h in self.history if h.user_id == str(user_id)]
        rows.sort(key=lambda h: (h.created_at, h.id), reverse=True)
        return [copy.deepcopy(h) for h in rows[:limit]]

    def count_history(self):
        return len(self.history)

    # camera logs
    def insert_camera_log(self, log):
        if self.fail_camera_log:
            raise RuntimeError("camera_logs table unavailable")
        stored = copy.deepcopy(log)
        stored.id = len(self.camera_logs) + 1
        self.camera_logs.append(stored)
        return copy.deepcopy(stored)

    def list_camera_logs(self, limit=50):
        rows = sorted(self.camera_logs, key=lambda l: (l.timestamp, l.id), reverse=True)
        return [copy.deepcopy(l) for l in rows[:limit]]


class StubPlateReader:
    """Returns a fixed plate instead of running OCR."""

    def __init__(self, plate=None):
        self.plate = plate
        self.calls = []

    def detect_license_plate(self, image_bytes):
        self.calls.append(image_bytes)
        return self.plate


def make_user(store, email='driver@example.com', password='secret123',
              display_name='Dana Driver', car_number='MH20EE7602', role=Role.USER):
    """Insert a user straight into the store."""
    return store.create_user(User(
        email=email,
        password_hash=hash_password(password),
        display_name=display_name,
        car_number=car_number,
        role=role,
    ))


@pytest.fixture
def store():
    return InMemoryParkingDB()


@pytest.fixture
def plate_reader():
    return StubPlateReader()


@pytest.fixture
def app(store, plate_reader, tmp_path):
    saved = {key: flask_app.config.get(key) for key in ('PARKING_DB', 'PLATE_READER', 'UPLOAD_FOLDER', 'TESTING')}
    flask_app.config.update(
        TESTING=True,
        PARKING_DB=store,
        PLATE_READER=plate_reader,
        UPLOAD_FOLDER=str(tmp_path / 'cam-uploads'),
    )
    yield flask_app
    flask_app.config.update(saved)


@pytest.fixture
def client(app):
    """Create a test client for the Flask app."""
    with app.test_client() as client:
        yield client


@pytest.fixture
def driver(store):
    return make_user(store)


@pytest.fixture
def manager(store):
    return make_user(store, email='manager@example.com', display_name='Morgan Manager',
                     car_number='KA01AB1234', role=Role.MANAGER)


def login(client, identification, password='secret123'):
    return client.post('/api/auth/login', json={'identification': identification, 'password': password})


@pytest.fixture
def user_factory(store):
    """Create users directly in the store."""
    def factory(**kwargs):
        return make_user(store, **kwargs)
    return factory


@pytest.fixture
def driver_client(client, driver):
    login(client, driver.email)
    return client


@pytest.fixture
def manager_client(client, manager):
    login(client, manager.email)
    return client


@pytest.fixture
def seeded_store(store):
    """Three plain available spots: A-1, A-2, A-3."""
    store.insert_spots([
        ParkingSpot(id=f'A-{n}', spot_number=n) for n in (1, 2, 3)
    ])
    return store
