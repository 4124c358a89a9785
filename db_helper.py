"""
PostgreSQL access layer for the parking system.
One connection per operation; every method commits on success and rolls back on error.
"""
import logging
from contextlib import contextmanager
from typing import List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

import config
from models import (
    CameraLog,
    ParkingHistory,
    ParkingSpot,
    SpotStatus,
    User,
)

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    user_id       SERIAL PRIMARY KEY,
    email         VARCHAR(255) NOT NULL UNIQUE,
    password_hash VARCHAR(255) NOT NULL,
    display_name  VARCHAR(255) NOT NULL,
    car_number    VARCHAR(32)  NOT NULL UNIQUE,
    phone_number  VARCHAR(32),
    role          VARCHAR(16)  NOT NULL DEFAULT 'user',
    created_at    TIMESTAMPTZ  NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS parking_spots (
    spot_id             VARCHAR(32) PRIMARY KEY,
    spot_number         INTEGER     NOT NULL,
    spot_type           VARCHAR(16) NOT NULL DEFAULT 'regular',
    status              VARCHAR(16) NOT NULL DEFAULT 'available',
    occupied_plate      VARCHAR(32),
    occupied_since      TIMESTAMPTZ,
    is_paid             BOOLEAN,
    is_at_exit          BOOLEAN,
    total_bill          NUMERIC(10, 2),
    reserved_user_id    VARCHAR(64),
    reserved_car_number VARCHAR(32),
    reserved_phone      VARCHAR(32),
    reserved_at         TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_parking_spots_status ON parking_spots (status);
CREATE INDEX IF NOT EXISTS idx_parking_spots_plate ON parking_spots (occupied_plate);

CREATE TABLE IF NOT EXISTS parking_history (
    history_id  SERIAL PRIMARY KEY,
    user_id     VARCHAR(64)    NOT NULL,
    car_number  VARCHAR(32)    NOT NULL,
    spot_id     VARCHAR(32)    NOT NULL,
    spot_type   VARCHAR(16)    NOT NULL,
    start_time  TIMESTAMPTZ    NOT NULL,
    end_time    TIMESTAMPTZ    NOT NULL,
    total_cost  NUMERIC(10, 2) NOT NULL,
    duration    VARCHAR(64)    NOT NULL,
    created_at  TIMESTAMPTZ    NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_parking_history_user ON parking_history (user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS camera_logs (
    log_id            SERIAL PRIMARY KEY,
    license_plate     VARCHAR(32)  NOT NULL,
    spot_id           VARCHAR(32)  NOT NULL,
    image_path        VARCHAR(255) NOT NULL,
    user_display_name VARCHAR(255),
    captured_at       TIMESTAMPTZ  NOT NULL DEFAULT NOW()
);
"""

REQUIRED_TABLES = ['camera_logs', 'parking_history', 'parking_spots', 'users']

SPOT_COLUMNS = (
    'spot_id', 'spot_number', 'spot_type', 'status',
    'occupied_plate', 'occupied_since', 'is_paid', 'is_at_exit', 'total_bill',
    'reserved_user_id', 'reserved_car_number', 'reserved_phone', 'reserved_at',
)

CLEAR_OCCUPANCY = '''occupied_plate = NULL, occupied_since = NULL, is_paid = NULL,
                     is_at_exit = NULL, total_bill = NULL'''
CLEAR_RESERVATION = '''reserved_user_id = NULL, reserved_car_number = NULL,
                       reserved_phone = NULL, reserved_at = NULL'''


class ParkingDB:
    def __init__(self, host=None, port=None, dbname=None, user=None, password=None):
        self.host = host or config.DB_HOST
        self.port = port or config.DB_PORT
        self.dbname = dbname or config.DB_NAME
        self.user = user or config.DB_USER
        self.password = password or config.DB_PASS

    def get_connection(self):
        """Get database connection"""
        return psycopg2.connect(
            host=self.host,
            port=self.port,
            dbname=self.dbname,
            user=self.user,
            password=self.password
        )

    @contextmanager
    def cursor(self):
        """Yield a dict cursor inside a transaction, closing the connection afterwards"""
        conn = self.get_connection()
        try:
            with conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    yield cur
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Schema / health
    # ------------------------------------------------------------------

    def init_schema(self):
        """Create all tables and indexes if they do not exist yet"""
        with self.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        logger.info("Database schema ready on %s/%s", self.host, self.dbname)

    def missing_tables(self) -> List[str]:
        with self.cursor() as cur:
            cur.execute("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
            """)
            tables = {row['table_name'] for row in cur.fetchall()}
        return [name for name in REQUIRED_TABLES if name not in tables]

    def ping(self) -> bool:
        with self.cursor() as cur:
            cur.execute('SELECT 1 AS ok')
            return cur.fetchone()['ok'] == 1

    # ------------------------------------------------------------------
    # Parking spots
    # ------------------------------------------------------------------

    def count_spots(self) -> int:
        with self.cursor() as cur:
            cur.execute('SELECT COUNT(*) AS total FROM parking_spots')
            return cur.fetchone()['total']

    def count_spots_by_status(self) -> dict:
        with self.cursor() as cur:
            cur.execute('SELECT status, COUNT(*) AS total FROM parking_spots GROUP BY status')
            return {row['status']: row['total'] for row in cur.fetchall()}

    def list_spots(self) -> List[ParkingSpot]:
        with self.cursor() as cur:
            cur.execute('SELECT * FROM parking_spots ORDER BY spot_number, spot_id')
            return [ParkingSpot.from_row(row) for row in cur.fetchall()]

    def get_spot(self, spot_id) -> Optional[ParkingSpot]:
        with self.cursor() as cur:
            cur.execute('SELECT * FROM parking_spots WHERE spot_id = %s', (spot_id,))
            row = cur.fetchone()
        return ParkingSpot.from_row(row) if row else None

    def spot_ids_exist(self, spot_ids) -> List[str]:
        """Return the subset of spot_ids already present"""
        if not spot_ids:
            return []
        with self.cursor() as cur:
            cur.execute(
                'SELECT spot_id FROM parking_spots WHERE spot_id = ANY(%s)',
                (list(spot_ids),)
            )
            return [row['spot_id'] for row in cur.fetchall()]

    def get_max_spot_number(self) -> Optional[int]:
        with self.cursor() as cur:
            cur.execute('SELECT MAX(spot_number) AS max_number FROM parking_spots')
            return cur.fetchone()['max_number']

    def insert_spots(self, spots: List[ParkingSpot]):
        """Insert several spots in one transaction"""
        placeholders = ', '.join(['%s'] * len(SPOT_COLUMNS))
        query = f"INSERT INTO parking_spots ({', '.join(SPOT_COLUMNS)}) VALUES ({placeholders})"
        with self.cursor() as cur:
            for spot in spots:
                row = spot.to_row()
                cur.execute(query, tuple(row[col] for col in SPOT_COLUMNS))

    def save_spot(self, spot: ParkingSpot, expected_status=None) -> bool:
        """
        Overwrite every mutable column of a spot.

        With expected_status the write only applies while the stored status is
        still that value. Returns False when no row was updated.
        """
        row = spot.to_row()
        columns = [col for col in SPOT_COLUMNS if col != 'spot_id']
        assignments = ', '.join(f'{col} = %s' for col in columns)
        params = [row[col] for col in columns] + [spot.id]
        query = f'UPDATE parking_spots SET {assignments} WHERE spot_id = %s'
        if expected_status is not None:
            query += ' AND status = %s'
            params.append(expected_status)
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount > 0

    def delete_spot(self, spot_id) -> bool:
        with self.cursor() as cur:
            cur.execute('DELETE FROM parking_spots WHERE spot_id = %s', (spot_id,))
            return cur.rowcount > 0

    def find_spot_occupied_by(self, license_plate) -> Optional[ParkingSpot]:
        with self.cursor() as cur:
            cur.execute(
                'SELECT * FROM parking_spots WHERE occupied_plate = %s AND status = %s LIMIT 1',
                (license_plate, SpotStatus.IN_USE)
            )
            row = cur.fetchone()
        return ParkingSpot.from_row(row) if row else None

    def find_spot_reserved_for(self, car_number) -> Optional[ParkingSpot]:
        with self.cursor() as cur:
            cur.execute(
                'SELECT * FROM parking_spots WHERE reserved_car_number = %s AND status = %s LIMIT 1',
                (car_number, SpotStatus.BOOKED)
            )
            row = cur.fetchone()
        return ParkingSpot.from_row(row) if row else None

    def list_available_spots(self) -> List[ParkingSpot]:
        with self.cursor() as cur:
            cur.execute(
                'SELECT * FROM parking_spots WHERE status = %s ORDER BY spot_number, spot_id',
                (SpotStatus.AVAILABLE,)
            )
            return [ParkingSpot.from_row(row) for row in cur.fetchall()]

    def occupy_spot(self, spot_id, license_plate, start_time, expected_status) -> bool:
        """
        Mark a spot in-use for a vehicle and drop any reservation.

        The update only applies while the spot still has expected_status, so
        two entries racing for the same spot cannot both win it.
        """
        with self.cursor() as cur:
            cur.execute(
                f'''UPDATE parking_spots
                   SET status = %s, occupied_plate = %s, occupied_since = %s,
                       is_paid = NULL, is_at_exit = NULL, total_bill = NULL,
                       {CLEAR_RESERVATION}
                   WHERE spot_id = %s AND status = %s''',
                (SpotStatus.IN_USE, license_plate, start_time, spot_id, expected_status)
            )
            return cur.rowcount > 0

    def mark_spot_at_exit(self, spot_id, total_bill) -> bool:
        with self.cursor() as cur:
            cur.execute(
                '''UPDATE parking_spots SET total_bill = %s, is_at_exit = TRUE
                   WHERE spot_id = %s AND status = %s''',
                (total_bill, spot_id, SpotStatus.IN_USE)
            )
            return cur.rowcount > 0

    def mark_spot_paid(self, spot_id) -> bool:
        with self.cursor() as cur:
            cur.execute(
                'UPDATE parking_spots SET is_paid = TRUE WHERE spot_id = %s AND status = %s',
                (spot_id, SpotStatus.IN_USE)
            )
            return cur.rowcount > 0

    def release_spot(self, spot_id) -> bool:
        """Return a spot to available, clearing occupancy and reservation"""
        with self.cursor() as cur:
            cur.execute(
                f'''UPDATE parking_spots
                   SET status = %s, {CLEAR_OCCUPANCY}, {CLEAR_RESERVATION}
                   WHERE spot_id = %s''',
                (SpotStatus.AVAILABLE, spot_id)
            )
            return cur.rowcount > 0

    def release_all_spots(self) -> int:
        """Free every in-use or booked spot. Returns the number of spots changed"""
        with self.cursor() as cur:
            cur.execute(
                f'''UPDATE parking_spots
                   SET status = %s, {CLEAR_OCCUPANCY}, {CLEAR_RESERVATION}
                   WHERE status IN (%s, %s)''',
                (SpotStatus.AVAILABLE, SpotStatus.IN_USE, SpotStatus.BOOKED)
            )
            return cur.rowcount

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        with self.cursor() as cur:
            cur.execute(
                '''INSERT INTO users (email, password_hash, display_name, car_number, phone_number, role)
                   VALUES (%s, %s, %s, %s, %s, %s)
                   RETURNING *''',
                (user.email, user.password_hash, user.display_name,
                 user.car_number, user.phone_number, user.role)
            )
            return User.from_row(cur.fetchone())

    def get_user(self, user_id) -> Optional[User]:
        try:
            user_id = int(user_id)
        except (TypeError, ValueError):
            return None
        with self.cursor() as cur:
            cur.execute('SELECT * FROM users WHERE user_id = %s', (user_id,))
            row = cur.fetchone()
        return User.from_row(row) if row else None

    def get_user_by_car_number(self, car_number) -> Optional[User]:
        with self.cursor() as cur:
            cur.execute('SELECT * FROM users WHERE car_number = %s', (car_number,))
            row = cur.fetchone()
        return User.from_row(row) if row else None

    def find_user(self, email, car_number) -> Optional[User]:
        """Find a user whose email OR car number matches"""
        with self.cursor() as cur:
            cur.execute(
                'SELECT * FROM users WHERE email = %s OR car_number = %s ORDER BY user_id LIMIT 1',
                (email, car_number)
            )
            row = cur.fetchone()
        return User.from_row(row) if row else None

    def set_user_role(self, email, role) -> bool:
        with self.cursor() as cur:
            cur.execute('UPDATE users SET role = %s WHERE email = %s', (role, email))
            return cur.rowcount > 0

    def count_users(self) -> int:
        with self.cursor() as cur:
            cur.execute('SELECT COUNT(*) AS total FROM users')
            return cur.fetchone()['total']

    # ------------------------------------------------------------------
    # Parking history
    # ------------------------------------------------------------------

    def insert_history(self, entry: ParkingHistory) -> ParkingHistory:
        with self.cursor() as cur:
            cur.execute(
                '''INSERT INTO parking_history
                   (user_id, car_number, spot_id, spot_type, start_time, end_time, total_cost, duration)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   RETURNING *''',
                (entry.user_id, entry.car_number, entry.spot_id, entry.spot_type,
                 entry.start_time, entry.end_time, entry.total_cost, entry.duration)
            )
            return ParkingHistory.from_row(cur.fetchone())

    def list_history(self, user_id, limit=config.HISTORY_LIMIT) -> List[ParkingHistory]:
        with self.cursor() as cur:
            cur.execute(
                '''SELECT * FROM parking_history
                   WHERE user_id = %s
                   ORDER BY created_at DESC, history_id DESC
                   LIMIT %s''',
                (str(user_id), limit)
            )
            return [ParkingHistory.from_row(row) for row in cur.fetchall()]

    def count_history(self) -> int:
        with self.cursor() as cur:
            cur.execute('SELECT COUNT(*) AS total FROM parking_history')
            return cur.fetchone()['total']

    # ------------------------------------------------------------------
    # Camera logs
    # ------------------------------------------------------------------

    def insert_camera_log(self, log: CameraLog) -> CameraLog:
        with self.cursor() as cur:
            cur.execute(
                '''INSERT INTO camera_logs (license_plate, spot_id, image_path, user_display_name, captured_at)
                   VALUES (%s, %s, %s, %s, %s)
                   RETURNING *''',
                (log.license_plate, log.spot_id, log.image_path,
                 log.user_display_name, log.timestamp)
            )
            return CameraLog.from_row(cur.fetchone())

    def list_camera_logs(self, limit=config.CAMERA_LOG_LIMIT) -> List[CameraLog]:
        with self.cursor() as cur:
            cur.execute(
                'SELECT * FROM camera_logs ORDER BY captured_at DESC, log_id DESC LIMIT %s',
                (limit,)
            )
            return [CameraLog.from_row(row) for row in cur.fetchall()]
