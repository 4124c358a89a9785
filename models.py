"""
Domain records for the parking system.
Each record maps to one table row and to one camelCase JSON object.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any


class SpotType:
    """Parking spot categories"""
    REGULAR = "regular"
    ACCESSIBLE = "accessible"
    EV = "ev"

    ALL = (REGULAR, ACCESSIBLE, EV)


class SpotStatus:
    """Parking spot lifecycle states"""
    AVAILABLE = "available"
    IN_USE = "in-use"
    BOOKED = "booked"
    UNAVAILABLE = "unavailable"

    ALL = (AVAILABLE, IN_USE, BOOKED, UNAVAILABLE)


class Role:
    USER = "user"
    MANAGER = "manager"

    ALL = (USER, MANAGER)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_iso(value) -> Optional[datetime]:
    """Parse an ISO timestamp (a trailing 'Z' is accepted) into an aware datetime"""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_plate(value) -> str:
    return str(value or '').strip().upper()


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class OccupiedDetails:
    """Vehicle currently parked in a spot"""
    license_plate: str
    start_time: datetime
    is_paid: Optional[bool] = None
    is_at_exit: Optional[bool] = None
    total_bill: Optional[float] = None

    def to_dict(self) -> dict:
        return _compact({
            'licensePlate': self.license_plate,
            'startTime': to_iso(self.start_time),
            'isPaid': self.is_paid,
            'isAtExit': self.is_at_exit,
            'totalBill': self.total_bill,
        })

    @classmethod
    def from_dict(cls, data: dict) -> 'OccupiedDetails':
        total_bill = data.get('totalBill')
        return cls(
            license_plate=normalize_plate(data.get('licensePlate')),
            start_time=parse_iso(data.get('startTime')) or utcnow(),
            is_paid=data.get('isPaid'),
            is_at_exit=data.get('isAtExit'),
            total_bill=float(total_bill) if total_bill is not None else None,
        )


@dataclass
class ReservationDetails:
    """Reservation held on a spot"""
    user_id: str
    car_number: str
    phone_number: str
    reserved_at: datetime

    def to_dict(self) -> dict:
        return {
            'userId': self.user_id,
            'carNumber': self.car_number,
            'phoneNumber': self.phone_number,
            'reservedAt': to_iso(self.reserved_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ReservationDetails':
        return cls(
            user_id=str(data.get('userId') or ''),
            car_number=normalize_plate(data.get('carNumber')),
            phone_number=str(data.get('phoneNumber') or ''),
            reserved_at=parse_iso(data.get('reservedAt')) or utcnow(),
        )


@dataclass
class ParkingSpot:
    id: str
    spot_number: int
    type: str = SpotType.REGULAR
    status: str = SpotStatus.AVAILABLE
    occupied_by: Optional[OccupiedDetails] = None
    reserved_by: Optional[ReservationDetails] = None

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'spotNumber': self.spot_number,
            'type': self.type,
            'status': self.status,
        }
        if self.occupied_by is not None:
            data['occupiedBy'] = self.occupied_by.to_dict()
        if self.reserved_by is not None:
            data['reservedBy'] = self.reserved_by.to_dict()
        return data

    @classmethod
    def from_row(cls, row: dict) -> 'ParkingSpot':
        """Build a spot from a parking_spots row (RealDictCursor)"""
        occupied_by = None
        if row.get('occupied_plate'):
            total_bill = row.get('total_bill')
            occupied_by = OccupiedDetails(
                license_plate=row['occupied_plate'],
                start_time=parse_iso(row.get('occupied_since')),
                is_paid=row.get('is_paid'),
                is_at_exit=row.get('is_at_exit'),
                total_bill=float(total_bill) if total_bill is not None else None,
            )

        reserved_by = None
        if row.get('reserved_car_number'):
            reserved_by = ReservationDetails(
                user_id=row.get('reserved_user_id') or '',
                car_number=row['reserved_car_number'],
                phone_number=row.get('reserved_phone') or '',
                reserved_at=parse_iso(row.get('reserved_at')),
            )

        return cls(
            id=row['spot_id'],
            spot_number=row['spot_number'],
            type=row['spot_type'],
            status=row['status'],
            occupied_by=occupied_by,
            reserved_by=reserved_by,
        )

    def to_row(self) -> dict:
        """Flatten into parking_spots column values"""
        occupied = self.occupied_by
        reserved = self.reserved_by
        return {
            'spot_id': self.id,
            'spot_number': self.spot_number,
            'spot_type': self.type,
            'status': self.status,
            'occupied_plate': occupied.license_plate if occupied else None,
            'occupied_since': occupied.start_time if occupied else None,
            'is_paid': occupied.is_paid if occupied else None,
            'is_at_exit': occupied.is_at_exit if occupied else None,
            'total_bill': occupied.total_bill if occupied else None,
            'reserved_user_id': reserved.user_id if reserved else None,
            'reserved_car_number': reserved.car_number if reserved else None,
            'reserved_phone': reserved.phone_number if reserved else None,
            'reserved_at': reserved.reserved_at if reserved else None,
        }


@dataclass
class User:
    email: str
    password_hash: str
    display_name: str
    car_number: str
    role: str = Role.USER
    phone_number: Optional[str] = None
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def uid(self) -> str:
        return str(self.id)

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER

    def to_dict(self) -> dict:
        """Public profile; the password hash never leaves the server"""
        return _compact({
            'uid': self.uid,
            'email': self.email,
            'displayName': self.display_name,
            'carNumber': self.car_number,
            'phoneNumber': self.phone_number,
            'role': self.role,
        })

    @classmethod
    def from_row(cls, row: dict) -> 'User':
        return cls(
            id=row['user_id'],
            email=row['email'],
            password_hash=row['password_hash'],
            display_name=row['display_name'],
            car_number=row['car_number'],
            phone_number=row.get('phone_number'),
            role=row.get('role') or Role.USER,
            created_at=parse_iso(row.get('created_at')) or utcnow(),
        )


@dataclass
class ParkingHistory:
    """Completed, paid parking session"""
    user_id: str
    car_number: str
    spot_id: str
    spot_type: str
    start_time: datetime
    end_time: datetime
    total_cost: float
    duration: str
    id: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return _compact({
            '_id': str(self.id) if self.id is not None else None,
            'userId': self.user_id,
            'carNumber': self.car_number,
            'spotId': self.spot_id,
            'spotType': self.spot_type,
            'startTime': to_iso(self.start_time),
            'endTime': to_iso(self.end_time),
            'totalCost': self.total_cost,
            'duration': self.duration,
            'createdAt': to_iso(self.created_at),
        })

    @classmethod
    def from_row(cls, row: dict) -> 'ParkingHistory':
        return cls(
            id=row['history_id'],
            user_id=row['user_id'],
            car_number=row['car_number'],
            spot_id=row['spot_id'],
            spot_type=row['spot_type'],
            start_time=parse_iso(row['start_time']),
            end_time=parse_iso(row['end_time']),
            total_cost=float(row['total_cost']),
            duration=row['duration'],
            created_at=parse_iso(row.get('created_at')) or utcnow(),
        )


@dataclass
class CameraLog:
    """Camera capture that led to a spot assignment"""
    license_plate: str
    spot_id: str
    image_path: str
    user_display_name: Optional[str] = None
    id: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return _compact({
            '_id': str(self.id) if self.id is not None else None,
            'licensePlate': self.license_plate,
            'spotId': self.spot_id,
            'imagePath': self.image_path,
            'userDisplayName': self.user_display_name,
            'timestamp': to_iso(self.timestamp),
        })

    @classmethod
    def from_row(cls, row: dict) -> 'CameraLog':
        return cls(
            id=row['log_id'],
            license_plate=row['license_plate'],
            spot_id=row['spot_id'],
            image_path=row['image_path'],
            user_display_name=row.get('user_display_name'),
            timestamp=parse_iso(row.get('captured_at')) or utcnow(),
        )
