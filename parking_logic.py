"""
Parking rules shared by the HTTP handlers: spot assignment at the entrance,
billing and departure at the exit, payment, and spot inventory changes.

Every function takes the store as its first argument (a ParkingDB or any
object with the same methods). Domain failures raise ParkingError.
"""
import math
import random
import logging
from datetime import timedelta
from typing import List, Optional

import config
from models import (
    OccupiedDetails,
    ParkingHistory,
    ParkingSpot,
    ReservationDetails,
    SpotStatus,
    SpotType,
    normalize_plate,
    utcnow,
)

logger = logging.getLogger(__name__)

HARDWARE_PLACEHOLDER_PLATE = "HARDWARE_DETECTED"


class ParkingError(Exception):
    """A request that cannot be honoured, with the HTTP status to answer"""

    def __init__(self, message, status_code=400, use_error_key=False, **extra):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.use_error_key = use_error_key
        self.extra = extra

    def to_dict(self) -> dict:
        if self.use_error_key:
            payload = {'error': self.message}
        else:
            payload = {'success': False, 'message': self.message}
        payload.update({key: value for key, value in self.extra.items() if value is not None})
        return payload


# ============================================================================
# ENTRANCE
# ============================================================================

def assign_spot_to_vehicle(db, license_plate) -> dict:
    """
    Park a registered vehicle: its reserved spot if it has one, otherwise a
    random available spot.

    Returns:
        dict with message, spotId, startTime, userDisplayName
    Raises:
        ParkingError 404 (unregistered / lot full), 409 (already parked)
    """
    license_plate = normalize_plate(license_plate)

    user = db.get_user_by_car_number(license_plate)
    if user is None:
        raise ParkingError('Please sign up to Park Smart', 404)

    existing = db.find_spot_occupied_by(license_plate)
    if existing is not None:
        raise ParkingError(
            f'Vehicle {license_plate} is already parked in spot {existing.id}.',
            409,
            spotId=existing.id,
        )

    start_time = utcnow()
    assigned = None

    reserved = db.find_spot_reserved_for(license_plate)
    if reserved is not None and db.occupy_spot(reserved.id, license_plate, start_time, SpotStatus.BOOKED):
        assigned = reserved

    if assigned is None:
        candidates = db.list_available_spots()
        random.shuffle(candidates)
        for spot in candidates:
            if db.occupy_spot(spot.id, license_plate, start_time, SpotStatus.AVAILABLE):
                assigned = spot
                break
            logger.info(f"Spot {spot.id} was taken concurrently, trying next candidate")

    if assigned is None:
        raise ParkingError('No available parking spots found.', 404, use_error_key=True)

    logger.info(f"[HARDWARE] Vehicle {license_plate} assigned to spot {assigned.id} at {start_time.isoformat()}.")

    return {
        'message': f'Welcome {user.display_name}! Please park at spot: {assigned.id}',
        'spotId': assigned.id,
        'startTime': start_time.isoformat(),
        'userDisplayName': user.display_name,
    }


# ============================================================================
# BILLING
# ============================================================================

def calculate_bill(start_time, end_time, hourly_rate=None) -> float:
    """Every started hour is billed, with a one hour minimum"""
    rate = config.HOURLY_RATE if hourly_rate is None else hourly_rate
    elapsed_hours = (end_time - start_time).total_seconds() / 3600.0
    billed_hours = max(math.ceil(elapsed_hours), 1)
    return float(billed_hours * rate)


def format_duration(start_time, end_time) -> str:
    """Human readable distance between two times, e.g. 'about 2 hours'"""
    seconds = abs((end_time - start_time).total_seconds())
    minutes = int(round(seconds / 60.0))

    if minutes < 1:
        return 'less than a minute'
    if minutes == 1:
        return '1 minute'
    if minutes < 45:
        return f'{minutes} minutes'
    if minutes < 90:
        return 'about 1 hour'
    if minutes < 24 * 60:
        return f'about {int(round(minutes / 60.0))} hours'
    if minutes < 42 * 60:
        return '1 day'
    if minutes < 30 * 24 * 60:
        return f'{int(round(minutes / (24 * 60.0)))} days'
    if minutes < 45 * 24 * 60:
        return 'about 1 month'
    if minutes < 60 * 24 * 60:
        return 'about 2 months'

    months = int(round(minutes / (30 * 24 * 60.0)))
    if months < 12:
        return f'{months} months'

    years, remainder = divmod(months, 12)
    unit = 'year' if years == 1 else 'years'
    if remainder < 3:
        return f'about {years} {unit}'
    if remainder < 9:
        return f'over {years} {unit}'
    return f'almost {years + 1} years'


# ============================================================================
# EXIT GATE
# ============================================================================

def process_departure(db, license_plate) -> dict:
    """
    Handle a vehicle at the exit gate.

    Paid: record history, free the spot and open the gate.
    Unpaid: store the bill on the spot, flag it at the exit and keep the gate closed.
    """
    license_plate = normalize_plate(license_plate)
    if not license_plate:
        raise ParkingError('License plate is required', 400, use_error_key=True)

    spot = db.find_spot_occupied_by(license_plate)
    if spot is None:
        raise ParkingError(
            f'No active parking session found for vehicle {license_plate}.',
            404,
            use_error_key=True,
        )

    occupied = spot.occupied_by
    end_time = utcnow()
    duration = format_duration(occupied.start_time, end_time)
    total_cost = calculate_bill(occupied.start_time, end_time)

    if occupied.is_paid:
        _record_history(db, spot, license_plate, end_time, total_cost, duration)
        db.release_spot(spot.id)
        logger.info(f"[HARDWARE] Vehicle {license_plate} PAID & DEPARTED from spot {spot.id}.")
        return {
            'success': True,
            'gateOpen': True,
            'message': 'Payment verified. Gate opening. Travel safe!',
            'licensePlate': license_plate,
            'spotId': spot.id,
        }

    db.mark_spot_at_exit(spot.id, total_cost)
    logger.info(
        f"[HARDWARE] Vehicle {license_plate} departure BLOCKED (Unpaid). "
        f"Bill: ${total_cost:.2f}. Flagged at Exit."
    )
    return {
        'success': False,
        'gateOpen': False,
        'message': f'Payment of ${total_cost:.2f} is required to open the gate.',
        'licensePlate': license_plate,
        'duration': duration,
        'totalCost': f'{total_cost:.2f}',
        'spotId': spot.id,
        'isAtExit': True,
    }


def _record_history(db, spot, license_plate, end_time, total_cost, duration):
    """History is best effort: a failure must not keep the gate closed"""
    try:
        user = db.get_user_by_car_number(license_plate)
        if user is None:
            logger.warning(f"No registered owner for {license_plate}; history not recorded")
            return
        billed = spot.occupied_by.total_bill
        db.insert_history(ParkingHistory(
            user_id=user.uid,
            car_number=license_plate,
            spot_id=spot.id,
            spot_type=spot.type,
            start_time=spot.occupied_by.start_time,
            end_time=end_time,
            total_cost=billed if billed else total_cost,
            duration=duration,
        ))
    except Exception as e:
        logger.error(f"Failed to save parking history: {e}")


# ============================================================================
# PAYMENT
# ============================================================================

def pay_for_spot(db, user, spot_id) -> dict:
    if not spot_id:
        raise ParkingError('Spot ID is required', 400, use_error_key=True)

    spot = db.get_spot(spot_id)
    if spot is None:
        raise ParkingError('Spot not found', 404, use_error_key=True)

    if spot.occupied_by is None or spot.occupied_by.license_plate != user.car_number:
        raise ParkingError('Unauthorized to pay for this spot', 403, use_error_key=True)

    db.mark_spot_paid(spot.id)
    logger.info(f"Spot {spot.id} paid by user {user.uid} ({user.car_number})")
    return {
        'success': True,
        'message': 'Payment settled. The gate will now open upon departure.',
    }


# ============================================================================
# HARDWARE SENSOR
# ============================================================================

def set_hardware_status(db, spot_id, occupied) -> dict:
    """Apply an occupancy sensor reading to a spot"""
    if not spot_id:
        raise ParkingError('Spot ID is required', 400, use_error_key=True)

    spot = db.get_spot(spot_id)
    if spot is None:
        raise ParkingError(f'Spot {spot_id} not found.', 404, use_error_key=True)
    previous_status = spot.status

    if occupied:
        spot.status = SpotStatus.IN_USE
        spot.occupied_by = OccupiedDetails(
            license_plate=HARDWARE_PLACEHOLDER_PLATE,
            start_time=utcnow(),
        )
        spot.reserved_by = None
    else:
        spot.status = SpotStatus.AVAILABLE
        spot.occupied_by = None
        spot.reserved_by = None

    save_spot_if_unchanged(db, spot, previous_status)

    return {
        'success': True,
        'message': f'Spot {spot_id} is now {spot.status}.',
    }


# ============================================================================
# SPOT INVENTORY
# ============================================================================

def demo_spots(now=None) -> List[ParkingSpot]:
    """Fixed starter inventory used by the 'seed' action"""
    now = now or utcnow()
    return [
        ParkingSpot(id='A-1', spot_number=1, type=SpotType.REGULAR),
        ParkingSpot(id='A-2', spot_number=2, type=SpotType.REGULAR),
        ParkingSpot(
            id='A-3', spot_number=3, type=SpotType.ACCESSIBLE, status=SpotStatus.IN_USE,
            occupied_by=OccupiedDetails(license_plate='FAST-CAR', start_time=now - timedelta(hours=1)),
        ),
        ParkingSpot(id='A-4', spot_number=4, type=SpotType.EV),
        ParkingSpot(
            id='B-1', spot_number=1, type=SpotType.REGULAR, status=SpotStatus.BOOKED,
            reserved_by=ReservationDetails(
                user_id='', car_number='DEMO-123', phone_number='', reserved_at=now,
            ),
        ),
        ParkingSpot(id='B-2', spot_number=2, type=SpotType.REGULAR, status=SpotStatus.UNAVAILABLE),
        ParkingSpot(id='B-3', spot_number=3, type=SpotType.EV),
    ]


def seed_spots(db) -> List[ParkingSpot]:
    if db.count_spots() > 0:
        raise ParkingError('Database already seeded.', 409, use_error_key=True)
    spots = demo_spots()
    db.insert_spots(spots)
    logger.info(f"Seeded {len(spots)} parking spots")
    return spots


def create_spots(db, zone_id='A', spot_type=SpotType.REGULAR, quantity=1) -> List[ParkingSpot]:
    """
    Add `quantity` spots (clamped to 1..MAX_BULK_SPOTS) to a zone.
    Spot numbers continue from the highest number in the whole lot.
    """
    try:
        quantity = int(quantity)
    except (TypeError, ValueError):
        raise ParkingError('Quantity must be a whole number', 400, use_error_key=True)
    quantity = max(1, min(config.MAX_BULK_SPOTS, quantity))

    if spot_type not in SpotType.ALL:
        raise ParkingError(f'Invalid spot type: {spot_type}', 400, use_error_key=True)

    zone_id = str(zone_id or 'A').strip()
    if not zone_id:
        raise ParkingError('Zone ID is required', 400, use_error_key=True)

    highest = db.get_max_spot_number()
    start_number = (highest or 0) + 1

    spots = [
        ParkingSpot(id=f'{zone_id}-{number}', spot_number=number, type=spot_type)
        for number in range(start_number, start_number + quantity)
    ]

    clashes = db.spot_ids_exist([spot.id for spot in spots])
    if clashes:
        raise ParkingError(
            f"Spot id already exists: {', '.join(sorted(clashes))}", 409, use_error_key=True
        )

    db.insert_spots(spots)
    logger.info(f"Created {quantity} {spot_type} spot(s) in zone {zone_id}")
    return spots


# Status a spot must currently have before it may move to the key status
ALLOWED_TRANSITIONS = {
    SpotStatus.BOOKED: (SpotStatus.AVAILABLE, SpotStatus.BOOKED),
    SpotStatus.IN_USE: (SpotStatus.AVAILABLE, SpotStatus.BOOKED, SpotStatus.IN_USE),
}

PATCHABLE_FIELDS = ('status', 'type', 'spotNumber', 'occupiedBy', 'reservedBy')

# The only detail a non-manager may send along with each status they may set
DRIVER_UPDATES = {
    SpotStatus.BOOKED: 'reservedBy',
    SpotStatus.IN_USE: 'occupiedBy',
}

# Settled by the exit gate and /api/parking/pay, never by a driver's PATCH
BILLING_FIELDS = ('isPaid', 'isAtExit', 'totalBill')


def requires_manager(updates: dict) -> bool:
    """
    Reserving or occupying is open to any logged-in user when the payload
    carries only the status and its matching detail; everything else is
    manager-only.
    """
    status = updates.get('status')
    detail = DRIVER_UPDATES.get(status) if isinstance(status, str) else None
    if detail is None:
        return True
    return any(key not in ('status', detail) for key in updates if key in PATCHABLE_FIELDS)


def held_by_someone_else(spot: ParkingSpot, user) -> bool:
    if spot.occupied_by is not None and spot.occupied_by.license_plate != user.car_number:
        return True
    reservation = spot.reserved_by
    if reservation is not None and reservation.user_id != user.uid \
            and reservation.car_number != user.car_number:
        return True
    return False


def apply_spot_updates(spot: ParkingSpot, updates: dict, user) -> ParkingSpot:
    """
    Apply a partial update (camelCase keys, None clears a field) to a spot
    and keep occupancy/reservation consistent with the resulting status.

    Non-managers may only reserve or occupy a spot that is free or already
    theirs, and cannot touch billing details.
    """
    if not isinstance(updates, dict):
        raise ParkingError('No valid updates provided', 400, use_error_key=True)

    fields = {key: updates[key] for key in PATCHABLE_FIELDS if key in updates}
    if not fields:
        raise ParkingError('No valid updates provided', 400, use_error_key=True)

    if 'status' in fields:
        status = fields['status']
        if status not in SpotStatus.ALL:
            raise ParkingError(f'Invalid spot status: {status}', 400, use_error_key=True)
        allowed_from = ALLOWED_TRANSITIONS.get(status)
        if allowed_from is not None and spot.status not in allowed_from:
            raise ParkingError(
                f'Spot {spot.id} is {spot.status} and cannot become {status}.',
                409,
                use_error_key=True,
            )

    is_manager = user is not None and user.is_manager
    if not is_manager:
        if user is None or requires_manager(fields):
            raise ParkingError('Unauthorized. Managers only.', 403, use_error_key=True)
        if held_by_someone_else(spot, user):
            raise ParkingError(f'Spot {spot.id} is held by another vehicle.', 403, use_error_key=True)
        occupied = fields.get('occupiedBy')
        if isinstance(occupied, dict) and any(key in occupied for key in BILLING_FIELDS):
            raise ParkingError('Only managers can change billing details.', 403, use_error_key=True)

    if 'type' in fields:
        if fields['type'] not in SpotType.ALL:
            raise ParkingError(f"Invalid spot type: {fields['type']}", 400, use_error_key=True)
        spot.type = fields['type']

    if 'spotNumber' in fields:
        try:
            spot.spot_number = int(fields['spotNumber'])
        except (TypeError, ValueError):
            raise ParkingError('spotNumber must be a whole number', 400, use_error_key=True)

    if 'occupiedBy' in fields:
        value = fields['occupiedBy']
        if value is None:
            spot.occupied_by = None
        elif not isinstance(value, dict) or not normalize_plate(value.get('licensePlate')):
            raise ParkingError('occupiedBy.licensePlate is required', 400, use_error_key=True)
        elif is_manager or spot.occupied_by is None:
            try:
                spot.occupied_by = OccupiedDetails.from_dict(value)
            except (TypeError, ValueError) as e:
                raise ParkingError(f'Invalid occupiedBy: {e}', 400, use_error_key=True)
            if not is_manager:
                spot.occupied_by.start_time = utcnow()
        # a driver re-sending their own occupancy keeps its start time and bill

    if 'reservedBy' in fields:
        value = fields['reservedBy']
        if value is None:
            spot.reserved_by = None
        elif isinstance(value, dict) and normalize_plate(value.get('carNumber')):
            data = dict(value)
            if not data.get('userId') and user is not None:
                data['userId'] = user.uid
            try:
                spot.reserved_by = ReservationDetails.from_dict(data)
            except (TypeError, ValueError) as e:
                raise ParkingError(f'Invalid reservedBy: {e}', 400, use_error_key=True)
        else:
            raise ParkingError('reservedBy.carNumber is required', 400, use_error_key=True)

    if 'status' in fields:
        spot.status = fields['status']

    _enforce_status_invariant(spot)
    return spot


def _enforce_status_invariant(spot: ParkingSpot):
    if spot.status == SpotStatus.IN_USE:
        if spot.occupied_by is None:
            raise ParkingError('occupiedBy is required for an in-use spot', 400, use_error_key=True)
        spot.reserved_by = None
    elif spot.status == SpotStatus.BOOKED:
        if spot.reserved_by is None:
            raise ParkingError('reservedBy is required for a booked spot', 400, use_error_key=True)
        spot.occupied_by = None
    else:
        spot.occupied_by = None
        spot.reserved_by = None


def save_spot_if_unchanged(db, spot: ParkingSpot, expected_status):
    """Write the spot back only if its status is still the one it was read with"""
    if db.save_spot(spot, expected_status=expected_status):
        return
    if db.get_spot(spot.id) is None:
        raise ParkingError('Spot not found', 404, use_error_key=True)
    raise ParkingError(
        f'Spot {spot.id} was changed by another request. Please retry.', 409, use_error_key=True
    )


def update_spot(db, spot_id, updates, user) -> ParkingSpot:
    spot = find_spot_or_404(db, spot_id)
    previous_status = spot.status
    apply_spot_updates(spot, updates, user)
    save_spot_if_unchanged(db, spot, previous_status)
    logger.info(f"Spot {spot.id} updated by user {user.uid}: {previous_status} -> {spot.status}")
    return spot


def find_spot_or_404(db, spot_id) -> ParkingSpot:
    spot = db.get_spot(spot_id)
    if spot is None:
        raise ParkingError('Spot not found', 404, use_error_key=True)
    return spot


def get_history(db, user, limit: Optional[int] = None) -> list:
    return db.list_history(user.uid, limit or config.HISTORY_LIMIT)
