import os
import time
import base64
import binascii
import logging
from datetime import datetime, timedelta

from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS

import config
import auth
from db_helper import ParkingDB
from models import CameraLog, normalize_plate
from parking_logic import (
    ParkingError,
    assign_spot_to_vehicle,
    create_spots,
    find_spot_or_404,
    get_history,
    pay_for_spot,
    process_departure,
    requires_manager,
    seed_spots,
    set_hardware_status,
    update_spot,
)
from plate_reader import get_plate_reader

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app, resources={r"/api/*": {"origins": "*"}}, supports_credentials=True)

app.config.update(
    SECRET_KEY=config.SECRET_KEY,
    SESSION_COOKIE_NAME='parksmart_session',
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE='Lax',
    SESSION_COOKIE_SECURE=config.SESSION_COOKIE_SECURE,
    PERMANENT_SESSION_LIFETIME=timedelta(days=config.SESSION_LIFETIME_DAYS),
    UPLOAD_FOLDER=config.UPLOAD_FOLDER,
    PARKING_DB=ParkingDB(),
    PLATE_READER=None,  # created lazily on first camera request
)


def get_db():
    return app.config['PARKING_DB']


def get_reader():
    reader = app.config.get('PLATE_READER')
    if reader is None:
        reader = get_plate_reader()
        app.config['PLATE_READER'] = reader
    return reader


def error_response(error: ParkingError):
    return jsonify(error.to_dict()), error.status_code


def server_error(context, e, message='Internal server error'):
    logger.exception(f"API Error ({context}): {e}")
    return jsonify({'error': message, 'details': str(e)}), 500


@app.errorhandler(500)
def handle_internal_error(e):
    original = getattr(e, 'original_exception', None) or e
    return jsonify({'error': 'Internal server error', 'details': str(original)}), 500


# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.route('/api/auth/signup', methods=['POST'])
def signup():
    """Register a driver account and start a session"""
    data = request.get_json(silent=True) or {}
    email = auth.normalize_email(data.get('email'))
    password = data.get('password')
    display_name = (data.get('displayName') or '').strip()
    car_number = normalize_plate(data.get('carNumber'))
    phone_number = data.get('phoneNumber')

    if not email or not password or not display_name or not car_number:
        return jsonify({'error': 'Missing required fields'}), 400

    try:
        user = auth.register_user(get_db(), email, password, display_name, car_number, phone_number)
        if user is None:
            return jsonify({'error': 'User with this email or car number already exists'}), 409

        auth.login_user(user)
        logger.info(f"New user {user.uid} ({user.car_number}) signed up")
        return jsonify({'success': True, 'user': user.to_dict()}), 200
    except Exception as e:
        return server_error('Signup', e)


@app.route('/api/auth/login', methods=['POST'])
def login():
    """Log in with email or car number"""
    data = request.get_json(silent=True) or {}
    identification = (data.get('identification') or '').strip()
    password = data.get('password')

    if not identification or not password:
        return jsonify({'error': 'Missing credentials'}), 400

    try:
        user = auth.authenticate(get_db(), identification, password)
        if user is None:
            return jsonify({'error': 'Invalid credentials'}), 401

        auth.login_user(user)
        return jsonify({'success': True, 'user': user.to_dict()}), 200
    except Exception as e:
        return server_error('Login', e)


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    auth.logout_user()
    return jsonify({'success': True}), 200


@app.route('/api/auth/me', methods=['GET'])
def me():
    try:
        user = auth.current_user()
        return jsonify({'user': user.to_dict() if user else None}), 200
    except Exception as e:
        return server_error('Me', e)


# ============================================================================
# PARKING SPOT ENDPOINTS - FULL CRUD
# ============================================================================

@app.route('/api/parking-spots', methods=['GET'])
def get_parking_spots():
    """GET - All spots ordered by spot number"""
    try:
        spots = get_db().list_spots()
        return jsonify([spot.to_dict() for spot in spots]), 200
    except Exception as e:
        return server_error('Parking spots GET', e, 'Failed to fetch parking spots')


@app.route('/api/parking-spots', methods=['POST'])
@auth.manager_required
def create_parking_spots():
    """CREATE - Seed the demo inventory or bulk-add spots to a zone"""
    data = request.get_json(silent=True) or {}

    try:
        db = get_db()
        if data.get('action') == 'seed':
            spots = seed_spots(db)
            return jsonify({'success': True, 'spots': [spot.to_dict() for spot in spots]}), 200

        spots = create_spots(
            db,
            zone_id=data.get('zoneId', 'A'),
            spot_type=data.get('type', 'regular'),
            quantity=data.get('quantity', 1),
        )
        count = len(spots)
        return jsonify({
            'spots': [spot.to_dict() for spot in spots],
            'count': count,
            'message': f"Successfully created {count} parking spot{'s' if count > 1 else ''}"
        }), 201
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Parking spot POST', e, 'Failed to create parking spot')


@app.route('/api/parking-spots/<spot_id>', methods=['GET'])
def get_parking_spot(spot_id):
    try:
        spot = find_spot_or_404(get_db(), spot_id)
        return jsonify(spot.to_dict()), 200
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Parking spot GET', e, 'Failed to fetch parking spot')


@app.route('/api/parking-spots/<spot_id>', methods=['PATCH'])
def update_parking_spot(spot_id):
    """UPDATE - Reserve/occupy (any user) or edit a spot (managers)"""
    updates = request.get_json(silent=True)
    if not isinstance(updates, dict):
        return jsonify({'error': 'No valid updates provided'}), 400

    try:
        user = auth.current_user()
        if requires_manager(updates):
            if user is None or not user.is_manager:
                return jsonify({'error': 'Unauthorized. Managers only.'}), 403
        elif user is None:
            return jsonify({'error': 'Unauthorized. Login required.'}), 403

        spot = update_spot(get_db(), spot_id, updates, user)
        return jsonify(spot.to_dict()), 200
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Update spot', e, 'Failed to update parking spot')


@app.route('/api/parking-spots/<spot_id>', methods=['DELETE'])
@auth.manager_required
def delete_parking_spot(spot_id):
    """DELETE - Remove a spot"""
    try:
        if not get_db().delete_spot(spot_id):
            return jsonify({'error': 'Spot not found'}), 404
        logger.info(f"Spot {spot_id} deleted")
        return jsonify({'success': True}), 200
    except Exception as e:
        return server_error('Delete spot', e, 'Failed to delete parking spot')


# ============================================================================
# HARDWARE ENDPOINTS (ENTRANCE / EXIT GATES, SENSORS, CAMERA)
# ============================================================================

@app.route('/api/hardware/entrance', methods=['POST'])
def hardware_entrance():
    """Assign a spot to a vehicle whose plate was read at the entrance"""
    data = request.get_json(silent=True) or {}
    license_plate = normalize_plate(data.get('licensePlate'))

    if not license_plate:
        return jsonify({'error': 'License plate is required'}), 400

    try:
        result = assign_spot_to_vehicle(get_db(), license_plate)
        return jsonify({
            'success': True,
            'message': result['message'],
            'spotId': result['spotId'],
            'startTime': result['startTime'],
        }), 200
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Hardware Entrance', e, 'Invalid request')


@app.route('/api/hardware/departure', methods=['POST'])
def hardware_departure():
    """Open the gate for a paid vehicle, or present the bill"""
    data = request.get_json(silent=True) or {}

    try:
        result = process_departure(get_db(), data.get('licensePlate'))
        return jsonify(result), 200
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Hardware Departure', e, 'Invalid request')


@app.route('/api/hardware/status', methods=['POST'])
def hardware_status():
    """Occupancy sensor update for a single spot"""
    data = request.get_json(silent=True) or {}

    try:
        result = set_hardware_status(get_db(), data.get('spotId'), bool(data.get('occupied')))
        return jsonify(result), 200
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Hardware Status', e)


def read_camera_image():
    """Image bytes from a multipart 'image' file or a base64 'image' JSON field"""
    if 'image' in request.files:
        return request.files['image'].read()

    data = request.get_json(silent=True) or {}
    encoded = data.get('image')
    if not encoded:
        return None

    if isinstance(encoded, str) and encoded.startswith('data:') and ',' in encoded:
        encoded = encoded.split(',', 1)[1]
    try:
        return base64.b64decode(encoded)
    except (binascii.Error, ValueError, TypeError):
        return b''


def save_camera_image(image_bytes):
    """Store the capture; returns its public path even if saving fails"""
    filename = f"cam-{int(time.time() * 1000)}.jpg"
    upload_folder = app.config['UPLOAD_FOLDER']
    try:
        os.makedirs(upload_folder, exist_ok=True)
        filepath = os.path.join(upload_folder, filename)
        with open(filepath, 'wb') as f:
            f.write(image_bytes)
        logger.info(f"[CAMERA] Image saved to {filepath}")
    except OSError as e:
        logger.error(f"Failed to save image: {e}")
    return f"{config.UPLOAD_URL_PREFIX}/{filename}"


@app.route('/api/hardware/camera', methods=['POST'])
def hardware_camera():
    """Entrance camera: save the capture, read the plate, assign a spot"""
    image_bytes = read_camera_image()
    if image_bytes is None:
        return jsonify({'error': 'No image data received in JSON body.'}), 400
    if not image_bytes:
        return jsonify({'error': 'Invalid image data.'}), 400

    try:
        image_path = save_camera_image(image_bytes)

        logger.info("[CAMERA] Starting OCR processing...")
        detected_plate = get_reader().detect_license_plate(image_bytes)
        logger.info(f"[CAMERA] OCR Result: {detected_plate}")

        if not detected_plate:
            return jsonify({
                'success': False,
                'message': 'No license plate detected in the image.',
                'imagePath': image_path
            }), 422

        db = get_db()
        try:
            result = assign_spot_to_vehicle(db, detected_plate)
        except ParkingError as e:
            return jsonify({
                'success': False,
                'message': e.message,
                'spotId': e.extra.get('spotId'),
                'carNumber': detected_plate,
                'imagePath': image_path
            }), e.status_code

        try:
            db.insert_camera_log(CameraLog(
                license_plate=detected_plate,
                spot_id=result['spotId'],
                image_path=image_path,
                user_display_name=result['userDisplayName'],
            ))
        except Exception as e:
            logger.error(f"Failed to write camera log: {e}")

        logger.info(f"[CAMERA] Vehicle {detected_plate} entry processed successfully.")
        return jsonify({
            'success': True,
            'message': result['message'],
            'spotId': result['spotId'],
            'carNumber': detected_plate,
            'startTime': result['startTime'],
            'userDisplayName': result['userDisplayName'],
            'imagePath': image_path
        }), 200
    except Exception as e:
        return server_error('Hardware Camera', e)


@app.route('/cam-uploads/<path:filename>')
def serve_camera_image(filename):
    """Serve a saved camera capture"""
    return send_from_directory(os.path.abspath(app.config['UPLOAD_FOLDER']), filename)


@app.route('/api/camera-logs', methods=['GET'])
def get_camera_logs():
    try:
        logs = get_db().list_camera_logs(config.CAMERA_LOG_LIMIT)
        return jsonify([log.to_dict() for log in logs]), 200
    except Exception as e:
        return server_error('Camera logs', e)


# ============================================================================
# DRIVER ENDPOINTS (PAYMENT / HISTORY)
# ============================================================================

@app.route('/api/parking/pay', methods=['POST'])
@auth.login_required
def pay():
    data = request.get_json(silent=True) or {}

    try:
        result = pay_for_spot(get_db(), auth.current_user(), data.get('spotId'))
        return jsonify(result), 200
    except ParkingError as e:
        return error_response(e)
    except Exception as e:
        return server_error('Payment', e, 'Failed to process payment')


@app.route('/api/parking/history', methods=['GET'])
@auth.login_required
def parking_history():
    try:
        history = get_history(get_db(), auth.current_user())
        return jsonify([entry.to_dict() for entry in history]), 200
    except Exception as e:
        return server_error('History', e, 'Failed to fetch history')


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    try:
        get_db().ping()
        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': datetime.now().isoformat()
        }), 200
    except Exception as e:
        return jsonify({
            'status': 'unhealthy',
            'error': str(e)
        }), 500


@app.route('/', methods=['GET'])
def home():
    return jsonify({
        'message': 'Park Smart API',
        'endpoints': {
            'auth': {
                'POST /api/auth/signup': 'Create a driver account',
                'POST /api/auth/login': 'Log in with email or car number',
                'POST /api/auth/logout': 'End the session',
                'GET /api/auth/me': 'Current user'
            },
            'spots': {
                'GET /api/parking-spots': 'List spots',
                'POST /api/parking-spots': 'Seed or bulk-create spots (manager)',
                'GET /api/parking-spots/<id>': 'Spot details',
                'PATCH /api/parking-spots/<id>': 'Reserve, occupy or edit a spot',
                'DELETE /api/parking-spots/<id>': 'Remove a spot (manager)'
            },
            'hardware': {
                'POST /api/hardware/entrance': 'Assign a spot to a plate',
                'POST /api/hardware/departure': 'Exit gate check',
                'POST /api/hardware/status': 'Occupancy sensor update',
                'POST /api/hardware/camera': 'Entrance camera capture'
            },
            'driver': {
                'POST /api/parking/pay': 'Pay for the current session',
                'GET /api/parking/history': 'Past sessions'
            },
            'audit': {
                'GET /api/camera-logs': 'Latest camera captures'
            },
            'health': {
                'GET /api/health': 'Health check'
            }
        }
    }), 200


if __name__ == '__main__':
    logger.info(f"Starting Park Smart API Server on http://localhost:{config.PORT}")
    logger.info(f"Database: {config.DB_USER}@{config.DB_HOST}:{config.DB_PORT}/{config.DB_NAME}")
    app.run(host='0.0.0.0', port=config.PORT, debug=True)
