"""
Authentication helpers: password hashing, session login and route guards.
Sessions live in Flask's signed session cookie under 'uid'.
"""
import logging
from functools import wraps
from typing import Optional

from flask import current_app, g, jsonify, session
from werkzeug.security import check_password_hash, generate_password_hash

from models import Role, User, normalize_plate

logger = logging.getLogger(__name__)

SESSION_KEY = 'uid'


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return check_password_hash(password_hash, password)


def normalize_email(email) -> str:
    return str(email or '').strip().lower()


def get_store():
    return current_app.config['PARKING_DB']


def register_user(db, email, password, display_name, car_number, phone_number=None) -> Optional[User]:
    """Create a user with role 'user'. Returns None when email or car number is taken"""
    email = normalize_email(email)
    car_number = normalize_plate(car_number)

    if db.find_user(email, car_number) is not None:
        return None

    user = User(
        email=email,
        password_hash=hash_password(password),
        display_name=str(display_name).strip(),
        car_number=car_number,
        phone_number=phone_number,
        role=Role.USER,
    )
    return db.create_user(user)


def authenticate(db, identification, password):
    """Look the user up by email or car number and check the password"""
    identification = str(identification or '').strip()
    user = db.find_user(normalize_email(identification), normalize_plate(identification))
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def login_user(user: User):
    session.clear()
    session[SESSION_KEY] = user.uid
    session.permanent = True


def logout_user():
    session.clear()


def current_user():
    """User of the current session, cached per request"""
    if 'current_user' in g:
        return g.current_user

    user = None
    uid = session.get(SESSION_KEY)
    if uid:
        user = get_store().get_user(uid)
        if user is None:
            logger.warning(f"Session references unknown user {uid}")
    g.current_user = user
    return user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if current_user() is None:
            return jsonify({'error': 'Unauthorized'}), 401
        return view(*args, **kwargs)
    return wrapper


def manager_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        user = current_user()
        if user is None or not user.is_manager:
            return jsonify({'error': 'Unauthorized. Managers only.'}), 403
        return view(*args, **kwargs)
    return wrapper
