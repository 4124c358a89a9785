"""
Database utility commands for the Park Smart backend.

Usage:
    python db_utils.py <command> [options]

Commands:
    init        - Create tables and indexes
    seed        - Insert the demo spot inventory into an empty lot
    check       - Verify database schema is correct
    view        - Display current database contents
    promote     - Give a user the manager role
    clear       - Free every in-use or booked spot

Examples:
    python db_utils.py init
    python db_utils.py promote --email manager@example.com
    python db_utils.py view
"""

import argparse
import sys

from db_helper import ParkingDB
from models import Role
from parking_logic import ParkingError, seed_spots


def print_section(title):
    """Print a formatted section header."""
    print(f"\n{'='*70}")
    print(f"{title:^70}")
    print('='*70)


# =============================================================================
# INIT - Create schema
# =============================================================================

def init_database(db):
    """Create all tables if missing."""
    print_section("DATABASE INIT")

    try:
        db.init_schema()
        print("\nSchema created (existing tables left untouched)")
        return True
    except Exception as e:
        print(f"Error: {e}")
        return False


# =============================================================================
# SEED - Demo inventory
# =============================================================================

def seed_database(db):
    """Insert the demo spots if the lot is empty."""
    print_section("SEED PARKING SPOTS")

    try:
        spots = seed_spots(db)
    except ParkingError as e:
        print(f"\nSkipped: {e.message}")
        return False
    except Exception as e:
        print(f"Error: {e}")
        return False

    for spot in spots:
        print(f"  {spot.id:<6} #{spot.spot_number:<3} {spot.type:<11} {spot.status}")
    print(f"\nInserted {len(spots)} spot(s)")
    return True


# =============================================================================
# CHECK - Verify database schema
# =============================================================================

def check_structure(db):
    """Verify database schema is correct."""
    print_section("DATABASE SCHEMA CHECK")

    try:
        db.ping()
        print("\nConnection: OK")

        missing = db.missing_tables()
        if missing:
            print(f"\nMissing required tables: {missing}")
            print("Run: python db_utils.py init")
            return False

        print("\nSchema check: OK")
        return True

    except Exception as e:
        print(f"Error: {e}")
        return False


# =============================================================================
# VIEW - Display database contents
# =============================================================================

def view_data(db):
    """Display current database contents."""
    print_section("DATABASE CONTENTS")

    try:
        by_status = db.count_spots_by_status()
        total = sum(by_status.values())

        print("\nStatistics:")
        print(f"  Users: {db.count_users()}")
        print(f"  Total Spots: {total}")
        for status, count in sorted(by_status.items()):
            print(f"    {status}: {count}")
        print(f"  History Rows: {db.count_history()}")

        print("\nSpots:")
        for spot in db.list_spots():
            detail = ""
            if spot.occupied_by:
                paid = "paid" if spot.occupied_by.is_paid else "unpaid"
                detail = f" [{spot.occupied_by.license_plate}, {paid}]"
            elif spot.reserved_by:
                detail = f" [reserved for {spot.reserved_by.car_number}]"
            print(f"  {spot.id:<6} {spot.type:<11} {spot.status}{detail}")

        print("\nLatest Camera Captures (last 10):")
        for log in db.list_camera_logs(10):
            time_str = log.timestamp.strftime("%Y-%m-%d %H:%M:%S")
            print(f"  {time_str}  {log.license_plate:<12} -> {log.spot_id}")

        return True

    except Exception as e:
        print(f"Error: {e}")
        return False


# =============================================================================
# PROMOTE - Grant manager role
# =============================================================================

def promote_user(db, email, role=Role.MANAGER):
    """Set a user's role."""
    print_section("PROMOTE USER")

    email = (email or '').strip().lower()
    try:
        if not db.set_user_role(email, role):
            print(f"\nNo user with email {email}")
            return False
        print(f"\n{email} is now '{role}'")
        return True
    except Exception as e:
        print(f"Error: {e}")
        return False


# =============================================================================
# CLEAR - Free all spots
# =============================================================================

def clear_spots(db):
    """Free every in-use or booked spot."""
    print_section("CLEAR OCCUPANCY")

    try:
        affected = db.release_all_spots()
        print(f"\nFreed {affected} spot(s)")
        return True
    except Exception as e:
        print(f"Error: {e}")
        return False


# =============================================================================
# MAIN
# =============================================================================

def build_parser():
    parser = argparse.ArgumentParser(
        description="Database utilities for the Park Smart backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init', help='Create tables and indexes')
    subparsers.add_parser('seed', help='Insert demo parking spots')
    subparsers.add_parser('check', help='Verify database schema')
    subparsers.add_parser('view', help='Display database contents')

    promote_parser = subparsers.add_parser('promote', help='Grant a user the manager role')
    promote_parser.add_argument('--email', required=True, help='Email of the user to promote')
    promote_parser.add_argument('--role', default=Role.MANAGER, choices=Role.ALL, help='Role to assign')

    subparsers.add_parser('clear', help='Free every in-use or booked spot')

    return parser


def main(argv=None, db=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    db = db or ParkingDB()

    if args.command == 'init':
        ok = init_database(db)
    elif args.command == 'seed':
        ok = seed_database(db)
    elif args.command == 'check':
        ok = check_structure(db)
    elif args.command == 'view':
        ok = view_data(db)
    elif args.command == 'promote':
        ok = promote_user(db, args.email, args.role)
    else:
        ok = clear_spots(db)

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
