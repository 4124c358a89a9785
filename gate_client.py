"""
Gate Client
Used by the entrance camera and the gate controllers to talk to the API:
- push a camera still for plate recognition and spot assignment
- report a plate read at the entrance or exit gate
- report a spot occupancy sensor change

Usage:
    python gate_client.py camera car.jpg
    python gate_client.py entrance MH20EE7602
    python gate_client.py departure MH20EE7602
    python gate_client.py status A-1 --occupied
"""
import argparse
import base64
import json
import logging
import os
import sys

import requests

import config

logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = os.environ.get('BACKEND_URL', f'http://localhost:{config.PORT}')


class GateClient:
    """Thin HTTP client for the hardware endpoints"""

    def __init__(self, backend_url: str = DEFAULT_BACKEND_URL, timeout: float = 30):
        self.backend_url = backend_url.rstrip('/')
        self.timeout = timeout
        self.api_calls_sent = 0
        self.api_calls_failed = 0

    def _post(self, path: str, payload: dict):
        """
        POST a JSON payload and return (status_code, body)

        Network failures are reported as status 0 so gate firmware can retry.
        """
        try:
            response = requests.post(
                f"{self.backend_url}{path}",
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Backend connection failed: {e}")
            self.api_calls_failed += 1
            return 0, {'error': str(e)}

        try:
            body = response.json()
        except ValueError:
            body = {'error': response.text}

        if response.status_code >= 500:
            self.api_calls_failed += 1
            logger.warning(f"Backend error {response.status_code} on {path}: {body}")
        else:
            self.api_calls_sent += 1
        return response.status_code, body

    def send_camera_image(self, image_bytes: bytes):
        """Send a camera still as base64 JSON"""
        encoded = base64.b64encode(image_bytes).decode('ascii')
        return self._post('/api/hardware/camera', {'image': encoded})

    def send_camera_file(self, image_path: str):
        with open(image_path, 'rb') as f:
            return self.send_camera_image(f.read())

    def report_entrance(self, license_plate: str):
        return self._post('/api/hardware/entrance', {'licensePlate': license_plate})

    def report_departure(self, license_plate: str):
        return self._post('/api/hardware/departure', {'licensePlate': license_plate})

    def report_spot_status(self, spot_id: str, occupied: bool):
        return self._post('/api/hardware/status', {'spotId': spot_id, 'occupied': occupied})


def main(argv=None):
    parser = argparse.ArgumentParser(description="Send gate/camera events to the Park Smart API")
    parser.add_argument('--url', default=DEFAULT_BACKEND_URL, help='Backend base URL')
    subparsers = parser.add_subparsers(dest='command')

    camera = subparsers.add_parser('camera', help='Upload a camera still')
    camera.add_argument('image', help='Path to a JPEG/PNG image')

    entrance = subparsers.add_parser('entrance', help='Report a plate at the entrance')
    entrance.add_argument('plate')

    departure = subparsers.add_parser('departure', help='Report a plate at the exit')
    departure.add_argument('plate')

    status = subparsers.add_parser('status', help='Report a spot sensor reading')
    status.add_argument('spot_id')
    status.add_argument('--occupied', action='store_true', help='Spot is occupied')

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(level=logging.INFO)
    client = GateClient(args.url)

    if args.command == 'camera':
        if not os.path.exists(args.image):
            print(f"Image not found: {args.image}")
            return 1
        status_code, body = client.send_camera_file(args.image)
    elif args.command == 'entrance':
        status_code, body = client.report_entrance(args.plate)
    elif args.command == 'departure':
        status_code, body = client.report_departure(args.plate)
    else:
        status_code, body = client.report_spot_status(args.spot_id, args.occupied)

    print(f"Response Status: {status_code}")
    print(json.dumps(body, indent=2))
    return 0 if status_code == 200 else 1


if __name__ == '__main__':
    sys.exit(main())
