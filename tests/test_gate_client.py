"""Tests for the gate/camera HTTP client with requests mocked out."""
import base64

import pytest
import requests

import gate_client
from gate_client import GateClient


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=''):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


class PostRecorder(list):
    """Records requests.post calls and answers with `response` (or raises it)"""

    def __init__(self):
        super().__init__()
        self.response = FakeResponse(body={'success': True})

    def __call__(self, url, json=None, timeout=None):
        self.append({'url': url, 'json': json, 'timeout': timeout})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


@pytest.fixture
def posts(monkeypatch):
    recorder = PostRecorder()
    monkeypatch.setattr(gate_client.requests, 'post', recorder)
    return recorder


class TestGateClient:

    def test_entrance(self, posts):
        client = GateClient('http://gate.local:5001/', timeout=5)

        status, body = client.report_entrance('MH20EE7602')

        assert status == 200
        assert body == {'success': True}
        assert posts[0] == {
            'url': 'http://gate.local:5001/api/hardware/entrance',
            'json': {'licensePlate': 'MH20EE7602'},
            'timeout': 5,
        }
        assert client.api_calls_sent == 1

    def test_camera_image_is_base64(self, posts):
        GateClient('http://x').send_camera_image(b'\xff\xd8raw')
        sent = posts[0]['json']['image']
        assert base64.b64decode(sent) == b'\xff\xd8raw'
        assert posts[0]['url'].endswith('/api/hardware/camera')

    def test_camera_file(self, posts, tmp_path):
        image = tmp_path / 'car.jpg'
        image.write_bytes(b'jpeg')
        GateClient('http://x').send_camera_file(str(image))
        assert base64.b64decode(posts[0]['json']['image']) == b'jpeg'

    def test_status_and_departure(self, posts):
        client = GateClient('http://x')
        client.report_spot_status('A-1', True)
        client.report_departure('MH20EE7602')
        assert posts[0]['json'] == {'spotId': 'A-1', 'occupied': True}
        assert posts[1]['url'] == 'http://x/api/hardware/departure'

    def test_network_failure(self, posts):
        posts.response = requests.ConnectionError('refused')
        client = GateClient('http://x')

        status, body = client.report_entrance('MH20EE7602')

        assert status == 0
        assert 'refused' in body['error']
        assert client.api_calls_failed == 1

    def test_non_json_server_error(self, posts):
        posts.response = FakeResponse(status_code=502, text='Bad Gateway')
        client = GateClient('http://x')

        status, body = client.report_departure('MH20EE7602')

        assert status == 502
        assert body == {'error': 'Bad Gateway'}
        assert client.api_calls_failed == 1

    def test_client_errors_are_not_failures(self, posts):
        posts.response = FakeResponse(status_code=404, body={'error': 'No available parking spots found.'})
        client = GateClient('http://x')
        status, _ = client.report_entrance('MH20EE7602')
        assert status == 404
        assert client.api_calls_failed == 0


class TestCli:

    def test_entrance_command(self, posts, capsys):
        assert gate_client.main(['--url', 'http://x', 'entrance', 'MH20EE7602']) == 0
        assert 'Response Status: 200' in capsys.readouterr().out

    def test_missing_image(self, posts, tmp_path):
        assert gate_client.main(['camera', str(tmp_path / 'nope.jpg')]) == 1
        assert posts == []

    def test_status_flag(self, posts):
        gate_client.main(['--url', 'http://x', 'status', 'B-2', '--occupied'])
        assert posts[0]['json'] == {'spotId': 'B-2', 'occupied': True}
