"""Room service client tests with the HTTP layer stubbed out."""
import jwt
import pytest
import requests

from flexidual.services.video_backend import LiveKitBackend
from flexidual.utils.errors import DispatchFailure, RoomFull, RoomNotFound

SECRET = 'test-video-secret-with-enough-length'


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError('no body')
        return self._body


@pytest.fixture
def backend():
    return LiveKitBackend('http://video.test/', 'key', SECRET, max_participants=2)


@pytest.fixture
def calls(monkeypatch):
    """Queue responses for requests.post and capture the calls."""
    state = {'responses': [], 'requests': []}

    def fake_post(url, json=None, headers=None, timeout=None):
        state['requests'].append({'url': url, 'json': json, 'headers': headers})
        response = state['responses'].pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(requests, 'post', fake_post)
    return state


def test_from_config(app):
    backend = LiveKitBackend.from_config(app.config)
    assert backend.server_url == 'http://video.test'
    assert backend.max_participants == 50


def test_ensure_room_creates_room(backend, calls):
    calls['responses'].append(FakeResponse(200, {'name': 'rm-1', 'num_participants': 1}))

    room = backend.ensure_room('rm-1')

    assert room['name'] == 'rm-1'
    request = calls['requests'][0]
    assert request['url'] == 'http://video.test/twirp/livekit.RoomService/CreateRoom'
    assert request['json'] == {'name': 'rm-1', 'max_participants': 2}
    token = request['headers']['Authorization'].split(' ', 1)[1]
    assert jwt.decode(token, SECRET, algorithms=['HS256'])['video']['roomCreate'] is True


def test_ensure_room_rejects_full_room(backend, calls):
    calls['responses'].append(FakeResponse(200, {'name': 'rm-1', 'num_participants': 2}))
    with pytest.raises(RoomFull):
        backend.ensure_room('rm-1')


@pytest.mark.parametrize('response, error', [
    (FakeResponse(404, {'code': 'not_found'}), RoomNotFound),
    (FakeResponse(429, {'code': 'resource_exhausted'}), RoomFull),
    (FakeResponse(500, None), DispatchFailure),
    (requests.ConnectionError('refused'), DispatchFailure),
])
def test_backend_errors_are_typed(backend, calls, response, error):
    calls['responses'].append(response)
    with pytest.raises(error):
        backend.ensure_room('rm-1')


def test_issue_token_grants(backend):
    student = jwt.decode(backend.issue_token('rm-1', 'alice', 'Alice', 'student'), SECRET, algorithms=['HS256'])
    teacher = jwt.decode(backend.issue_token('rm-1', 'tom', 'Tom', 'teacher'), SECRET, algorithms=['HS256'])

    assert student['sub'] == 'alice'
    assert student['iss'] == 'key'
    assert student['video']['room'] == 'rm-1'
    assert student['video']['roomAdmin'] is False
    assert teacher['video']['roomAdmin'] is True


def test_join_returns_ticket(backend, calls):
    calls['responses'].append(FakeResponse(200, {'name': 'rm-1', 'num_participants': 0}))
    ticket = backend.join('rm-1', 'alice', 'Alice', 'student')

    assert ticket.room_name == 'rm-1'
    assert ticket.identity == 'alice'
    assert ticket.server_url == 'http://video.test'
