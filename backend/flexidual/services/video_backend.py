"""Video back-end collaborator (LiveKit compatible room service).

The room service is called over HTTP with ``requests``; participant
access tokens are signed locally with PyJWT. Failures surface as typed
errors and are never retried here.
"""
import json
import time
from dataclasses import dataclass, asdict
from typing import Any, Dict

import jwt
import requests
from flask import current_app

from flexidual.utils.errors import DispatchFailure, RoomFull, RoomNotFound

EXTENSION_KEY = 'flexidual.video_backend'
STAFF_ROLES = {'teacher', 'tutor', 'admin', 'superadmin'}


@dataclass
class JoinTicket:
    """Everything a client needs to connect to a native room."""
    room_name: str
    server_url: str
    token: str
    identity: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class VideoBackend:
    """Interface of the video back-end."""

    server_url = ''

    def ensure_room(self, room_name: str) -> Dict[str, Any]:
        raise NotImplementedError

    def issue_token(self, room_name: str, identity: str, name: str, role: str) -> str:
        raise NotImplementedError

    def join(self, room_name: str, identity: str, name: str, role: str) -> JoinTicket:
        """Confirm the room is joinable and hand out a participant token."""
        self.ensure_room(room_name)
        return JoinTicket(
            room_name=room_name,
            server_url=self.server_url,
            token=self.issue_token(room_name, identity, name, role),
            identity=identity
        )


class LiveKitBackend(VideoBackend):
    """Room service client speaking the LiveKit Twirp JSON API."""

    def __init__(self, api_url: str, api_key: str, api_secret: str,
                 max_participants: int = 0, token_ttl: int = 21600, timeout: float = 10):
        self.server_url = api_url.rstrip('/')
        self.api_key = api_key
        self.api_secret = api_secret
        self.max_participants = max_participants
        self.token_ttl = token_ttl
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'LiveKitBackend':
        return cls(
            api_url=config['VIDEO_API_URL'],
            api_key=config['VIDEO_API_KEY'],
            api_secret=config['VIDEO_API_SECRET'],
            max_participants=config.get('VIDEO_ROOM_MAX_PARTICIPANTS', 0),
            token_ttl=config.get('VIDEO_TOKEN_TTL_SECONDS', 21600),
            timeout=config.get('VIDEO_REQUEST_TIMEOUT', 10)
        )

    def _sign(self, claims: Dict[str, Any], ttl: int) -> str:
        now = int(time.time())
        claims = dict(claims, iss=self.api_key, nbf=now, exp=now + ttl)
        return jwt.encode(claims, self.api_secret, algorithm='HS256')

    def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.server_url}/twirp/livekit.RoomService/{method}"
        token = self._sign({'video': {'roomCreate': True, 'roomList': True}}, 600)
        try:
            response = requests.post(
                url,
                json=payload,
                headers={'Authorization': f'Bearer {token}'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DispatchFailure(f"Video back-end unreachable: {e}")

        if response.status_code >= 400:
            try:
                code = response.json().get('code')
            except ValueError:
                code = None
            if response.status_code == 404 or code == 'not_found':
                raise RoomNotFound(f"Room {payload.get('name')} not found")
            if code == 'resource_exhausted':
                raise RoomFull(f"Room {payload.get('name')} is full")
            raise DispatchFailure(f"Video back-end error {response.status_code}")

        return response.json()

    def ensure_room(self, room_name: str) -> Dict[str, Any]:
        """CreateRoom is idempotent on the room service; it returns the live room."""
        room = self._call('CreateRoom', {
            'name': room_name,
            'max_participants': self.max_participants
        })
        limit = room.get('max_participants') or self.max_participants
        if limit and room.get('num_participants', 0) >= limit:
            raise RoomFull(f"Room {room_name} is full")
        return room

    def issue_token(self, room_name: str, identity: str, name: str, role: str) -> str:
        return self._sign({
            'sub': identity,
            'name': name,
            'metadata': json.dumps({'role': role, 'userId': identity}),
            'video': {
                'roomJoin': True,
                'room': room_name,
                'canPublish': True,
                'canSubscribe': True,
                'canPublishData': True,
                'roomAdmin': role in STAFF_ROLES
            }
        }, self.token_ttl)


def init_video_backend(app, backend: VideoBackend = None) -> None:
    app.extensions[EXTENSION_KEY] = backend or LiveKitBackend.from_config(app.config)


def get_video_backend() -> VideoBackend:
    return current_app.extensions[EXTENSION_KEY]
