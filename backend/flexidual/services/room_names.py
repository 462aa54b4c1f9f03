"""Room identity: opaque generated names plus the legacy pattern parser."""
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from flexidual.models.class_session import ClassSession

# Historical rooms: class-<classId>-lesson-<lessonId>[-<suffix>]
LEGACY_ROOM_PATTERN = re.compile(r'^class-(?P<class_id>\d+)-lesson-(?P<lesson_id>\d+)(?:-[\w-]*)?$')


@dataclass(frozen=True)
class LegacyRoomRef:
    class_id: int
    lesson_id: int


def parse_legacy_room_name(room_name: str) -> Optional[LegacyRoomRef]:
    """Best-effort decode of a historical room name. Never raises."""
    match = LEGACY_ROOM_PATTERN.match(room_name or '')
    if not match:
        return None
    return LegacyRoomRef(class_id=int(match.group('class_id')),
                         lesson_id=int(match.group('lesson_id')))


def build_room_name(class_id: int, lesson_ids: Iterable[int], start: datetime, salt: int = 0) -> str:
    material = '|'.join([
        str(class_id),
        ','.join(str(lesson_id) for lesson_id in lesson_ids),
        start.isoformat(),
        str(salt)
    ])
    return 'rm-' + hashlib.sha256(material.encode()).hexdigest()[:20]


def generate_room_name(class_id: int, lesson_ids: Iterable[int], start: datetime) -> str:
    """Unique room name for one instance, derived from its own start time."""
    lesson_ids = list(lesson_ids)
    salt = 0
    while True:
        candidate = build_room_name(class_id, lesson_ids, start, salt)
        if ClassSession.query.filter_by(room_name=candidate).first() is None:
            return candidate
        salt += 1
