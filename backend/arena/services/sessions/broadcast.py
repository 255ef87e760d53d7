"""Socket.IO fan-out for session events.

The broadcaster owns the mapping between connections (Socket.IO sids) and the
session groups they joined. Groups are Socket.IO rooms named
``session:<public_id>`` on the ``/ws`` namespace.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Set

from flask_socketio import join_room, leave_room

from .transitions import GROUP, ORIGIN, OTHERS, Event

WS_NAMESPACE = '/ws'


def room_for(session_id: str) -> str:
    return f"session:{session_id}"


def _stamp(payload: dict) -> dict:
    data = dict(payload)
    data['timestamp'] = datetime.now(timezone.utc).isoformat()
    return data


@dataclass
class Connection:
    participant_id: int
    groups: Set[str] = field(default_factory=set)


class Broadcaster:
    def __init__(self, socketio, namespace: str = WS_NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}

    # ---- connection bookkeeping ----

    def attach(self, sid: str, participant_id: int) -> None:
        with self._lock:
            self._connections[sid] = Connection(participant_id=participant_id)

    def participant_for(self, sid: str) -> Optional[int]:
        with self._lock:
            conn = self._connections.get(sid)
            return conn.participant_id if conn else None

    def subscribe(self, sid: str, session_id: str) -> None:
        join_room(room_for(session_id), sid=sid, namespace=self.namespace)
        with self._lock:
            conn = self._connections.get(sid)
            if conn is not None:
                conn.groups.add(session_id)

    def unsubscribe(self, sid: str, session_id: str) -> None:
        leave_room(room_for(session_id), sid=sid, namespace=self.namespace)
        with self._lock:
            conn = self._connections.get(sid)
            if conn is not None:
                conn.groups.discard(session_id)

    def detach(self, sid: str) -> Optional[Connection]:
        """Forget a connection and return what it was subscribed to.

        Safe to call more than once; later calls return None.
        """
        with self._lock:
            return self._connections.pop(sid, None)

    # ---- emission ----

    def publish(self, session_id: str, events: Iterable[Event], origin_sid: Optional[str] = None) -> None:
        """Emit events in order. Callers hold the session lock so that events of
        one session leave in commit order."""
        room = room_for(session_id)
        for event in events:
            payload = _stamp(event.payload)
            if event.audience == ORIGIN:
                if origin_sid:
                    self.socketio.emit(event.name, payload, to=origin_sid, namespace=self.namespace)
            elif event.audience == OTHERS:
                self.socketio.emit(event.name, payload, to=room, skip_sid=origin_sid, namespace=self.namespace)
            elif event.audience == GROUP:
                self.socketio.emit(event.name, payload, to=room, namespace=self.namespace)

    def send(self, sid: str, name: str, payload: dict) -> None:
        self.socketio.emit(name, _stamp(payload), to=sid, namespace=self.namespace)

    def send_error(self, sid: str, message: str, code: str) -> None:
        self.send(sid, 'error', {'message': message, 'code': code})
