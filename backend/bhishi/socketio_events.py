from flask_socketio import join_room, leave_room, emit

from bhishi import socketio
from bhishi.errors import LedgerError
from bhishi.services.ledger import rounds as round_ledger
from bhishi.services.ledger import draws as draw_ledger
from bhishi.services.ledger.feed import NAMESPACE, ROUND_UPDATED, DRAW_UPDATED, group_room


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def _group_id(data):
    value = (data or {}).get('group_id')
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def handle_subscribe_group(data):
    """Join a group's room and push the current records.

    The snapshot doubles as the re-check a client needs after reconnecting:
    anything published while it was away is superseded by these records.
    """
    group_id = _group_id(data)
    if group_id is None:
        emit('error', {'message': 'group_id is required'})
        return
    try:
        rnd = round_ledger.latest_round(group_id)
        draw = draw_ledger.latest_draw(group_id)
    except LedgerError as exc:
        emit('error', {'message': str(exc), 'code': exc.code})
        return
    room = group_room(group_id)
    join_room(room)
    emit('subscribed', {'room': room, 'group_id': group_id})
    if rnd:
        emit(ROUND_UPDATED, rnd.to_dict())
    if draw:
        emit(DRAW_UPDATED, draw.to_dict())


def handle_unsubscribe_group(data):
    group_id = _group_id(data)
    if group_id is None:
        emit('error', {'message': 'group_id is required'})
        return
    room = group_room(group_id)
    leave_room(room)
    emit('unsubscribed', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('subscribe_group', handle_subscribe_group, namespace=NAMESPACE)
    socketio.on_event('unsubscribe_group', handle_unsubscribe_group, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('subscribe_group', handle_subscribe_group, namespace='/')
        socketio.on_event('unsubscribe_group', handle_unsubscribe_group, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
