"""Change feed fan-out.

Every committed ledger mutation is pushed, as the full wire record, to the
Socket.IO room of the owning group. Delivery is best-effort; clients fall
back to polling the ``latest`` endpoints and re-check on reconnect.
"""
from bhishi import socketio

NAMESPACE = '/ws'
ROUND_UPDATED = 'round_updated'
DRAW_UPDATED = 'draw_updated'


def group_room(group_id) -> str:
    return f"group:{group_id}"


def publish_round(rnd) -> None:
    socketio.emit(ROUND_UPDATED, rnd.to_dict(), to=group_room(rnd.group_id), namespace=NAMESPACE)


def publish_draw(draw) -> None:
    socketio.emit(DRAW_UPDATED, draw.to_dict(), to=group_room(draw.group_id), namespace=NAMESPACE)
