from flask_socketio import join_room, leave_room, emit
from scorecraft import socketio
from scorecraft.models import PlaySession


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_game(data):
    session_code = (data or {}).get('session_code')
    if not session_code:
        emit('error', {'message': 'session_code is required'})
        return
    room = f"game:{session_code.upper()}"
    join_room(room)
    emit('joined', {'room': room})
    # Late joiners get the current state straight away
    play = PlaySession.query.filter_by(session_code=session_code.upper()).first()
    if play is not None:
        emit('state_update', {'session_code': play.session_code, 'state': play.to_dict()})


def handle_leave_game(data):
    session_code = (data or {}).get('session_code')
    if not session_code:
        emit('error', {'message': 'session_code is required'})
        return
    room = f"game:{session_code.upper()}"
    leave_room(room)
    emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    socketio.on_event('connect', handle_connect, namespace='/ws')
    socketio.on_event('join_game', handle_join_game, namespace='/ws')
    socketio.on_event('leave_game', handle_leave_game, namespace='/ws')
    socketio.on_event('ping', handle_ping, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        socketio.on_event('connect', handle_connect, namespace='/')
        socketio.on_event('join_game', handle_join_game, namespace='/')
        socketio.on_event('leave_game', handle_leave_game, namespace='/')
        socketio.on_event('ping', handle_ping, namespace='/')
