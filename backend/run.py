import os
from scorecraft import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Socket.IO server so /ws live updates work in dev
    port = int(os.environ.get('PORT', '5000'))
    socketio.run(app, port=port, debug=os.environ.get('FLASK_DEBUG', '1') == '1')
