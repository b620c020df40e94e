from bhishi import create_app, socketio

app = create_app()

if __name__ == '__main__':
    # Use SocketIO server so the change feed works in dev
    socketio.run(app, debug=True)
