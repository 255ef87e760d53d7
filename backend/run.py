from arena import create_app, get_services, socketio

# create_app() also starts the auto-end sweep (see RECONCILER_AUTOSTART)
app = create_app()

if __name__ == '__main__':
    try:
        # Use SocketIO server to enable websockets in dev
        socketio.run(app, debug=True, use_reloader=False)
    finally:
        get_services(app).reconciler.stop()
