import io
import threading

from flask import Flask, Response, jsonify
from PIL import Image

from settings import log


def create_app(controller, writer):
    app = Flask(__name__)

    @app.route('/stats')
    def stats():
        data = controller.stats()
        data['frames_written'] = writer.frames_written
        return jsonify(data)

    @app.route('/frame.png')
    def frame():
        latest = writer.latest_frame()
        if latest is None:
            return jsonify({'error': 'no frame rendered yet'}), 404
        request, pixels = latest
        img = Image.frombytes('RGB', (request.width, request.height), pixels)
        out = io.BytesIO()
        img.save(out, format='PNG')
        return Response(out.getvalue(), mimetype='image/png')

    return app


def run_flask(app, port):
    app.run(host='0.0.0.0', port=port, debug=False, use_reloader=False)


def start_dashboard(controller, writer, port):
    app = create_app(controller, writer)
    threading.Thread(target=run_flask, args=(app, port), daemon=True).start()
    log(f"[controller] Dashboard on http://0.0.0.0:{port}/stats")
    return app
