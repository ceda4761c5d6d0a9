"""
Web dashboard for Battery Guard
JSON API for the operator plus live updates over WebSocket
"""
import logging

from flask import Flask, jsonify, render_template_string, request
from flask_socketio import SocketIO, emit

logger = logging.getLogger(__name__)

INDEX_TEMPLATE = '''
<!DOCTYPE html>
<html>
<head>
    <title>Battery Guard</title>
    <style>
        body { font-family: Arial, sans-serif; background-color: #0f172a; color: #e2e8f0; margin: 0; padding: 32px; }
        .container { max-width: 720px; margin: 0 auto; }
        .battery-percent { font-size: 50px; font-weight: bold; }
        .state { font-size: 14px; text-transform: uppercase; letter-spacing: 2px; color: #94a3b8; }
        .sent { color: #34d399; }
        .failed { color: #f87171; }
        li { margin: 6px 0; }
    </style>
</head>
<body>
    <div class="container">
        <div class="state">{{ status.state }}{% if status.battery and status.battery.charging %} | charging{% endif %}</div>
        <div class="battery-percent">{{ status.battery.percentage if status.battery else '--' }}%</div>
        <p>{{ device_label }} | Thresholds: {{ status.thresholds | join('% > ') }}%</p>
        <h3>Event log ({{ logs | length }}/{{ capacity }})</h3>
        <ul>
        {% for entry in logs %}
            <li>{{ entry.timestamp.strftime('%H:%M:%S') }} {{ entry.message }}
                <span class="{{ entry.status.value }}">{{ 'OK' if entry.status.value == 'sent' else 'FAIL' }}</span></li>
        {% else %}
            <li>Log is empty</li>
        {% endfor %}
        </ul>
    </div>
</body>
</html>
'''


def _settings_payload(guard):
    return guard.config_manager.get_config_summary()


def create_flask_app(guard):
    """Create Flask app with WebSocket support"""
    app = Flask(__name__)
    socketio = SocketIO(app, async_mode='threading', cors_allowed_origins='*')

    guard.add_listener(lambda event, payload: socketio.emit(event, payload))

    @app.route('/')
    def index():
        return render_template_string(
            INDEX_TEMPLATE,
            status=guard.status(),
            logs=guard.event_log.snapshot(),
            capacity=guard.event_log.capacity,
            device_label=guard.config.device_label
        )

    @app.route('/api/status')
    def get_status():
        return jsonify(guard.status())

    @app.route('/api/monitoring', methods=['POST'])
    def set_monitoring():
        data = request.get_json(silent=True) or {}
        armed = data.get('armed')

        if armed is None:
            guard.toggle()
        elif not isinstance(armed, bool):
            return jsonify({'success': False, 'error': "'armed' must be a boolean"}), 400
        elif armed:
            guard.start()
        else:
            guard.stop()

        return jsonify(guard.status())

    @app.route('/api/settings', methods=['GET'])
    def get_settings():
        return jsonify(_settings_payload(guard))

    @app.route('/api/settings', methods=['POST'])
    def save_settings():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'success': False, 'error': 'Expected a JSON object'}), 400

        try:
            guard.update_settings(**data)
        except ValueError as e:
            return jsonify({'success': False, 'error': str(e)}), 400

        return jsonify({
            'success': True,
            'settings': _settings_payload(guard),
            'issues': guard.config_manager.validate()
        })

    @app.route('/api/test', methods=['POST'])
    def send_test():
        return jsonify({'success': guard.send_test_alert()})

    @app.route('/api/logs')
    def get_logs():
        return jsonify({
            'capacity': guard.event_log.capacity,
            'entries': [entry.to_dict() for entry in guard.event_log.snapshot()]
        })

    @socketio.on('connect')
    def handle_connect(auth=None):
        logger.debug("WebSocket client connected")
        emit('connected', guard.status())

    @socketio.on('disconnect')
    def handle_disconnect(reason=None):
        logger.debug("WebSocket client disconnected")

    return app, socketio
