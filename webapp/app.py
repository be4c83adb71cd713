"""
Flask Application Factory

JSON API over the watch engine: create, list, stop and dismiss watches,
switch a watch to an ephemeral session, browse history, manage saved
configurations and read captured logs.
"""

from flask import Flask, request, jsonify
from datetime import datetime

from monitoring.errors import (
    ConfigNotFoundError,
    InvalidWatchError,
    MonitorError,
    WatchNotFoundError,
)
from monitoring.log_buffer import install_log_buffer
from monitoring.types import NORMAL


def serialize(value):
    """Make stored records JSON-friendly (ISO timestamps)."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value


def parse_match_spec(payload):
    """
    Accept either ``terms`` ([{"term", "joiner"}]) or a single ``search_text``.
    """
    terms = payload.get('terms')
    if terms:
        return terms
    search_text = (payload.get('search_text') or '').strip()
    if search_text:
        return [{'term': search_text, 'joiner': None}]
    return []


def create_app(monitor, log_buffer=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config['MONITOR'] = monitor
    log_buffer = log_buffer or install_log_buffer()

    @app.errorhandler(WatchNotFoundError)
    @app.errorhandler(ConfigNotFoundError)
    def not_found(e):
        return {'status': 'error', 'message': str(e)}, 404

    @app.errorhandler(InvalidWatchError)
    def invalid(e):
        return {'status': 'error', 'message': str(e)}, 400

    @app.errorhandler(MonitorError)
    def monitor_error(e):
        return {'status': 'error', 'message': str(e)}, 500

    @app.route('/admin/monitoring/status')
    def monitoring_status():
        """Health check endpoint for monitoring service."""
        watches = monitor.list_watches()
        return {
            'status': 'ok',
            'watches': len(watches),
            'active_watches': sum(1 for w in watches if w['state'] == 'active'),
            'watchdog_running': monitor.watchdog.running,
            'pending_reopens': monitor.recovery.pending_reopens(),
            'timestamp': datetime.now().isoformat()
        }

    # --- watches ---

    @app.route('/api/monitors', methods=['GET'])
    def list_monitors():
        return jsonify(monitors=serialize(monitor.list_watches()))

    @app.route('/api/monitors', methods=['POST'])
    def start_monitoring():
        payload = request.get_json(silent=True) or {}
        watch = monitor.start_watch(
            payload.get('url'),
            parse_match_spec(payload),
            interval_seconds=payload.get('interval_seconds'),
            display_label=payload.get('label', ''),
            session_kind=payload.get('session_kind', NORMAL),
            target_handle=payload.get('target_handle'),
        )
        return {'status': 'started', 'monitor': serialize(watch)}, 201

    @app.route('/api/monitors/<watch_id>', methods=['GET'])
    def get_monitor(watch_id):
        return {'monitor': serialize(monitor.get_watch(watch_id))}

    @app.route('/api/monitors/<watch_id>', methods=['DELETE'])
    def stop_monitoring(watch_id):
        monitor.stop_watch(watch_id)
        return {'status': 'stopped'}

    @app.route('/api/monitors/<watch_id>/dismiss', methods=['POST'])
    def dismiss_monitor(watch_id):
        monitor.dismiss(watch_id)
        return {'status': 'dismissed'}

    @app.route('/api/monitors/<watch_id>/ephemeral', methods=['POST'])
    def enable_ephemeral(watch_id):
        result = monitor.enable_ephemeral(watch_id)
        return {'status': result['status'], 'monitor': serialize(result['watch'])}

    @app.route('/api/monitors/<watch_id>/rebind', methods=['POST'])
    def rebind_monitor(watch_id):
        return {'status': 'rebound', 'monitor': serialize(monitor.rebind(watch_id))}

    @app.route('/api/monitors/stop-all', methods=['POST'])
    def stop_all_monitoring():
        removed = monitor.stop_all()
        return {'status': 'all stopped', 'removed': removed}

    @app.route('/api/targets/<handle>/status', methods=['GET'])
    def target_status(handle):
        return serialize(monitor.status(handle))

    @app.route('/api/targets/<handle>/dismiss', methods=['POST'])
    def dismiss_target(handle):
        return {'status': 'dismissed', 'count': monitor.dismiss_target(handle)}

    # --- history ---

    @app.route('/api/history', methods=['GET'])
    def get_history():
        return jsonify(history=serialize(monitor.list_history()))

    @app.route('/api/history/<int:index>', methods=['DELETE'])
    def remove_from_history(index):
        removed = monitor.remove_history_entry(index)
        return {'status': 'removed' if removed else 'missing'}, (200 if removed else 404)

    @app.route('/api/history', methods=['DELETE'])
    def clear_history():
        monitor.clear_history()
        return {'status': 'cleared'}

    # --- saved configurations ---

    @app.route('/api/configs', methods=['GET'])
    def get_saved_configs():
        return jsonify(configs=serialize(monitor.list_configs()))

    @app.route('/api/configs', methods=['POST'])
    def save_config():
        payload = request.get_json(silent=True) or {}
        config = monitor.save_config(payload.get('name', ''))
        return {'status': 'saved', 'config': serialize(config)}, 201

    @app.route('/api/configs/<config_id>/restore', methods=['POST'])
    def restore_config(config_id):
        created = monitor.restore_config(config_id)
        return {'status': 'restored', 'monitors': serialize(created)}

    @app.route('/api/configs/<config_id>', methods=['DELETE'])
    def delete_config(config_id):
        monitor.delete_config(config_id)
        return {'status': 'deleted'}

    # --- logs ---

    @app.route('/api/logs', methods=['GET'])
    def get_logs():
        return jsonify(logs=log_buffer.entries(request.args.get('filter', 'all')))

    @app.route('/api/logs', methods=['DELETE'])
    def clear_logs():
        log_buffer.clear()
        return {'status': 'cleared'}

    return app
