"""
HTTP status API for the heart rate monitor.

The monitor runs on an asyncio event loop in a background thread;
Flask serves requests on the main thread and talks to the loop with
thread-safe calls only.
"""

import asyncio
import logging
import sys
import time
from threading import Thread

from flask import Flask, jsonify, request

from errors import MonitorError
from main import build_parser, config_from_args, setup_logging
from supervisor import HeartRateMonitor

logger = logging.getLogger(__name__)


def _limit_arg(default=20):
    try:
        return max(0, int(request.args.get("limit", default)))
    except ValueError:
        return default


def create_app(monitor, loop=None):
    """
    Build the Flask app around a monitor.

    `loop` is the event loop the monitor runs on; control requests are
    scheduled there with call_soon_threadsafe. Without a loop they are
    applied directly (tests, or a monitor that is not running).
    """
    app = Flask(__name__)

    def call_in_loop(fn):
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(fn)
        else:
            fn()

    @app.route('/')
    def home():
        return jsonify({
            "status": "Heart rate monitor API is running",
            "target": monitor.config.address,
            "endpoints": ["/status", "/events", "/notifications", "/reconnect"],
        })

    @app.route('/status', methods=['GET'])
    def status():
        return jsonify(monitor.status())

    @app.route('/events', methods=['GET'])
    def events():
        """Recent pass/overdue/received/reconnect events"""
        recent = monitor.sink.recent(_limit_arg())
        return jsonify({"events": recent, "count": len(recent)})

    @app.route('/notifications', methods=['GET'])
    def notifications():
        handler = monitor.handler
        if handler is None:
            return jsonify({"error": "No session established yet"}), 404

        history = handler.get_history(_limit_arg())
        return jsonify({
            "generation": handler.session.generation,
            "count": handler.count,
            "last_payload": handler.last_payload.hex() if handler.last_payload else None,
            "history": history,
        })

    @app.route('/reconnect', methods=['POST'])
    def reconnect():
        if not monitor.running:
            return jsonify({"error": "Monitor is not running"}), 409

        call_in_loop(monitor.request_reconnect)
        return jsonify({
            "status": "reconnect requested",
            "generation": monitor.generation,
            "timestamp": time.time(),
        })

    return app


def start_monitor_thread(monitor):
    """Run the monitor on a fresh event loop in a daemon thread."""
    loop = asyncio.new_event_loop()

    def runner():
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(monitor.run())
        except MonitorError as e:
            logger.error("Monitor stopped: %s: %s", type(e).__name__, e)
        finally:
            monitor.sink.close()

    thread = Thread(target=runner, name="hrm-loop", daemon=True)
    thread.start()
    return loop, thread


if __name__ == '__main__':
    parser = build_parser()
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=5000)
    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        hrm = HeartRateMonitor(config_from_args(args))
    except MonitorError as e:
        logger.error("%s: %s", type(e).__name__, e)
        sys.exit(e.exit_code)

    loop, _ = start_monitor_thread(hrm)
    try:
        app = create_app(hrm, loop)
        app.run(host=args.host, port=args.port)
    finally:
        loop.call_soon_threadsafe(hrm.stop)
