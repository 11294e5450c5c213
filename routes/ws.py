"""
WebSocket /ws/script-execution

Client -> {"action": "start", "scriptPath": "ct/pihole.sh", "mode": "ssh",
           "serverId": 1, "record": true}
          {"action": "input", "input": "y\\n"}
          {"action": "stop"}
Server -> {"type": "start|output|error|end", "data": ..., "timestamp": ms}

One script runs per socket. Its events are pushed from a worker thread so
input / stop messages are still read while it runs. Closing the socket
stops the script.
"""

import json
import logging
import threading
import time

from flask import current_app
from simple_websocket import ConnectionClosed

from bash_script.remote_exec import ExecutionHandle
from extensions import sock
from service import install_service
from util.until import str_to_bool

logger = logging.getLogger("install_logger")


def _send(ws, kind, data):
    ws.send(json.dumps({"type": kind, "data": data, "timestamp": int(time.time() * 1000)}))


def _run(ws, message, handle=None):
    try:
        events = install_service.execute_script(
            message.get("scriptPath"),
            message.get("mode") or "local",
            server_id=message.get("serverId"),
            record=str_to_bool(message.get("record"), False),
            script_name=message.get("scriptName"),
            handle=handle,
        )
    except (ValueError, LookupError) as e:
        _send(ws, "error", str(e))
        return

    try:
        for event in events:
            ws.send(json.dumps(event))
    finally:
        # Closing the generator ends the remote run and finalizes the record
        events.close()


class SocketSession:
    """Trạng thái của 1 kết nối: script đang chạy, handle input/stop, lock gửi."""

    def __init__(self, ws):
        self.ws = ws
        self.handle = None
        self.thread = None
        self._send_lock = threading.Lock()

    def send(self, data):
        with self._send_lock:
            self.ws.send(data)

    @property
    def busy(self):
        return self.thread is not None and self.thread.is_alive()

    def start(self, message):
        if self.busy:
            _send(self, "error", "Script execution already running")
            return
        app = current_app._get_current_object()
        handle = ExecutionHandle()

        def _work():
            with app.app_context():
                try:
                    _run(self, message, handle)
                except ConnectionClosed:
                    logger.info(f"Client closed the socket during {message.get('scriptPath')}")

        self.handle = handle
        self.thread = threading.Thread(target=_work, daemon=True)
        self.thread.start()

    def send_input(self, message):
        data = message.get("input")
        if not isinstance(data, str):
            _send(self, "error", "Missing input data")
            return
        if not self.busy:
            _send(self, "error", "No running script to send input to")
            return
        try:
            self.handle.send_input(data)
        except (RuntimeError, OSError) as e:
            _send(self, "error", str(e))

    def stop(self):
        if self.busy:
            self.handle.stop()

    def close(self, timeout=10):
        self.stop()
        if self.thread is not None:
            self.thread.join(timeout)


def dispatch(session, message):
    action = message.get("action")
    if action == "start":
        session.start(message)
    elif action == "input":
        session.send_input(message)
    elif action == "stop":
        session.stop()
    else:
        _send(session, "error", "Unknown action")


@sock.route("/ws/script-execution")
def script_execution(ws):
    session = SocketSession(ws)
    try:
        while True:
            try:
                raw = ws.receive()
            except ConnectionClosed:
                break
            if raw is None:
                break

            try:
                message = json.loads(raw)
            except ValueError:
                _send(session, "error", "Invalid message format")
                continue
            if not isinstance(message, dict):
                _send(session, "error", "Invalid message format")
                continue

            try:
                dispatch(session, message)
            except ConnectionClosed:
                break
    finally:
        session.close()
