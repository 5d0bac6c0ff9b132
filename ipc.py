import json
import os
import socket
import socketserver
import threading
from typing import Callable, Dict

from config import SOCKET_PATH
from utils import log_debug, log_error, log_info

MAX_REQUEST_BYTES = 64 * 1024


class IPCError(RuntimeError):
    """The running service could not be reached or answered with garbage."""


class _RequestHandler(socketserver.StreamRequestHandler):
    def handle(self):
        raw = self.rfile.readline(MAX_REQUEST_BYTES)
        try:
            request = json.loads(raw.decode("utf-8") or "{}")
            command = request.get("command", "")
        except (ValueError, AttributeError) as exc:
            response = {"status": "error", "message": f"invalid request: {exc}"}
        else:
            response = self.server.dispatch(command, request)
        self.wfile.write((json.dumps(response) + "\n").encode("utf-8"))


class _UnixServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True

    def __init__(self, path, handlers):
        self.handlers = handlers
        super().__init__(path, _RequestHandler)

    def dispatch(self, command: str, request: dict) -> dict:
        handler = self.handlers.get(command)
        if handler is None:
            return {"status": "error", "message": f"unknown command: {command!r}"}
        log_debug(f"[IPC] Handling {command}")
        try:
            message = handler(request)
        except Exception as exc:
            log_error(f"[IPC] Command {command} failed", exc)
            return {"status": "error", "message": str(exc)}
        return {"status": "success", "message": message or ""}


class CommandServer:
    """JSON-over-unix-socket control channel for a running tracker."""

    def __init__(self, handlers: Dict[str, Callable[[dict], str]], path: str = SOCKET_PATH):
        self.path = path
        self.handlers = dict(handlers)
        self.handlers.setdefault("ping", lambda _request: "pong")
        self._server = None
        self._thread = None

    def start(self) -> None:
        _remove_stale_socket(self.path)
        self._server = _UnixServer(self.path, self.handlers)
        self._thread = threading.Thread(target=self._server.serve_forever, name="ipc-server", daemon=True)
        self._thread.start()
        log_info(f"[IPC] Listening on {self.path}")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        log_info("[IPC] Server stopped")


def _remove_stale_socket(path: str) -> None:
    if not os.path.exists(path):
        return
    try:
        send_command("ping", path=path, timeout=1.0)
    except IPCError:
        os.unlink(path)
        return
    raise IPCError(f"another instance is already listening on {path}")


def send_command(command: str, path: str = SOCKET_PATH, timeout: float = 30.0, **payload) -> dict:
    request = dict(payload, command=command)
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            sock.connect(path)
            sock.sendall((json.dumps(request) + "\n").encode("utf-8"))
            chunks = []
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
                if chunk.endswith(b"\n"):
                    break
    except OSError as exc:
        raise IPCError(f"cannot reach tracker at {path}: {exc}") from exc
    try:
        return json.loads(b"".join(chunks).decode("utf-8"))
    except ValueError as exc:
        raise IPCError(f"invalid response from tracker: {exc}") from exc
