import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ipc import CommandServer, IPCError, send_command  # noqa: E402


@pytest.fixture
def socket_path():
    # AF_UNIX-Pfade sind auf ~100 Zeichen begrenzt, tmp_path ist oft länger
    with tempfile.TemporaryDirectory(prefix="ett") as d:
        yield str(Path(d) / "t.sock")


@pytest.fixture
def server(socket_path):
    def boom(_request):
        raise RuntimeError("kaputt")

    srv = CommandServer(
        {"status": lambda _r: "state=inactive", "echo": lambda r: r.get("text", ""), "boom": boom},
        path=socket_path,
    )
    srv.start()
    yield srv
    srv.stop()


def test_ping_and_handlers(server, socket_path):
    assert send_command("ping", path=socket_path, timeout=2.0) == {"status": "success", "message": "pong"}
    assert send_command("status", path=socket_path, timeout=2.0)["message"] == "state=inactive"
    assert send_command("echo", path=socket_path, timeout=2.0, text="hi")["message"] == "hi"


def test_unknown_command(server, socket_path):
    response = send_command("dance", path=socket_path, timeout=2.0)
    assert response["status"] == "error"
    assert "dance" in response["message"]


def test_failing_handler_reports_error(server, socket_path):
    response = send_command("boom", path=socket_path, timeout=2.0)
    assert response == {"status": "error", "message": "kaputt"}


def test_second_instance_is_refused(server, socket_path):
    with pytest.raises(IPCError):
        CommandServer({}, path=socket_path).start()


def test_stale_socket_file_is_replaced(socket_path):
    Path(socket_path).write_text("", encoding="utf-8")
    srv = CommandServer({}, path=socket_path)
    srv.start()
    try:
        assert send_command("ping", path=socket_path, timeout=2.0)["message"] == "pong"
    finally:
        srv.stop()
    assert not Path(socket_path).exists()


def test_no_server_running(socket_path):
    with pytest.raises(IPCError):
        send_command("status", path=socket_path, timeout=1.0)
