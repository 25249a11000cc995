import json
import os
import socket
import sys
import tempfile
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Dict, Iterator, List, Tuple

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep the module-level app in llamaterm.main away from the working directory.
os.environ.setdefault("LLAMATERM_DATA_DIR", tempfile.mkdtemp(prefix="llamaterm-test-"))


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class FakeLlm:
    """
    Records every request and answers with the configured status and body.
    """

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.status = 200
        self.body: Any = {"choices": [{"message": {"content": "hi"}}]}
        self.url = ""

    def reply_with(self, body: Any, status: int = 200) -> None:
        self.status = status
        self.body = body


def _make_handler(fake: FakeLlm):
    class Handler(BaseHTTPRequestHandler):
        def do_POST(self) -> None:  # noqa: N802 - http.server naming
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length)
            fake.requests.append(
                {
                    "path": self.path,
                    "headers": dict(self.headers),
                    "json": json.loads(raw.decode("utf-8")) if raw else None,
                }
            )
            if isinstance(fake.body, (bytes, str)):
                payload = fake.body.encode("utf-8") if isinstance(fake.body, str) else fake.body
                content_type = "text/plain"
            else:
                payload = json.dumps(fake.body).encode("utf-8")
                content_type = "application/json"
            self.send_response(fake.status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format: str, *args: Any) -> None:
            return

    return Handler


@pytest.fixture()
def fake_llm() -> Iterator[FakeLlm]:
    fake = FakeLlm()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(fake))
    fake.url = f"http://127.0.0.1:{server.server_address[1]}/v1/chat/completions"
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield fake
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture()
def http_session(tmp_path: Path) -> Iterator[Tuple[requests.Session, str]]:
    import uvicorn

    from llamaterm.main import create_app

    app = create_app(tmp_path / "data", llm_timeout=5)
    port = _find_free_port()
    server = uvicorn.Server(
        uvicorn.Config(app, host="127.0.0.1", port=port, log_level="error")
    )
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()

    session = requests.Session()
    base_url = f"http://127.0.0.1:{port}"
    deadline = time.time() + 10
    while time.time() < deadline:
        try:
            response = session.get(base_url, timeout=1)
        except requests.RequestException:
            time.sleep(0.05)
            continue
        if response.status_code == 200:
            break
    else:
        server.should_exit = True
        thread.join(timeout=2)
        pytest.fail("Server did not start within timeout.")

    yield session, base_url

    session.close()
    server.should_exit = True
    thread.join(timeout=5)
