"""
Flask-based MJPEG streaming server.

Provides:
  GET /              - HTML page showing the video stream
  GET /stream        - Multipart MJPEG stream (authenticated)
  GET /snapshot.jpg  - The next broadcast frame as a single JPEG (authenticated)
  GET /health        - JSON health check endpoint

A viewer parked between frames is dropped as soon as its client hangs up,
but only on plain HTTP. Under TLS the socket cannot be peeked, so a gone
viewer lingers until the next frame write fails.
"""

import select
import socket
import ssl
import sys
from typing import Callable, Iterator, Optional

from flask import Flask, Response, jsonify, render_template_string, request

from . import __version__
from .auth import AllowAll, AuthError, GoogleVerifier, load_accounts
from .broadcast import BroadcastClosed, Broadcaster
from .camera import CameraError, create_camera, start_camera
from .config import Settings, print_config
from .encoder import EncodedImage, FrameEncoder
from .pipeline import Pipeline

BOUNDARY = "frame"

# How often a parked viewer checks whether its client went away
DISCONNECT_POLL_INTERVAL = 1.0

NO_CACHE_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0'
}


INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>camcast</title>
    <meta name="google-signin-client_id" content="{{ client_id }}">
    <style>
        body {
            font-family: monospace;
            background: #000;
            color: #fff;
            display: flex;
            flex-direction: column;
            align-items: center;
            padding: 20px;
        }
        .stream-container {
            border: 1px solid #333;
            background: #111;
            padding: 10px;
        }
        img {
            display: block;
            max-width: 100%;
            height: auto;
        }
        .info {
            margin-top: 20px;
            color: #666;
            font-size: 12px;
        }
        .info a { color: #888; }
    </style>
</head>
<body>
    <h1>CAMCAST</h1>
    <div class="stream-container">
        <img id="stream" alt="Camera Stream"{% if not auth %} src="/stream"{% endif %}>
    </div>
    <div class="info">
        <p>Resolution: {{ width }}x{{ height }}</p>
        {% if auth %}
        <div id="g_id_onload" data-client_id="{{ client_id }}" data-callback="onSignIn" data-auto_prompt="true"></div>
        <div class="g_id_signin" data-type="standard"></div>
        <p>Sign in with Google; frames are fetched from /snapshot.jpg with your ID token.</p>
        {% else %}
        <p>Stream URL: <a href="/stream">/stream</a></p>
        {% endif %}
        <p>Health: <a href="/health">/health</a></p>
    </div>
    {% if auth %}
    <script src="https://accounts.google.com/gsi/client" async defer></script>
    <script>
        var credential = null;
        var running = false;
        var img = document.getElementById('stream');

        function onSignIn(response) {
            credential = response.credential;
            if (!running) {
                running = true;
                poll();
            }
        }

        function poll() {
            fetch('/snapshot.jpg', {headers: {'Authorization': 'Bearer ' + credential}})
                .then(function (resp) {
                    if (!resp.ok) {
                        throw new Error('HTTP ' + resp.status);
                    }
                    return resp.blob();
                })
                .then(function (blob) {
                    var previous = img.src;
                    img.src = URL.createObjectURL(blob);
                    if (previous) {
                        URL.revokeObjectURL(previous);
                    }
                    poll();
                })
                .catch(function () {
                    // Expired token or restarting server: back off, keep the last frame
                    setTimeout(poll, 2000);
                });
        }
    </script>
    {% endif %}
</body>
</html>
"""


def connection_probe(environ) -> Callable[[], bool]:
    """
    Return a callable reporting whether the client closed its connection.

    Only plain sockets can be probed; for TLS or unknown servers the probe
    always answers False and the session ends on its next failed write.
    """
    sock = environ.get("werkzeug.socket")
    if sock is None or isinstance(sock, ssl.SSLSocket):
        return lambda: False

    def closed() -> bool:
        try:
            readable, _, _ = select.select([sock], [], [], 0)
            if not readable:
                return False
            return sock.recv(1, socket.MSG_PEEK) == b""
        except (OSError, ValueError):
            return True

    return closed


class ViewerSession:
    """
    One viewer's view of the broadcast.

    Each image is obtained by parking on the broadcaster. While parked the
    session wakes every `poll_interval` seconds to check `is_disconnected`
    and stops as soon as the client is gone.
    """

    def __init__(
        self,
        broadcaster: Broadcaster,
        is_disconnected: Optional[Callable[[], bool]] = None,
        poll_interval: float = DISCONNECT_POLL_INTERVAL
    ):
        self.broadcaster = broadcaster
        self.is_disconnected = is_disconnected or (lambda: False)
        self.poll_interval = poll_interval
        self.received = 0

    def next_image(self) -> Optional[EncodedImage]:
        """Wait for the next image. Returns None once the client disconnected."""
        while True:
            image = self.broadcaster.receive(timeout=self.poll_interval)
            if image is not None:
                self.received += 1
                return image
            if self.is_disconnected():
                return None

    def __iter__(self) -> Iterator[EncodedImage]:
        while True:
            try:
                image = self.next_image()
            except BroadcastClosed:
                return
            if image is None:
                return
            yield image


def multipart_part(image: EncodedImage, boundary: str = BOUNDARY) -> bytes:
    """Frame one image as a part of a multipart/x-mixed-replace body."""
    return (
        b'--' + boundary.encode() + b'\r\n'
        b'Content-type: image/jpeg\r\n'
        b'Content-length: ' + str(len(image.data)).encode() + b'\r\n'
        b'\r\n' + image.data + b'\r\n'
    )


def generate_frames(session: ViewerSession, remote: str = "-") -> Iterator[bytes]:
    """
    Generator that yields MJPEG parts until the viewer goes away.
    """
    try:
        for image in session:
            yield multipart_part(image)
    finally:
        print(f"[server] Stream to {remote} ended after {session.received} frames")


def create_app(settings: Settings, pipeline: Pipeline, verifier) -> Flask:
    """Build the Flask app serving `pipeline`'s broadcast."""
    app = Flask(__name__)
    broadcaster = pipeline.broadcaster

    def _unauthorized(error: AuthError) -> Response:
        print(f"[server] Verification failed for {request.remote_addr}: {error}")
        return Response(
            "User verification failed: " + str(error),
            status=401,
            mimetype="text/plain"
        )

    @app.route('/')
    def index():
        """Serve the main page with embedded video stream."""
        return render_template_string(
            INDEX_HTML,
            width=pipeline.encoder.width,
            height=pipeline.encoder.height,
            client_id=settings.oauth_client_id,
            auth=not settings.insecure
        )

    @app.route('/stream')
    def stream():
        """
        MJPEG video stream endpoint.

        Returns a multipart/x-mixed-replace response with one part per
        broadcast frame.
        """
        print(f"[server] Connection from {request.remote_addr} {request.full_path}")
        try:
            verifier.verify(request.headers)
        except AuthError as e:
            return _unauthorized(e)

        session = ViewerSession(broadcaster, connection_probe(request.environ))
        return Response(
            generate_frames(session, request.remote_addr),
            mimetype=f'multipart/x-mixed-replace; boundary={BOUNDARY}',
            headers=NO_CACHE_HEADERS
        )

    @app.route('/snapshot.jpg')
    def snapshot():
        """Single JPEG: the next frame broadcast after this request arrived."""
        try:
            verifier.verify(request.headers)
        except AuthError as e:
            return _unauthorized(e)

        session = ViewerSession(broadcaster, connection_probe(request.environ))
        try:
            image = session.next_image()
        except BroadcastClosed:
            image = None
        if image is None:
            return Response("Stream unavailable", status=503, mimetype="text/plain")
        return Response(image.data, mimetype="image/jpeg", headers=NO_CACHE_HEADERS)

    @app.route('/health')
    def health():
        """
        Health check endpoint.

        Returns JSON with server and pipeline status.
        """
        return jsonify({
            "status": "ok" if pipeline.error is None else "error",
            "version": __version__,
            "pipeline": pipeline.get_stats(),
            "config": {
                "width": pipeline.encoder.width,
                "height": pipeline.encoder.height,
                "quality": settings.jpeg_quality,
                "max_fanout": broadcaster.max_fanout,
                "auth": not settings.insecure
            }
        })

    return app


def create_verifier(settings: Settings):
    if settings.insecure:
        print("[server] Warning: insecure mode, no authentication required")
        return AllowAll()
    accounts = load_accounts(settings.accounts)
    print(f"[server] Loaded {len(accounts)} account(s) from {settings.accounts}")
    return GoogleVerifier(settings.oauth_client_id, accounts)


def run_server(settings: Settings) -> int:
    """
    Open the camera, start the pipeline and serve HTTP until interrupted.

    Returns the process exit code.
    """
    print("=" * 50)
    print("  CAMCAST - Webcam Stream")
    print("=" * 50)

    print_config(settings)
    print()

    try:
        verifier = create_verifier(settings)
    except OSError as e:
        print(f"[server] Cannot read accounts file: {e}")
        return 1

    camera = create_camera(settings)
    try:
        width, height = start_camera(camera, settings)
    except CameraError as e:
        print(f"[server] Camera error: {e}")
        print("[server] Use --dummy to run without a camera")
        return 1

    encoder = FrameEncoder(width, height, quality=settings.jpeg_quality, timestamp=settings.timestamp)
    pipeline = Pipeline(
        camera,
        encoder,
        Broadcaster(max_fanout=settings.max_fanout),
        frame_timeout=settings.frame_timeout
    )
    app = create_app(settings, pipeline, verifier)

    ssl_context = None
    scheme = "http"
    if settings.tls == "dev":
        print("[server] Warning: development TLS with certificates from " + settings.certs_dir)
        ssl_context = (settings.cert_file, settings.key_file)
        scheme = "https"

    host = settings.domain or "<HOST>"
    print()
    print(f"[server] Starting HTTP server on {scheme}://{settings.host}:{settings.port}")
    print(f"[server] Stream URL: {scheme}://{host}:{settings.port}/stream")
    print(f"[server] Health URL: {scheme}://{host}:{settings.port}/health")
    print()
    print("[server] Press Ctrl+C to stop")
    print()

    pipeline.start()
    try:
        # One thread per viewer connection
        app.run(
            host=settings.host,
            port=settings.port,
            threaded=True,
            debug=False,
            ssl_context=ssl_context
        )
    except KeyboardInterrupt:
        print("\n[server] Shutting down...")
    except OSError as e:
        print(f"[server] Server error: {e}", file=sys.stderr)
        return 1
    finally:
        pipeline.stop()
        camera.close()
        print("[server] Stopped")
    return 0
