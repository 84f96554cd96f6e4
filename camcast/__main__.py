"""
Entry point for running camcast as a module.

Usage:
    python -m camcast [--video /dev/video0] [--port 4443] [--dummy]

Environment variables (CAMCAST_*, OAUTH_CLIENT_ID) provide the defaults;
see camcast.config.
"""

import argparse
import sys

from .config import TLS_MODES, ConfigError, Settings
from .server import run_server


def parse_args(argv=None, defaults: Settings = None) -> Settings:
    """Parse command line arguments on top of the environment defaults."""
    defaults = defaults or Settings.from_env()

    parser = argparse.ArgumentParser(
        prog="camcast",
        description="Stream a V4L2 webcam as MJPEG to authenticated viewers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    OAUTH_CLIENT_ID=... python -m camcast --video /dev/video0 --accounts accounts
    python -m camcast --dummy --insecure --tls off --port 8000
        """
    )

    parser.add_argument("--video", default=defaults.device, help="Path to video device")
    parser.add_argument("--host", default=defaults.host, help="Address to bind")
    parser.add_argument("--port", type=int, default=defaults.port, help="Port to listen on")
    parser.add_argument("--width", type=int, default=defaults.width, help="Requested frame width")
    parser.add_argument("--height", type=int, default=defaults.height, help="Requested frame height")
    parser.add_argument("--quality", type=int, default=defaults.jpeg_quality, help="JPEG quality 1-95")
    parser.add_argument(
        "--timeout", type=float, default=defaults.frame_timeout,
        help="Seconds to wait for a camera frame before retrying"
    )
    parser.add_argument(
        "--fanout", type=int, default=defaults.max_fanout,
        help="Max viewers served per frame"
    )
    parser.add_argument(
        "--no-timestamp", dest="timestamp", action="store_false", default=defaults.timestamp,
        help="Do not draw the capture time on frames"
    )
    parser.add_argument(
        "--tls", choices=TLS_MODES, default=defaults.tls,
        help="off: plain HTTP; dev: self-signed certificate from --certs"
    )
    parser.add_argument("--certs", default=defaults.certs_dir, help="Folder with certificate.pem and key.pem")
    parser.add_argument("--domain", default=defaults.domain, help="Domain name of the service")
    parser.add_argument("--accounts", default=defaults.accounts, help="Path to accounts file")
    parser.add_argument(
        "--insecure", action="store_true", default=defaults.insecure,
        help="Disable OAuth auth (Warning: Use with caution!)"
    )
    parser.add_argument(
        "--dummy", "-d", action="store_true",
        help="Use dummy camera for testing without hardware"
    )

    args = parser.parse_args(argv)
    return defaults.replace(
        device=args.video,
        host=args.host,
        port=args.port,
        width=args.width,
        height=args.height,
        jpeg_quality=args.quality,
        frame_timeout=args.timeout,
        max_fanout=args.fanout,
        timestamp=args.timestamp,
        tls=args.tls,
        certs_dir=args.certs,
        domain=args.domain,
        accounts=args.accounts,
        insecure=args.insecure,
        dummy=args.dummy
    )


def main(argv=None) -> int:
    """Main entry point."""
    settings = parse_args(argv)
    try:
        settings.validate()
    except ConfigError as e:
        print(f"[main] {e}")
        return 2
    return run_server(settings)


if __name__ == "__main__":
    sys.exit(main())
