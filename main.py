"""
Command-line entrypoint.

Logs in (or restores the saved session), then runs the dashboard for the
user's role against the configured backend until Ctrl+C or until the
session is torn down (logout, 401).

Usage:
- python main.py --email me@example.com --password secret --lat 13.0827 --lng 80.2707
- python main.py                 (reuses the session saved in SESSION_FILE)
- python main.py --logout
"""
import argparse
import asyncio
import contextlib
import getpass
import logging
import sys

from config.settings import settings
from core.auth import SessionContext
from core.errors import ApiError
from core.logging import configure_logging
from infra.http_client import ApiClient
from infra.stomp_client import StompClient
from services.auth_service import AuthService
from tools.gps_simulator import SimulatedPositionSource
from ui.client_dashboard import ClientDashboard
from ui.mechanic_dashboard import MechanicDashboard

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="roadside-client", description=settings.APP_NAME)
    parser.add_argument("--email", help="log in with this account")
    parser.add_argument("--password", help="password (prompted if omitted)")
    parser.add_argument("--lat", type=float, help="simulated device latitude (client sessions)")
    parser.add_argument("--lng", type=float, help="simulated device longitude (client sessions)")
    parser.add_argument("--api", default=settings.API_BASE_URL, help="REST base URL")
    parser.add_argument("--ws", default=settings.WS_URL, help="STOMP WebSocket URL")
    parser.add_argument("--session-file", default=settings.SESSION_FILE)
    parser.add_argument("--logout", action="store_true", help="forget the saved session and exit")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL)
    return parser


def _log_requests(view):
    lists = getattr(view, "requests", None)
    if isinstance(lists, list):
        logger.info("My requests: %s", ", ".join(f"{r.id}={r.status.value}" for r in lists) or "none")
    else:
        logger.info("Jobs: %d incoming, %d active, %d in history",
                    len(view.incoming), len(view.active), len(view.history))


async def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    session = SessionContext.load(args.session_file)
    if args.logout:
        session.teardown("logout")
        logger.info("Logged out")
        return 0

    api = ApiClient(session, base_url=args.api)
    transport = StompClient(url=args.ws, session=session)
    try:
        if args.email or not session.is_authenticated:
            email = args.email or input("Email: ")
            password = args.password or getpass.getpass("Password: ")
            try:
                await AuthService(api, session).login(email, password)
            except ApiError as e:
                logger.error("Login failed: %s", e.message)
                return 1

        stopped = asyncio.Event()
        session.on_teardown(transport.close_nowait)
        session.on_teardown(lambda reason: stopped.set())

        if session.is_client:
            source = None
            if args.lat is not None and args.lng is not None:
                source = SimulatedPositionSource(args.lat, args.lng)
            dashboard = ClientDashboard(session, api, transport, source)
            dashboard.requests.add_listener(_log_requests)
        else:
            dashboard = MechanicDashboard(session, api, transport)
            dashboard.jobs.add_listener(_log_requests)
        dashboard.notifications.add_listener(
            lambda store: logger.info("Notifications: %d unread", store.unread_count))

        await dashboard.start()
        try:
            await stopped.wait()
            logger.info("Session ended")
        finally:
            await dashboard.stop()
        return 0
    finally:
        await transport.disconnect()
        await api.aclose()


def run():
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
