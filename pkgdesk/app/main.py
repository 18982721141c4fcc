# pkgdesk/app/main.py
import argparse
import logging
import sys

import uvicorn

from .api import build_desk
from .config import get_settings
from .errors import DeskError
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


def serve(args):
    settings = get_settings()
    uvicorn.run("pkgdesk.app.api:app", host=args.host or settings.host, port=args.port or settings.port,
                log_level=settings.log_level.lower())


def notify_overdue(args):
    desk = build_desk(get_settings())
    count = desk.notify_overdue()
    print(f"flagged {count} overdue packages")


def add_admin(args):
    desk = build_desk(get_settings())
    desk.add_admin(args.username, args.password)
    print(f"admin {args.username} saved")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="pkgdesk", description="Community package desk server")
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="run the HTTP server")
    p_serve.add_argument("--host")
    p_serve.add_argument("--port", type=int)
    p_serve.set_defaults(func=serve)

    p_overdue = sub.add_parser("notify-overdue", help="remind residents about uncollected packages")
    p_overdue.set_defaults(func=notify_overdue)

    p_admin = sub.add_parser("add-admin", help="create or reset an admin login")
    p_admin.add_argument("username")
    p_admin.add_argument("password")
    p_admin.set_defaults(func=add_admin)

    args = parser.parse_args(argv)
    setup_logging(get_settings().log_level)
    if not getattr(args, "func", None):
        args = parser.parse_args(["serve"])

    try:
        args.func(args)
    except DeskError as e:
        logger.error(e.message)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
