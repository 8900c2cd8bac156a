"""Serve command: run the HTTP service."""

from soltrace.server import run_server
from soltrace.cli.common import configure, handle_command_error


def serve_command(args) -> int:
    try:
        config = configure(args)
        run_server(config, host=args.host, port=args.port)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        return handle_command_error(e, args.json)
    return 0
