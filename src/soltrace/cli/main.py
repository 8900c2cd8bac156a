#!/usr/bin/env python3
"""
Main entry point for soltrace

Handles argument parsing and routes to the command implementations in the
cli/ package.
"""

import argparse
import sys

from soltrace import __version__
from soltrace.cli.common import add_common_args, add_request_args
from soltrace.cli.trace import trace_command
from soltrace.cli.simulate import simulate_command
from soltrace.cli.cleanup import cleanup_command
from soltrace.cli.serve import serve_command


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='soltrace - Solidity transaction debugger backend')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')
    subparsers.required = True

    # trace command
    trace_parser = subparsers.add_parser('trace', help='Build debugger data for a transaction or call')
    add_request_args(trace_parser)
    add_common_args(trace_parser)

    # simulate command
    simulate_parser = subparsers.add_parser('simulate', help='Decode the call tree of a transaction or call')
    add_request_args(simulate_parser)
    add_common_args(simulate_parser)

    # cleanup command
    cleanup_parser = subparsers.add_parser('cleanup', help='Remove stale compilation directories')
    cleanup_parser.add_argument('--max-age', type=float, default=None,
                                help='Age in seconds after which a run directory is removed')
    add_common_args(cleanup_parser)

    # serve command
    serve_parser = subparsers.add_parser('serve', help='Run the HTTP service')
    serve_parser.add_argument('--host', default='127.0.0.1', help='Host to bind to (default: 127.0.0.1)')
    serve_parser.add_argument('--port', '-p', type=int, default=8080, help='Port to listen on (default: 8080)')
    add_common_args(serve_parser)

    return parser


def main(argv=None):
    """Main entry point for soltrace CLI."""
    args = build_parser().parse_args(argv)

    if args.command == 'trace':
        return trace_command(args)
    elif args.command == 'simulate':
        return simulate_command(args)
    elif args.command == 'cleanup':
        return cleanup_command(args)
    elif args.command == 'serve':
        return serve_command(args)

    return 0


if __name__ == '__main__':
    sys.exit(main())
