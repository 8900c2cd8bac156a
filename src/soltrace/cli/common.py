"""
Common utilities for CLI commands.

Shared option handling, config loading and output helpers.
"""

import argparse
import sys
from typing import Any

from soltrace.config import TraceConfig, load_config
from soltrace.core.call_maps import CallMaps
from soltrace.core.pipeline import DebugRequest
from soltrace.utils.colors import address, dim, error, success, warning
from soltrace.utils.exceptions import format_error
from soltrace.utils.logging import setup_logging


def add_common_args(parser: argparse.ArgumentParser) -> None:
    """Options shared by every command."""
    parser.add_argument('--config', help='YAML config file (default: ./soltrace.config.yaml if present)')
    parser.add_argument('--json', action='store_true', help='Output as JSON')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--verbose', action='store_true', help='Enable trace-level logging')
    parser.add_argument('--quiet', '-q', action='store_true', help='Suppress log output')
    parser.add_argument('--log-file', help='Also write logs to this file')


def add_request_args(parser: argparse.ArgumentParser) -> None:
    """Options describing what to trace."""
    parser.add_argument('tx_hash', nargs='?', help='Transaction hash to trace')
    parser.add_argument('--rpc', '-r', help='RPC URL with debug methods enabled')
    parser.add_argument('--chain-id', type=int, help='Chain id (queried from the node when omitted)')
    parser.add_argument('--to', help='Target address of a hypothetical call')
    parser.add_argument('--from', dest='from_addr', help='Sender address of a hypothetical call')
    parser.add_argument('--calldata', help='Calldata of a hypothetical call (0x...)')
    parser.add_argument('--block', type=int, default=None, help='Block number for a hypothetical call (default: latest)')
    parser.add_argument('--solc-path', '-solc', default=None, help='Path to solc binary')


def configure(args: Any) -> TraceConfig:
    """Set up logging and load the configuration for a command."""
    setup_logging(
        quiet=args.quiet or args.json,
        debug=args.debug,
        verbose=args.verbose,
        log_file=args.log_file,
    )
    config = load_config(args.config)
    solc_path = getattr(args, 'solc_path', None)
    if solc_path:
        config.solc_path = solc_path
    return config


def build_request(args: Any) -> DebugRequest:
    return DebugRequest(
        rpc_url=args.rpc,
        chain_id=args.chain_id,
        tx_hash=args.tx_hash,
        to=args.to,
        calldata=args.calldata,
        from_address=args.from_addr,
        block_number=args.block,
    )


def handle_command_error(e: Exception, json_mode: bool = False, exit_code: int = 1) -> int:
    """
    Handle command errors uniformly.

    Returns:
        Exit code
    """
    error_output = format_error(e, json_mode)
    if json_mode:
        print(error_output)
    else:
        print(error_output, file=sys.stderr)
    return exit_code


def print_call_tree(call_maps: CallMaps) -> None:
    """Print the external call tree, one frame per line."""
    calls = call_maps.contract_calls
    roots = [call for call in calls.values() if call.parent_call_id == 0]

    def walk(call, depth):
        name = f"{call.contract_name}::{call.entry_point_name}" if call.contract_name else call.entry_point_name
        line = f"{'  ' * depth}#{call.call_id} {name} {dim(address(call.entry_point.code_address or ''))}"
        if call.is_reverted_frame:
            line += ' ' + error('REVERTED')
            if call.error_message:
                line += f" {warning(call.error_message)}"
        elif depth == 0:
            line += ' ' + success('OK')
        print(line)
        for child_id in call.children_call_ids:
            walk(calls[child_id], depth + 1)

    for root in roots:
        walk(root, 0)
