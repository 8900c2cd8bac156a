"""
Trace command implementation.

Runs the full pipeline and prints either the debugger payload (JSON) or a
readable summary of the call tree and compilation outcome.
"""

import asyncio

from soltrace.core.pipeline import DebugPipeline
from soltrace.core.serializer import dumps
from soltrace.utils.colors import bold, error, info, success
from soltrace.cli.common import build_request, configure, handle_command_error, print_call_tree


def trace_command(args) -> int:
    """
    Execute the trace command.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    json_mode = args.json
    try:
        config = configure(args)
        request = build_request(args)
        result = asyncio.run(DebugPipeline(config).run(request))
    except Exception as e:
        return handle_command_error(e, json_mode)

    if json_mode:
        print(dumps(result))
        return 0

    tx = result.transaction
    print(bold(f"Transaction {tx.tx_hash or '(simulated call)'}") + f" on chain {info(result.chain_id)}")
    print(f"Block {tx.block_number}, sender {tx.from_address}")
    print()
    print_call_tree(result.debugger_info.call_maps)

    summary = result.compilation_summary
    print()
    print(f"Compiled {success(summary.successful_compilations)}/{summary.total_contracts} contracts, "
          f"{len(result.debugger_info.trace)} debugger steps")
    for message in summary.compilation_errors:
        print(f"  {error(message)}")
    for message in result.run.diagnostics:
        if message not in summary.compilation_errors:
            print(f"  {message}")
    return 0
