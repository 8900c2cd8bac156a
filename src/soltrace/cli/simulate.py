"""
Simulate command implementation.

Converts a trace into call maps with decoded calldata and results, without
compiling anything.
"""

import asyncio

from soltrace.core.pipeline import DebugPipeline
from soltrace.core.serializer import dumps
from soltrace.utils.colors import bold, error, success
from soltrace.cli.common import build_request, configure, handle_command_error, print_call_tree


def simulate_command(args) -> int:
    """Execute the simulate command."""
    json_mode = args.json
    try:
        config = configure(args)
        result = asyncio.run(DebugPipeline(config).simulate(build_request(args)))
    except Exception as e:
        return handle_command_error(e, json_mode)

    if json_mode:
        print(dumps(result))
        return 0

    status = error('REVERTED') if result.trace_call.failed else success('SUCCEEDED')
    print(bold(f"Execution {status}") + f" on chain {result.chain_id}")
    print()
    print_call_tree(result.call_maps)
    return 0
