"""Cleanup command: remove stale run directories from the scratch space."""

import json

from soltrace.scratch import ScratchSpace
from soltrace.cli.common import configure, handle_command_error


def cleanup_command(args) -> int:
    json_mode = args.json
    try:
        config = configure(args)
        max_age = config.sweep_max_age if args.max_age is None else args.max_age
        removed = ScratchSpace(config.scratch_root).sweep(max_age)
    except Exception as e:
        return handle_command_error(e, json_mode)

    if json_mode:
        print(json.dumps({'removed': len(removed), 'directories': [p.name for p in removed]}, indent=2))
    else:
        print(f"Removed {len(removed)} stale run directories from {config.scratch_root}")
    return 0
