"""
CLI commands for soltrace.

- trace: debugger payload for a mined transaction or a hypothetical call
- simulate: call maps only, no compilation
- cleanup: sweep stale scratch directories
- serve: run the HTTP service
"""

from .main import main

__all__ = ['main']
