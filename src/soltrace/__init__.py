"""
soltrace - Solidity transaction debugger backend
"""

__version__ = "0.1.0"

# Main entry point
from .cli.main import main

# Core components
from .core import (
    DebugPipeline,
    DebugRequest,
    DebugResult,
    SimulationResult,
    TracingClient,
)

from .config import TraceConfig, load_config

__all__ = [
    '__version__',
    'main',
    'DebugPipeline',
    'DebugRequest',
    'DebugResult',
    'SimulationResult',
    'TracingClient',
    'TraceConfig',
    'load_config',
]
