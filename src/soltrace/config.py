"""
Configuration for soltrace.

Settings are resolved once, in this order of precedence (highest first):
``SOLTRACE_*`` environment variables, a YAML config file, built-in
defaults. The resulting TraceConfig is handed to every component
explicitly.
"""

import os
import tempfile
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from soltrace.utils.exceptions import SoltraceError
from soltrace.utils.logging import get_logger

logger = get_logger('config')

DEFAULT_CONFIG_FILE = 'soltrace.config.yaml'
ENV_PREFIX = 'SOLTRACE_'

SOURCIFY = 'sourcify'
BLOCKSCOUT = 'blockscout'
VERIFICATION_BACKENDS = (SOURCIFY, BLOCKSCOUT)


class ConfigError(SoltraceError):
    """Raised when a configuration file or value is invalid."""

    default_code = 'CONFIG_ERROR'


@dataclass
class ChainConfig:
    """Per-chain verification settings."""
    chain_id: int
    name: str
    verification: str = SOURCIFY           # sourcify | blockscout
    explorer_url: Optional[str] = None     # Blockscout base URL
    rpc_url: Optional[str] = None

    def __post_init__(self):
        if self.verification not in VERIFICATION_BACKENDS:
            raise ConfigError(
                f"Unknown verification backend '{self.verification}' for chain {self.chain_id}"
            )
        if self.explorer_url:
            self.explorer_url = self.explorer_url.rstrip('/')


def default_chains() -> Dict[int, ChainConfig]:
    chains = [
        ChainConfig(10, 'OP Mainnet', SOURCIFY),
        ChainConfig(11155420, 'OP Sepolia', SOURCIFY),
        ChainConfig(11167, 'Powerloom Devnet', BLOCKSCOUT),
        ChainConfig(42161, 'Arbitrum One', BLOCKSCOUT, 'https://arbitrum.blockscout.com'),
    ]
    return {chain.chain_id: chain for chain in chains}


@dataclass
class TraceConfig:
    """Runtime settings shared by the pipeline, the CLI and the server."""
    rpc_timeout: float = 30.0              # seconds, node calls
    registry_timeout: float = 15.0         # seconds, Sourcify/Blockscout calls
    solc_path: str = 'solc'
    scratch_root: str = field(default_factory=lambda: os.path.join(tempfile.gettempdir(), 'soltrace'))
    sweep_interval: float = 300.0          # seconds between automatic sweeps
    sweep_max_age: float = 300.0           # seconds before a run directory is stale
    strict_version_check: bool = False
    sourcify_url: str = 'https://sourcify.dev/server'
    chains: Dict[int, ChainConfig] = field(default_factory=default_chains)

    def chain(self, chain_id: int) -> ChainConfig:
        """Return the chain's settings; unknown chains verify through Sourcify."""
        chain = self.chains.get(int(chain_id))
        if chain is None:
            return ChainConfig(int(chain_id), f'chain-{chain_id}', SOURCIFY)
        return chain


_SCALAR_TYPES = {
    'rpc_timeout': float,
    'registry_timeout': float,
    'solc_path': str,
    'scratch_root': str,
    'sweep_interval': float,
    'sweep_max_age': float,
    'strict_version_check': bool,
    'sourcify_url': str,
}


def _coerce(key: str, value: Any) -> Any:
    kind = _SCALAR_TYPES[key]
    if kind is bool and isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e


def _parse_chains(raw: Any, base: Dict[int, ChainConfig]) -> Dict[int, ChainConfig]:
    if not isinstance(raw, dict):
        raise ConfigError("'chains' must be a mapping of chain id to settings")
    chains = dict(base)
    for chain_id, settings in raw.items():
        settings = settings or {}
        chain_id = int(chain_id)
        existing = chains.get(chain_id)
        chains[chain_id] = ChainConfig(
            chain_id=chain_id,
            name=settings.get('name', existing.name if existing else f'chain-{chain_id}'),
            verification=settings.get('verification', existing.verification if existing else SOURCIFY),
            explorer_url=settings.get('explorer_url', existing.explorer_url if existing else None),
            rpc_url=settings.get('rpc_url', existing.rpc_url if existing else None),
        )
    return chains


def config_from_mapping(data: Dict[str, Any], base: Optional[TraceConfig] = None) -> TraceConfig:
    """Overlay a plain mapping (as loaded from YAML) onto a config."""
    config = base or TraceConfig()
    known = {f.name for f in fields(TraceConfig)}
    updates = {}
    for key, value in (data or {}).items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        if key == 'chains':
            updates['chains'] = _parse_chains(value, config.chains)
        else:
            updates[key] = _coerce(key, value)
    return replace(config, **updates)


def config_from_env(environ: Dict[str, str], base: TraceConfig) -> TraceConfig:
    """
    Overlay ``SOLTRACE_*`` variables.

    Scalars map by upper-cased name (``SOLTRACE_SOLC_PATH``); per-chain
    explorer URLs use ``SOLTRACE_EXPLORER_URL_<chain id>``.
    """
    updates = {}
    for key in _SCALAR_TYPES:
        value = environ.get(ENV_PREFIX + key.upper())
        if value is not None:
            updates[key] = _coerce(key, value)

    chains = dict(base.chains)
    explorer_prefix = ENV_PREFIX + 'EXPLORER_URL_'
    for name, value in environ.items():
        if not name.startswith(explorer_prefix):
            continue
        chain_id = int(name[len(explorer_prefix):])
        chain = base.chain(chain_id)
        chains[chain_id] = replace(chain, explorer_url=value.rstrip('/'))
    if chains != base.chains:
        updates['chains'] = chains

    return replace(base, **updates)


def load_config(
    path: Optional[Union[str, Path]] = None,
    environ: Optional[Dict[str, str]] = None
) -> TraceConfig:
    """
    Load configuration from defaults, a YAML file and the environment.

    Args:
        path: Explicit config file. When omitted, ``soltrace.config.yaml``
              in the working directory is used if present.
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        The resolved TraceConfig

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values
    """
    config = TraceConfig()

    config_path = Path(path) if path else Path(DEFAULT_CONFIG_FILE)
    if config_path.exists():
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid config file {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_path} must contain a mapping")
        logger.debug(f"Loaded config from {config_path}")
        config = config_from_mapping(data, config)
    elif path:
        raise ConfigError(f"Config file not found: {config_path}")

    return config_from_env(dict(os.environ if environ is None else environ), config)
