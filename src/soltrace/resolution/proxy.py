"""
Proxy detection.

Recognizes EIP-1167 minimal proxies from their bytecode and EIP-1967
transparent/UUPS/beacon proxies from their storage slots.
"""

import re
from typing import Optional

from eth_utils import to_checksum_address

from soltrace.utils.exceptions import SoltraceError
from soltrace.utils.logging import get_logger

logger = get_logger('resolution.proxy')

# keccak256("eip1967.proxy.implementation") - 1
EIP1967_IMPLEMENTATION_SLOT = 0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc
# keccak256("eip1967.proxy.beacon") - 1
EIP1967_BEACON_SLOT = 0xa3f0ad74e5423aebfd80d3ef4346578335a9a72aeaee59ff6cb3582b35133d50
# implementation()
BEACON_IMPLEMENTATION_SELECTOR = '0x5c60da1b'

_EIP1167_PATTERN = re.compile(
    r'^(?:0x)?363d3d373d3d3d363d73([0-9a-f]{40})5af43d82803e903d91602b57fd5bf3', re.IGNORECASE
)
_ZERO_ADDRESS = '0x' + '0' * 40


def _address_from_word(word: bytes) -> Optional[str]:
    if len(word) < 20:
        return None
    address = '0x' + word[-20:].hex()
    return None if address == _ZERO_ADDRESS else to_checksum_address(address)


def minimal_proxy_target(bytecode: str) -> Optional[str]:
    """Implementation address of an EIP-1167 clone, if the bytecode is one."""
    match = _EIP1167_PATTERN.match(bytecode or '')
    return to_checksum_address('0x' + match.group(1)) if match else None


async def detect_proxy_implementation(node, address: str, bytecode: str) -> Optional[str]:
    """
    Return the implementation address behind a proxy, or None.

    Args:
        node: Object exposing ``get_storage_at`` and ``eth_call`` coroutines
              (a TracingClient)
        address: Proxy address
        bytecode: Proxy runtime bytecode as hex
    """
    target = minimal_proxy_target(bytecode)
    if target:
        logger.debug(f"{address} is an EIP-1167 clone of {target}")
        return target

    try:
        implementation = _address_from_word(await node.get_storage_at(address, EIP1967_IMPLEMENTATION_SLOT))
        if implementation:
            logger.debug(f"{address} is an EIP-1967 proxy for {implementation}")
            return implementation

        beacon = _address_from_word(await node.get_storage_at(address, EIP1967_BEACON_SLOT))
        if beacon:
            implementation = _address_from_word(await node.eth_call(beacon, BEACON_IMPLEMENTATION_SELECTOR))
            if implementation:
                logger.debug(f"{address} is a beacon proxy for {implementation}")
            return implementation
    except SoltraceError as e:
        logger.debug(f"Proxy detection failed for {address}: {e.message}")
    return None
