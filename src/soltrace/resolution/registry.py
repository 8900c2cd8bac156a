"""
Base class for verification registry loaders.
"""

import asyncio
from typing import Any, Optional, Tuple

import aiohttp

from soltrace.resolution.models import RegistryResult
from soltrace.utils.exceptions import RegistryError, format_exception_message
from soltrace.utils.logging import get_logger

logger = get_logger('resolution')


class RegistryLoader:
    """
    Fetches verified source and ABI for an address from one registry.

    Subclasses implement ``load`` and raise ContractNotVerifiedError when
    the registry has nothing for the address; every other failure is a
    RegistryError.
    """

    name = 'registry'

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self.session = session
        self.base_url = base_url.rstrip('/')

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Tuple[int, Any]:
        """GET a URL and return ``(status, decoded JSON or None)``."""
        try:
            async with self.session.get(url, params=params, headers={'accept': 'application/json'}) as response:
                if response.status >= 400:
                    return response.status, None
                return response.status, await response.json(content_type=None)
        except (aiohttp.ContentTypeError, ValueError) as e:
            raise RegistryError(f"{self.name} returned a non-JSON response") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RegistryError(
                f"{self.name} request failed: {format_exception_message(e)}"
            ) from e

    async def load(self, address: str, chain_id: int) -> RegistryResult:
        raise NotImplementedError
