"""
Solidity version handling.

Pragma detection and the simplified compatibility rule used to flag
compilation risks before solc is invoked:

- ``^X.Y.Z``: major equal, (minor, patch) at least (Y, Z)
- ``X.Y.Z``: equal to the compiler version without build metadata
- anything else (ranges, ``>=``, ``<``): reported as incompatible
"""

import re
from typing import Iterable, Optional, Tuple

PRAGMA_PATTERN = re.compile(r'pragma\s+solidity\s+([^;]+);')
EXACT_VERSION_PATTERN = re.compile(r'^\d+\.\d+\.\d+$')
SOLC_VERSION_PATTERN = re.compile(r'Version:\s*(\S+)')

# First release producing ethdebug output
ETHDEBUG_MIN_VERSION = (0, 8, 29)


def find_pragma_directive(sources: Iterable) -> Optional[str]:
    """
    First ``pragma solidity ...;`` among the ``.sol`` sources.

    Flattened files carry several pragmas; the first one is the main file's.
    """
    for source in sources:
        if not source.path.endswith('.sol'):
            continue
        match = PRAGMA_PATTERN.search(source.content)
        if match:
            return match.group(0)
    return None


def extract_version_spec(pragma: str) -> Optional[str]:
    """``pragma solidity ^0.8.20;`` -> ``^0.8.20``"""
    match = PRAGMA_PATTERN.search(pragma or '')
    return match.group(1).strip() if match else None


def clean_solc_version(version: str) -> str:
    """Drop build metadata: ``0.8.30+commit.73712a01`` -> ``0.8.30``."""
    version = version.strip()
    if version.startswith('v'):
        version = version[1:]
    return version.split('+')[0]


def parse_version(version: str) -> Tuple[int, int, int]:
    base = clean_solc_version(version).split('-')[0]
    parts = [int(part) for part in base.split('.')[:3]]
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def is_nightly_build(version: str) -> bool:
    return 'nightly' in version.lower()


def is_solc_version_compatible(pragma: str, solc_version: str) -> bool:
    """Check a pragma directive against a compiler version."""
    spec = extract_version_spec(pragma)
    if not spec:
        return False

    if spec.startswith('^'):
        try:
            major, minor, patch = parse_version(spec[1:])
            solc_major, solc_minor, solc_patch = parse_version(solc_version)
        except ValueError:
            return False
        if solc_major != major:
            return False
        return (solc_minor, solc_patch) >= (minor, patch)

    if EXACT_VERSION_PATTERN.match(spec):
        return spec == clean_solc_version(solc_version)

    return False


def requires_strict_version(pragma: str) -> bool:
    """Whether the pragma may demand a compiler with ethdebug support."""
    spec = extract_version_spec(pragma)
    if not spec:
        return False
    if EXACT_VERSION_PATTERN.match(spec):
        return parse_version(spec) >= ETHDEBUG_MIN_VERSION
    return spec.startswith('^')


def supports_ethdebug(solc_version: str) -> bool:
    try:
        return parse_version(solc_version) >= ETHDEBUG_MIN_VERSION
    except ValueError:
        return False


def parse_solc_version_output(output: str) -> Optional[str]:
    """Extract the version from ``solc --version`` output."""
    match = SOLC_VERSION_PATTERN.search(output or '')
    return match.group(1) if match else None
