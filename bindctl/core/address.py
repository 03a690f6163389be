"""PCI address normalization."""

from __future__ import annotations

import re

from bindctl.core.errors import InvalidAddressError

_ADDRESS_RE = re.compile(
    r"^(?:(?P<segment>[0-9a-f]{4}):)?(?P<bus>[0-9a-f]{2}):(?P<slot>[0-9a-f]{2})\.(?P<function>[0-7])$"
)


def canonical_address(address: str) -> str:
    """Return the ``ssss:bb:dd.f`` form of a full or segment-less address."""
    match = _ADDRESS_RE.match(address.strip().lower())
    if not match:
        raise InvalidAddressError(f"Invalid PCI address '{address}' (expected [ssss:]bb:dd.f)")
    segment = match.group("segment") or "0000"
    return f"{segment}:{match.group('bus')}:{match.group('slot')}.{match.group('function')}"


def short_address(address: str) -> str:
    canonical = canonical_address(address)
    if canonical.startswith("0000:"):
        return canonical[len("0000:"):]
    return canonical


def address_digits(address: str) -> str:
    return re.sub(r"[:.]", "", short_address(address))
