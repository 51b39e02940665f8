"""Read access to the settlement engine: bounded log fetch and point reads.

Modules:
    event_source   Window-bounded, all-or-nothing event fetch.
    chain          web3 log reader / state probe and log decoding.
    probe          Per-position failure isolation for point reads.
    abi            Event and function ABIs for both schema versions.
    pool_id        Pool identifier derivation.
"""

from .event_source import LedgerEventSource
from .probe import SafeStateProbe

__all__ = ["LedgerEventSource", "SafeStateProbe"]
