"""Chain oracles: digests, nonces and signature checks for Safe accounts."""

from safestage.core.oracle.base import ChainOracle
from safestage.core.oracle.safe_rpc import SafeRpcOracle

__all__ = ["ChainOracle", "SafeRpcOracle"]
