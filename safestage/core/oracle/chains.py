"""Default public RPC endpoints for well-known chains.

Used when no ``RPC_URLS`` entry resolves to the requested chain id.
"""

from __future__ import annotations

DEFAULT_CHAIN_RPCS: dict[int, str] = {
    1: "https://eth.merkle.io",
    10: "https://mainnet.optimism.io",
    56: "https://56.rpc.thirdweb.com",
    100: "https://rpc.gnosischain.com",
    137: "https://polygon-rpc.com",
    324: "https://mainnet.era.zksync.io",
    1101: "https://zkevm-rpc.com",
    5000: "https://rpc.mantle.xyz",
    8453: "https://mainnet.base.org",
    42161: "https://arb1.arbitrum.io/rpc",
    42220: "https://forno.celo.org",
    43114: "https://api.avax.network/ext/bc/C/rpc",
    59144: "https://rpc.linea.build",
    84532: "https://sepolia.base.org",
    534352: "https://rpc.scroll.io",
    11155111: "https://sepolia.drpc.org",
}


def default_rpc_url(chain_id: int) -> str | None:
    return DEFAULT_CHAIN_RPCS.get(chain_id)
