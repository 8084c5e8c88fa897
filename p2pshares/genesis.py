"""Genesis share data for the supported networks."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal


class Network(enum.Enum):
    """Bitcoin networks a share chain can run on."""

    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    TESTNET4 = "testnet4"
    SIGNET = "signet"
    REGTEST = "regtest"


@dataclass(frozen=True)
class GenesisData:
    """Fixed values from which the genesis share of a network is built."""

    workinfoid: int
    clientid: int
    enonce1: str
    nonce2: str
    nonce: str
    ntime: int
    diff: Decimal
    sdiff: Decimal
    bitcoin_blockhash: str


_SIGNET_GENESIS_DATA = GenesisData(
    workinfoid=0,
    clientid=0,
    enonce1="fdf8b667",
    nonce2="0000000000000000",
    nonce="f15f1590",
    ntime=1740044600,  # 0x67b6f938
    diff=Decimal("1.0"),
    sdiff=Decimal("31.465847594928551"),
    bitcoin_blockhash="000000000822bbfaf34d53fc43d0c1382054d3aafe31893020c315db8b0a19f9",
)

_GENESIS_BY_NETWORK = {Network.SIGNET: _SIGNET_GENESIS_DATA}


def genesis_data(network: Network) -> GenesisData:
    """Return the genesis data for ``network``.

    Raises ValueError for networks without a genesis share.
    """
    try:
        return _GENESIS_BY_NETWORK[network]
    except KeyError:
        raise ValueError("Unsupported network") from None