"""Share chain blocks: headers, blocks, block hashes and their storage form."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

import cbor2

from .blockdata import Transaction, double_sha256, hash_to_hex, hex_to_hash
from .genesis import GenesisData
from .messages import MinerShare


def _normalize_pubkey(value: bytes | str) -> bytes:
    """Public key bytes from bytes or hex, checked for a valid SEC encoding shape."""
    if isinstance(value, str):
        try:
            value = bytes.fromhex(value)
        except ValueError:
            raise ValueError(f"invalid public key hex: {value!r}") from None
    if not isinstance(value, (bytes, bytearray)):
        raise ValueError("public key must be bytes or a hex string")
    value = bytes(value)
    if len(value) == 33 and value[0] in (2, 3):
        return value
    if len(value) == 65 and value[0] == 4:
        return value
    raise ValueError("invalid public key encoding")


@dataclass(frozen=True, eq=False, repr=False)
class ShareBlockHash:
    """Hash identifying a share block, held in internal byte order.

    Built from 32 raw bytes or from its displayed hex form. Compares equal to
    another hash with the same bytes, or to a string that parses to them.
    """

    _raw: bytes = field(init=False)

    def __init__(self, value: bytes | str | ShareBlockHash) -> None:
        if isinstance(value, ShareBlockHash):
            raw = value._raw
        elif isinstance(value, str):
            raw = hex_to_hash(value)
        elif isinstance(value, (bytes, bytearray)):
            raw = bytes(value)
            if len(raw) != 32:
                raise ValueError(f"block hash must be 32 bytes, got {len(raw)}")
        else:
            raise TypeError(f"cannot build a block hash from {type(value).__name__}")
        object.__setattr__(self, "_raw", raw)

    def __bytes__(self) -> bytes:
        return self._raw

    def __str__(self) -> str:
        return hash_to_hex(self._raw)

    def __repr__(self) -> str:
        return f"ShareBlockHash('{self}')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ShareBlockHash):
            return self._raw == other._raw
        if isinstance(other, str):
            return self._raw == hex_to_hash(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._raw)


def _optional_hash(value: ShareBlockHash | bytes | str | None) -> ShareBlockHash | None:
    return None if value is None else ShareBlockHash(value)


@dataclass(eq=False)
class ShareHeader:
    """Header of a share block; used to validate PoW and the transaction merkle root.

    Two headers are equal when their miner shares carry the same bitcoin hash.
    """

    miner_share: MinerShare
    prev_share_blockhash: ShareBlockHash | None
    uncles: list[ShareBlockHash]
    miner_pubkey: bytes
    merkle_root: bytes

    def __post_init__(self) -> None:
        self.prev_share_blockhash = _optional_hash(self.prev_share_blockhash)
        self.uncles = [ShareBlockHash(uncle) for uncle in self.uncles]
        self.miner_pubkey = _normalize_pubkey(self.miner_pubkey)
        if not isinstance(self.merkle_root, (bytes, bytearray)) or len(self.merkle_root) != 32:
            raise ValueError("merkle root must be 32 bytes")
        self.merkle_root = bytes(self.merkle_root)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ShareHeader):
            return NotImplemented
        return self.miner_share.hash == other.miner_share.hash

    @classmethod
    def genesis(
        cls, genesis_data: GenesisData, public_key: bytes | str, merkle_root: bytes
    ) -> ShareHeader:
        """Header of the genesis share built from a network's genesis data."""
        return cls(
            miner_share=MinerShare.genesis(genesis_data),
            prev_share_blockhash=None,
            uncles=[],
            miner_pubkey=public_key,
            merkle_root=merkle_root,
        )

    def _to_cbor(self) -> dict[str, Any]:
        return {
            "miner_share": self.miner_share.to_dict(),
            "prev_share_blockhash": (
                None if self.prev_share_blockhash is None else bytes(self.prev_share_blockhash)
            ),
            "uncles": [bytes(uncle) for uncle in self.uncles],
            "miner_pubkey": self.miner_pubkey,
            "merkle_root": self.merkle_root,
        }

    @classmethod
    def _from_cbor(cls, data: Any) -> ShareHeader:
        if not isinstance(data, dict):
            raise ValueError("share header must be a map")
        uncles = data["uncles"]
        if not isinstance(uncles, list):
            raise ValueError("uncles must be a list")
        return cls(
            miner_share=MinerShare.from_dict(data["miner_share"]),
            prev_share_blockhash=data["prev_share_blockhash"],
            uncles=uncles,
            miner_pubkey=data["miner_pubkey"],
            merkle_root=data["merkle_root"],
        )


@dataclass
class ShareBlock:
    """A block on the share chain; the cached block hash is never serialized."""

    header: ShareHeader
    transactions: list[Transaction] = field(default_factory=list)
    cached_blockhash: ShareBlockHash | None = None

    def _to_cbor(self) -> dict[str, Any]:
        return {
            "header": self.header._to_cbor(),
            "transactions": [tx.serialize() for tx in self.transactions],
        }

    def compute_blockhash(self) -> ShareBlockHash:
        """Hash the CBOR encoding of the block, cache it and return it."""
        serialized = cbor2.dumps(self._to_cbor())
        self.cached_blockhash = ShareBlockHash(double_sha256(serialized))
        return self.cached_blockhash


class ShareBlockBuilder:
    """Builds a share block from a required header and optional transactions."""

    def __init__(self, header: ShareHeader) -> None:
        self._header = header
        self._transactions: list[Transaction] = []

    def with_transactions(self, transactions: Iterable[Transaction]) -> ShareBlockBuilder:
        self._transactions = list(transactions)
        return self

    def build(self) -> ShareBlock:
        block = ShareBlock(header=self._header, transactions=self._transactions)
        block.compute_blockhash()
        return block


@dataclass
class StorageShareBlock:
    """A share block as stored: the header without transactions."""

    header: ShareHeader

    @classmethod
    def from_share_block(cls, block: ShareBlock) -> StorageShareBlock:
        return cls(header=block.header)

    def into_share_block(self) -> ShareBlock:
        """Share block with no transactions."""
        return ShareBlockBuilder(self.header).build()

    def into_share_block_with_transactions(
        self, transactions: Iterable[Transaction]
    ) -> ShareBlock:
        return ShareBlockBuilder(self.header).with_transactions(transactions).build()

    def cbor_serialize(self) -> bytes:
        return cbor2.dumps({"header": self.header._to_cbor()})

    @classmethod
    def cbor_deserialize(cls, data: bytes) -> StorageShareBlock:
        """Decode from CBOR bytes; raises ValueError on malformed input."""
        try:
            decoded = cbor2.loads(data)
            if not isinstance(decoded, dict):
                raise ValueError("storage share block must be a map")
            return cls(header=ShareHeader._from_cbor(decoded["header"]))
        except (cbor2.CBORDecodeError, KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid storage share block: {exc}") from exc