"""Bitcoin transactions, block headers and blocks in consensus encoding."""

from __future__ import annotations

import hashlib
import re
import struct
from dataclasses import dataclass, field
from typing import Iterable

NULL_HASH = bytes(32)

_MAX_U32 = 0xFFFFFFFF
_U256_MASK = (1 << 256) - 1
_WITNESS_MAGIC = bytes.fromhex("6a24aa21a9ed")
_HASH_HEX = re.compile(r"[0-9a-fA-F]{64}")
_UNPREFIXED_HEX = re.compile(r"[0-9a-fA-F]+")


def double_sha256(data: bytes) -> bytes:
    """SHA-256 applied twice."""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash_to_hex(raw: bytes) -> str:
    """Display form of a 32-byte hash: byte-reversed hex."""
    if len(raw) != 32:
        raise ValueError(f"hash must be 32 bytes, got {len(raw)}")
    return raw[::-1].hex()


def hex_to_hash(text: str) -> bytes:
    """Parse a displayed hash string into internal byte order."""
    if not isinstance(text, str) or not _HASH_HEX.fullmatch(text):
        raise ValueError(f"invalid hash string: {text!r}")
    return bytes.fromhex(text)[::-1]


def merkle_root(hashes: Iterable[bytes]) -> bytes | None:
    """Bitcoin merkle root of ``hashes``, or None when there are none."""
    level = list(hashes)
    if not level:
        return None
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [double_sha256(left + right) for left, right in zip(level[::2], level[1::2])]
    return level[0]


def compact_to_target(bits: int | str) -> int:
    """Expand compact ``bits`` (an int or unprefixed hex string) to a target."""
    if isinstance(bits, str):
        if not _UNPREFIXED_HEX.fullmatch(bits):
            raise ValueError(f"invalid compact target: {bits!r}")
        bits = int(bits, 16)
    if not 0 <= bits <= _MAX_U32:
        raise ValueError(f"compact target out of range: {bits:#x}")
    exponent = bits >> 24
    if exponent <= 3:
        mantissa = (bits & 0xFFFFFF) >> (8 * (3 - exponent))
        shift = 0
    else:
        mantissa = bits & 0xFFFFFF
        shift = 8 * (exponent - 3)
    if mantissa > 0x7FFFFF:
        return 0
    return (mantissa << shift) & _U256_MASK


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    def read(self, size: int) -> bytes:
        end = self._pos + size
        if end > len(self._data):
            raise ValueError("unexpected end of data")
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def unpack(self, fmt: str) -> int:
        (value,) = struct.unpack(fmt, self.read(struct.calcsize(fmt)))
        return value

    def varint(self) -> int:
        first = self.read(1)[0]
        if first < 0xFD:
            return first
        fmt, minimum = {
            0xFD: ("<H", 0xFD),
            0xFE: ("<I", 0x10000),
            0xFF: ("<Q", 0x100000000),
        }[first]
        value = self.unpack(fmt)
        if value < minimum:
            raise ValueError("non-minimal varint")
        return value

    def var_bytes(self) -> bytes:
        return self.read(self.varint())

    def inputs(self) -> list[TxIn]:
        return [
            TxIn(
                prev_txid=self.read(32),
                prev_vout=self.unpack("<I"),
                script_sig=self.var_bytes(),
                sequence=self.unpack("<I"),
            )
            for _ in range(self.varint())
        ]

    def outputs(self) -> list[TxOut]:
        return [
            TxOut(value=self.unpack("<q"), script_pubkey=self.var_bytes())
            for _ in range(self.varint())
        ]


def _varint(value: int) -> bytes:
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", value)
    if value <= _MAX_U32:
        return b"\xfe" + struct.pack("<I", value)
    return b"\xff" + struct.pack("<Q", value)


def _var_bytes(data: bytes) -> bytes:
    return _varint(len(data)) + data


@dataclass
class TxIn:
    """A transaction input."""

    prev_txid: bytes
    prev_vout: int
    script_sig: bytes = b""
    sequence: int = _MAX_U32
    witness: list[bytes] = field(default_factory=list)

    @property
    def is_null(self) -> bool:
        return self.prev_txid == NULL_HASH and self.prev_vout == _MAX_U32


@dataclass
class TxOut:
    """A transaction output with its value in satoshis."""

    value: int
    script_pubkey: bytes


@dataclass
class Transaction:
    """A Bitcoin transaction."""

    version: int
    inputs: list[TxIn]
    outputs: list[TxOut]
    lock_time: int = 0

    @classmethod
    def parse(cls, data: bytes) -> Transaction:
        """Decode a transaction from consensus bytes; bytes after it are ignored."""
        reader = _Reader(data)
        version = reader.unpack("<i")
        inputs = reader.inputs()
        if not inputs:
            flag = reader.read(1)[0]
            if flag != 1:
                raise ValueError(f"unsupported segwit flag {flag}")
            inputs = reader.inputs()
            outputs = reader.outputs()
            for txin in inputs:
                txin.witness = [reader.var_bytes() for _ in range(reader.varint())]
            if inputs and all(not txin.witness for txin in inputs):
                raise ValueError("witness flag set but no witnesses present")
        else:
            outputs = reader.outputs()
        lock_time = reader.unpack("<I")
        return cls(version=version, inputs=inputs, outputs=outputs, lock_time=lock_time)

    def _uses_segwit(self) -> bool:
        return not self.inputs or any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """Consensus encoding, with witness data unless told otherwise."""
        segwit = include_witness and self._uses_segwit()
        parts = [struct.pack("<i", self.version)]
        if segwit:
            parts.append(b"\x00\x01")
        parts.append(_varint(len(self.inputs)))
        for txin in self.inputs:
            parts.append(txin.prev_txid)
            parts.append(struct.pack("<I", txin.prev_vout))
            parts.append(_var_bytes(txin.script_sig))
            parts.append(struct.pack("<I", txin.sequence))
        parts.append(_varint(len(self.outputs)))
        for txout in self.outputs:
            parts.append(struct.pack("<q", txout.value))
            parts.append(_var_bytes(txout.script_pubkey))
        if segwit:
            for txin in self.inputs:
                parts.append(_varint(len(txin.witness)))
                parts.extend(_var_bytes(item) for item in txin.witness)
        parts.append(struct.pack("<I", self.lock_time))
        return b"".join(parts)

    def txid(self) -> bytes:
        """Transaction id in internal byte order."""
        return double_sha256(self.serialize(include_witness=False))

    def _wtxid(self) -> bytes:
        return double_sha256(self.serialize())

    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].is_null


@dataclass
class BlockHeader:
    """An 80-byte Bitcoin block header; hashes in internal byte order."""

    version: int
    prev_blockhash: bytes
    merkle_root: bytes
    time: int
    bits: int
    nonce: int

    def serialize(self) -> bytes:
        return struct.pack(
            "<i32s32sIII",
            self.version,
            self.prev_blockhash,
            self.merkle_root,
            self.time,
            self.bits,
            self.nonce,
        )

    def block_hash(self) -> bytes:
        return double_sha256(self.serialize())

    def target(self) -> int:
        return compact_to_target(self.bits)

    def validate_pow(self, required_target: int) -> bytes:
        """Return the block hash if it meets ``required_target``, else raise ValueError."""
        target = self.target()
        if target != required_target:
            raise ValueError("block target incorrect")
        block_hash = self.block_hash()
        if int.from_bytes(block_hash, "little") > target:
            raise ValueError("block target correct but not attained")
        return block_hash


@dataclass
class Block:
    """A block header and its transactions."""

    header: BlockHeader
    transactions: list[Transaction] = field(default_factory=list)

    def check_merkle_root(self) -> bool:
        root = merkle_root(tx.txid() for tx in self.transactions)
        return root is not None and root == self.header.merkle_root

    def _witness_root(self) -> bytes | None:
        hashes = (
            NULL_HASH if position == 0 else tx._wtxid()
            for position, tx in enumerate(self.transactions)
        )
        return merkle_root(hashes)

    def check_witness_commitment(self) -> bool:
        """Check the coinbase witness commitment; optional when no witnesses are used."""
        if all(not txin.witness for tx in self.transactions for txin in tx.inputs):
            return True
        if not self.transactions:
            return False
        coinbase = self.transactions[0]
        if not coinbase.is_coinbase():
            return False
        commitment = next(
            (
                out.script_pubkey[6:38]
                for out in reversed(coinbase.outputs)
                if len(out.script_pubkey) >= 38 and out.script_pubkey[:6] == _WITNESS_MAGIC
            ),
            None,
        )
        if commitment is None:
            return False
        witness = coinbase.inputs[0].witness
        if len(witness) != 1 or len(witness[0]) != 32:
            return False
        witness_root = self._witness_root()
        if witness_root is None:
            return False
        return commitment == double_sha256(witness_root + witness[0])