"""Build Bitcoin coinbases, headers and blocks from ckpool shares and workbases."""

from __future__ import annotations

import binascii
import re
import string
from typing import Iterable

from .blockdata import (
    Block,
    BlockHeader,
    Transaction,
    compact_to_target,
    hex_to_hash,
    merkle_root,
)
from .messages import MinerShare, MinerWorkbase, UserWorkbase, WorkbaseTxn

_U32_MAX = 0xFFFFFFFF
_UNPREFIXED_HEX = re.compile(r"[0-9a-fA-F]+")


class ShareValidationError(ValueError):
    """A miner share failed validation against its workbase."""


def _decode_hex(text: str) -> bytes:
    try:
        return binascii.unhexlify(text)
    except (binascii.Error, TypeError) as exc:
        raise ValueError(f"invalid hex: {exc}") from None


def _parse_u32_hex(text: str) -> int:
    """Parse a base-16 u32 the way the share's nonce is specified."""
    if not text:
        raise ValueError("cannot parse integer from empty string")
    digits = text[1:] if text[0] == "+" else text
    if not digits or any(char not in string.hexdigits for char in digits):
        raise ValueError("invalid digit found in string")
    value = int(digits, 16)
    if value > _U32_MAX:
        raise ValueError("number too large to fit in target type")
    return value


def _parse_compact(text: str) -> int:
    """Parse compact target bits written as unprefixed hex."""
    if text.startswith(("0x", "0X")):
        raise ValueError(f"compact target must not be prefixed: {text!r}")
    if not _UNPREFIXED_HEX.fullmatch(text):
        raise ValueError(f"invalid compact target: {text!r}")
    value = int(text, 16)
    if value > _U32_MAX:
        raise ValueError(f"compact target out of range: {text!r}")
    return value


def build_coinbase_from_share(userworkbase: UserWorkbase, share: MinerShare) -> Transaction:
    """Assemble the coinbase transaction a share was mined with.

    The coinbase is not validated here; ckpool has already done so.
    """
    params = userworkbase.params
    complete = f"{params.coinb1}{share.enonce1}{share.nonce2}{params.coinb2}"
    return Transaction.parse(_decode_hex(complete))


def decode_transactions(txns: Iterable[WorkbaseTxn]) -> list[Transaction]:
    """Decode the raw transactions of a workbase."""
    return [Transaction.parse(_decode_hex(txn.data)) for txn in txns]


def decode_txids(txns: Iterable[WorkbaseTxn]) -> list[bytes]:
    """Parse the txids of a workbase into internal byte order."""
    return [hex_to_hash(txn.txid) for txn in txns]


def compute_merkle_root_from_txids(txids: Iterable[bytes]) -> bytes | None:
    """Merkle root of ``txids``, or None when there are none."""
    return merkle_root(txids)


def build_bitcoin_header(
    workbase: MinerWorkbase, share: MinerShare, merkle_root: bytes
) -> BlockHeader:
    """Block header for ``share`` mined on ``workbase``."""
    prev_blockhash = hex_to_hash(workbase.gbt.previousblockhash)
    bits = _parse_compact(workbase.gbt.bits)
    nonce = _parse_u32_hex(share.nonce)
    return BlockHeader(
        version=workbase.gbt.version,
        prev_blockhash=prev_blockhash,
        merkle_root=merkle_root,
        time=share.ntime,
        bits=bits,
        nonce=nonce,
    )


def build_bitcoin_block(
    workbase: MinerWorkbase, userworkbase: UserWorkbase, share: MinerShare
) -> Block:
    """Full Bitcoin block for ``share``: coinbase first, then the workbase transactions."""
    coinbase = build_coinbase_from_share(userworkbase, share)
    transactions = [coinbase, *decode_transactions(workbase.txns)]
    txids = [coinbase.txid(), *decode_txids(workbase.txns)]
    root = compute_merkle_root_from_txids(txids)
    if root is None:
        raise ValueError("Failed to compute merkle root")
    header = build_bitcoin_header(workbase, share, root)
    return Block(header=header, transactions=transactions)


def validate_share(
    share: MinerShare, workbase: MinerWorkbase, user_workbase: UserWorkbase
) -> bool:
    """Check the share's proof of work, merkle root and witness commitment.

    Returns True, or raises ShareValidationError describing the failure.
    """
    try:
        coinbase = build_coinbase_from_share(user_workbase, share)
    except ValueError as exc:
        raise ShareValidationError(f"Failed to build coinbase: {exc}") from exc
    try:
        txids = decode_txids(workbase.txns)
    except ValueError as exc:
        raise ShareValidationError(f"Failed to parse txid: {exc}") from exc
    root = compute_merkle_root_from_txids([coinbase.txid(), *txids])
    if root is None:
        raise ShareValidationError("Failed to compute merkle root")
    try:
        header = build_bitcoin_header(workbase, share, root)
    except ValueError as exc:
        raise ShareValidationError(f"Failed to build header: {exc}") from exc
    try:
        block = build_bitcoin_block(workbase, user_workbase, share)
    except ValueError as exc:
        raise ShareValidationError(f"Failed to build block: {exc}") from exc

    required_target = compact_to_target(_parse_compact(user_workbase.params.nbit))
    try:
        header.validate_pow(required_target)
    except ValueError:
        raise ShareValidationError("Invalid proof of work") from None
    if not block.check_merkle_root():
        raise ShareValidationError("Invalid merkle root")
    if not block.check_witness_commitment():
        raise ShareValidationError("Invalid witness commitment")
    return True