from dataclasses import replace
from decimal import Decimal

import pytest

from p2pshares.blockdata import NULL_HASH, compact_to_target, hash_to_hex
from p2pshares.builders import (
    ShareValidationError,
    build_bitcoin_block,
    build_bitcoin_header,
    build_coinbase_from_share,
    compute_merkle_root_from_txids,
    decode_transactions,
    decode_txids,
    validate_share,
)
from p2pshares.messages import (
    Gbt,
    MinerShare,
    MinerWorkbase,
    UserWorkbase,
    UserWorkbaseParams,
    WorkbaseTxn,
)

BLOCK_HASH = "000000000822bbfaf34d53fc43d0c1382054d3aafe31893020c315db8b0a19f9"
COINBASE_TXID = "186d34fc6257b8f327e41abe5ec5ee29022af3772b1233b5eb152a85e23aad04"
PREV_BLOCKHASH = "00000000863a9563ff5d87f94b9db355a53326456301fcaf8f665af26d600f56"
COINB1 = (
    "01000000010000000000000000000000000000000000000000000000000000000000000000"
    "ffffffff2c017b000438f9b667049c0fc52d0c"
)
COINB2 = (
    "0a636b706f6f6c0a2f7032706f6f6c76322fffffffff0300111024010000001600148f1b6f0d"
    "5a0422afad259ec03977bdf2c74a037600e1f50500000000160014a248cf2f99f449511b22ba"
    "b1a3d001719f84cd090000000000000000266a24aa21a9ede2f61c3f71d1defd3fa999dfa369"
    "53755c690689799962b48bebd836974e8cf900000000"
)
SEGWIT_TX_HEX = (
    "010000000001010000000000000000000000000000000000000000000000000000000000000000"
    "ffffffff2c017b000438f9b667049c0fc52d0cfdf8b66700000000000000000a636b706f6f6c0a"
    "2f7032706f6f6c76322fffffffff0300111024010000001600148f1b6f0d5a0422afad259ec039"
    "77bdf2c74a037600e1f50500000000160014a248cf2f99f449511b22bab1a3d001719f84cd0900"
    "00000000000000266a24aa21a9ede2f61c3f71d1defd3fa999dfa36953755c690689799962b48b"
    "ebd836974e8cf9012000000000000000000000000000000000000000000000000000000000000000"
    "0000000000"
)


@pytest.fixture
def workbase():
    gbt = Gbt(
        capabilities=["proposal"],
        version=536870912,
        rules=["csv", "!segwit", "!signet", "taproot"],
        vbavailable={},
        vbrequired=0,
        previousblockhash=PREV_BLOCKHASH,
        transactions=[],
        coinbaseaux={},
        coinbasevalue=5000000000,
        longpollid="longpoll",
        target="00000377ae000000000000000000000000000000000000000000000000000000",
        mintime=1740044000,
        mutable=["time", "transactions", "prevblock"],
        noncerange="00000000ffffffff",
        sigoplimit=80000,
        sizelimit=4000000,
        weightlimit=4000000,
        curtime=1740044600,
        bits="1e0377ae",
        height=123,
        signet_challenge="51",
        default_witness_commitment=(
            "6a24aa21a9ede2f61c3f71d1defd3fa999dfa36953755c690689799962b48bebd836974e8cf9"
        ),
        diff=0.001126515290698186,
        ntime=1740044600,
        bbversion="20000000",
        nbit="1e0377ae",
    )
    return MinerWorkbase(workinfoid=7473434392883363843, gbt=gbt)


@pytest.fixture
def userworkbase():
    params = UserWorkbaseParams(
        id="67b6f8fc00000003",
        prevhash="6d600f568f665af26301fcafa53326454b9db355ff5d87f9863a956300000000",
        coinb1=COINB1,
        coinb2=COINB2,
        merkles=[],
        version="20000000",
        nbit="1e0377ae",
        ntime="67b6f938",
        clean_jobs=False,
    )
    return UserWorkbase(params=params, id=None, workinfoid=7473434392883363843)


@pytest.fixture
def share():
    return MinerShare(
        workinfoid=7473434392883363843,
        clientid=1,
        enonce1="fdf8b667",
        nonce2="0000000000000000",
        nonce="f15f1590",
        ntime=1740044600,
        diff=Decimal("1.0"),
        sdiff=Decimal("31.465847594928551"),
        hash=BLOCK_HASH,
        username="",
    )


def test_build_coinbase(userworkbase, share):
    coinbase = build_coinbase_from_share(userworkbase, share)

    assert coinbase.is_coinbase()
    assert len(coinbase.inputs) == 1
    assert len(coinbase.outputs) == 3
    assert coinbase.version == 1
    assert coinbase.lock_time == 0

    assert coinbase.outputs[0].value == 4900000000
    assert coinbase.outputs[0].script_pubkey.hex() == "00148f1b6f0d5a0422afad259ec03977bdf2c74a0376"

    assert coinbase.outputs[1].value == 100000000
    assert coinbase.outputs[1].script_pubkey.hex() == "0014a248cf2f99f449511b22bab1a3d001719f84cd09"

    assert coinbase.outputs[2].value == 0
    assert coinbase.outputs[2].script_pubkey.hex() == (
        "6a24aa21a9ede2f61c3f71d1defd3fa999dfa36953755c690689799962b48bebd836974e8cf9"
    )

    assert hash_to_hex(coinbase.txid()) == COINBASE_TXID


def test_build_coinbase_rejects_bad_hex(userworkbase, share):
    with pytest.raises(ValueError):
        build_coinbase_from_share(userworkbase, replace(share, enonce1="zz"))


def test_build_bitcoin_header(workbase, userworkbase, share):
    coinbase = build_coinbase_from_share(userworkbase, share)
    txids = [coinbase.txid(), *decode_txids(workbase.txns)]
    root = compute_merkle_root_from_txids(txids)

    assert hash_to_hex(root) == COINBASE_TXID

    header = build_bitcoin_header(workbase, share, root)

    assert header.version == 536870912
    assert hash_to_hex(header.prev_blockhash) == PREV_BLOCKHASH
    assert header.time.to_bytes(4, "big").hex() == "67b6f938"
    assert header.bits.to_bytes(4, "big").hex() == "1e0377ae"
    assert header.nonce.to_bytes(4, "big").hex() == "f15f1590"
    assert hash_to_hex(header.block_hash()) == BLOCK_HASH


def test_build_bitcoin_header_rejects_prefixed_bits(workbase, share):
    bad = replace(workbase, gbt=replace(workbase.gbt, bits="0x1e0377ae"))
    with pytest.raises(ValueError):
        build_bitcoin_header(bad, share, NULL_HASH)


def test_build_bitcoin_block_and_validation(workbase, userworkbase, share):
    block = build_bitcoin_block(workbase, userworkbase, share)

    assert len(block.transactions) == 1
    assert block.header.version == workbase.gbt.version
    assert block.header.nonce == int(share.nonce, 16)
    assert block.header.bits == int(workbase.gbt.bits, 16)
    assert block.header.time == share.ntime

    assert block.check_merkle_root()
    assert block.check_witness_commitment()

    required_target = compact_to_target(userworkbase.params.nbit)
    assert block.header.target() == required_target
    assert hash_to_hex(block.header.block_hash()) == BLOCK_HASH
    assert hash_to_hex(block.header.validate_pow(required_target)) == BLOCK_HASH


def test_decode_transactions():
    txns = [
        WorkbaseTxn(
            txid="d5ada3c7b0fb6e9e8a8c5c2f36f3e3134d0cf5d6eb6b14c0c70a53e13b4c5d9f",
            data=SEGWIT_TX_HEX,
        )
    ]

    decoded = decode_transactions(txns)

    assert len(decoded) == 1
    tx = decoded[0]
    assert tx.version == 1
    assert tx.lock_time == 0
    assert len(tx.inputs) == 1
    assert tx.inputs[0].prev_txid == NULL_HASH
    assert tx.inputs[0].prev_vout == 4294967295
    assert tx.inputs[0].sequence == 0xFFFFFFFF
    assert len(tx.outputs) == 3
    assert tx.serialize().hex() == SEGWIT_TX_HEX.lower()


def test_decode_txids_rejects_invalid():
    with pytest.raises(ValueError):
        decode_txids([WorkbaseTxn(txid="nothex", data="")])


def test_merkle_root_of_no_txids_is_none():
    assert compute_merkle_root_from_txids([]) is None


def test_merkle_root_of_single_txid_is_the_txid():
    txid = bytes(range(32))
    assert compute_merkle_root_from_txids([txid]) == txid


def test_validate_share(workbase, userworkbase, share):
    with pytest.raises(ShareValidationError) as excinfo:
        validate_share(replace(share, nonce="invalidhex"), workbase, userworkbase)
    assert str(excinfo.value) == "Failed to build header: invalid digit found in string"

    with pytest.raises(ShareValidationError) as excinfo:
        validate_share(replace(share, nonce="2eb7b8"), workbase, userworkbase)
    assert str(excinfo.value) == "Invalid proof of work"


@pytest.mark.parametrize(
    ("nonce", "message"),
    [
        ("", "Failed to build header: cannot parse integer from empty string"),
        ("1ffffffff", "Failed to build header: number too large to fit in target type"),
        ("-1", "Failed to build header: invalid digit found in string"),
    ],
)
def test_validate_share_nonce_errors(workbase, userworkbase, share, nonce, message):
    with pytest.raises(ShareValidationError) as excinfo:
        validate_share(replace(share, nonce=nonce), workbase, userworkbase)
    assert str(excinfo.value) == message


def test_validate_share_bad_txid(workbase, userworkbase, share):
    bad = replace(workbase, txns=[WorkbaseTxn(txid="xyz", data="00")])
    with pytest.raises(ShareValidationError) as excinfo:
        validate_share(share, bad, userworkbase)
    assert str(excinfo.value).startswith("Failed to parse txid:")


def test_validate_share_with_workbase(workbase, userworkbase, share):
    assert validate_share(share, workbase, userworkbase) is True


def test_workbase_coinbase_deserialization(userworkbase, share):
    coinbase = build_coinbase_from_share(userworkbase, share)
    assert coinbase.is_coinbase()