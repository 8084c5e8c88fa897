"""Messages received from ckpool: miner shares, workbases and user workbases.

Messages travel as JSON. A message on the wire is an object with a single key,
``Share``, ``Workbase`` or ``UserWorkbase``, whose value holds the payload.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Union

from .blockdata import hash_to_hex, hex_to_hash
from .genesis import GenesisData

LOCK_TIME_THRESHOLD = 500_000_000

_U32_MAX = 0xFFFFFFFF
_U64_MAX = 0xFFFFFFFFFFFFFFFF
_I32_MIN = -(1 << 31)
_I32_MAX = (1 << 31) - 1
_TIME_HEX = re.compile(r"[0-9a-fA-F]{1,8}")


def _require_mapping(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a JSON object")
    return data


def _get(data: dict, name: str) -> Any:
    try:
        return data[name]
    except KeyError:
        raise ValueError(f"missing field {name!r}") from None


def _int(value: Any, name: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {name!r} must be an integer")
    if not low <= value <= high:
        raise ValueError(f"field {name!r} out of range: {value}")
    return value


def _u32(value: Any, name: str) -> int:
    return _int(value, name, 0, _U32_MAX)


def _u64(value: Any, name: str) -> int:
    return _int(value, name, 0, _U64_MAX)


def _i32(value: Any, name: str) -> int:
    return _int(value, name, _I32_MIN, _I32_MAX)


def _str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string")
    return value


def _str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list):
        raise ValueError(f"field {name!r} must be a list")
    return [_str(item, name) for item in value]


def _bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"field {name!r} must be a boolean")
    return value


def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"field {name!r} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValueError(f"field {name!r} is not a decimal: {value!r}") from None
    else:
        raise ValueError(f"field {name!r} must be a number")
    if not result.is_finite():
        raise ValueError(f"field {name!r} must be finite")
    return result


def _float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueError(f"field {name!r} must be a number")
    return float(value)


def _time(value: Any, name: str) -> int:
    seconds = _u32(value, name)
    if seconds < LOCK_TIME_THRESHOLD:
        raise ValueError(f"field {name!r} is not a block time: {seconds}")
    return seconds


def _time_from_hex(value: Any, name: str) -> int:
    text = _str(value, name)
    if not _TIME_HEX.fullmatch(text):
        raise ValueError(f"field {name!r} is not a hex time: {text!r}")
    return _time(int(text, 16), name)


def _time_to_hex(seconds: int) -> str:
    return f"{seconds:08x}"


def _blockhash(value: Any, name: str) -> str:
    text = _str(value, name)
    return hash_to_hex(hex_to_hash(text))


def _json_value(value: Any) -> Any:
    """Plain JSON value with any Decimal numbers turned into floats."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {key: _json_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_json_value(item) for item in value]
    return value


@dataclass
class MinerShare:
    """Work done by a miner as reported by ckpool.

    Only the fields ckpool identifies the share by are serialized; the
    bookkeeping fields are kept locally and reset on deserialization.
    """

    workinfoid: int
    clientid: int
    enonce1: str
    nonce2: str
    nonce: str
    ntime: int
    diff: Decimal
    sdiff: Decimal
    hash: str
    username: str
    result: bool = False
    errn: int = 0
    createdate: str = ""
    createby: str = ""
    createcode: str = ""
    createinet: str = ""
    workername: str = ""
    address: str = ""
    agent: str = ""

    @classmethod
    def genesis(cls, genesis_data: GenesisData) -> MinerShare:
        """The share that the genesis share block of a network carries."""
        return cls(
            workinfoid=genesis_data.workinfoid,
            clientid=genesis_data.clientid,
            enonce1=genesis_data.enonce1,
            nonce2=genesis_data.nonce2,
            nonce=genesis_data.nonce,
            ntime=_time(genesis_data.ntime, "ntime"),
            diff=genesis_data.diff,
            sdiff=genesis_data.sdiff,
            hash=_blockhash(genesis_data.bitcoin_blockhash, "hash"),
            username="",
            result=True,
        )

    @classmethod
    def from_dict(cls, data: Any) -> MinerShare:
        data = _require_mapping(data, "share")
        return cls(
            workinfoid=_u64(_get(data, "workinfoid"), "workinfoid"),
            clientid=_u64(_get(data, "clientid"), "clientid"),
            enonce1=_str(_get(data, "enonce1"), "enonce1"),
            nonce2=_str(_get(data, "nonce2"), "nonce2"),
            nonce=_str(_get(data, "nonce"), "nonce"),
            ntime=_time_from_hex(_get(data, "ntime"), "ntime"),
            diff=_decimal(_get(data, "diff"), "diff"),
            sdiff=_decimal(_get(data, "sdiff"), "sdiff"),
            hash=_blockhash(_get(data, "hash"), "hash"),
            username=_str(_get(data, "username"), "username"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "workinfoid": self.workinfoid,
            "clientid": self.clientid,
            "enonce1": self.enonce1,
            "nonce2": self.nonce2,
            "nonce": self.nonce,
            "ntime": _time_to_hex(self.ntime),
            "diff": str(self.diff),
            "sdiff": str(self.sdiff),
            "hash": self.hash,
            "username": self.username,
        }


@dataclass
class WorkbaseTxn:
    """A transaction of a workbase: its id and raw hex data."""

    txid: str
    data: str

    @classmethod
    def from_dict(cls, data: Any) -> WorkbaseTxn:
        data = _require_mapping(data, "workbase transaction")
        return cls(
            txid=_str(_get(data, "txid"), "txid"),
            data=_str(_get(data, "data"), "data"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"txid": self.txid, "data": self.data}


@dataclass
class WorkbaseMerkleItem:
    """One merkle branch entry of a workbase."""

    merkle: str

    @classmethod
    def from_dict(cls, data: Any) -> WorkbaseMerkleItem:
        data = _require_mapping(data, "merkle item")
        return cls(merkle=_str(_get(data, "merkle"), "merkle"))

    def to_dict(self) -> dict[str, Any]:
        return {"merkle": self.merkle}


@dataclass
class Gbt:
    """The getblocktemplate result ckpool builds a workbase from."""

    capabilities: list[str]
    version: int
    rules: list[str]
    vbavailable: Any
    vbrequired: int
    previousblockhash: str
    transactions: list[Any]
    coinbaseaux: Any
    coinbasevalue: int
    longpollid: str
    target: str
    mintime: int
    mutable: list[str]
    noncerange: str
    sigoplimit: int
    sizelimit: int
    weightlimit: int
    curtime: int
    bits: str
    height: int
    signet_challenge: str
    default_witness_commitment: str
    diff: float
    ntime: int
    bbversion: str
    nbit: str

    @classmethod
    def from_dict(cls, data: Any) -> Gbt:
        data = _require_mapping(data, "gbt")
        transactions = _get(data, "transactions")
        if not isinstance(transactions, list):
            raise ValueError("field 'transactions' must be a list")
        return cls(
            capabilities=_str_list(_get(data, "capabilities"), "capabilities"),
            version=_i32(_get(data, "version"), "version"),
            rules=_str_list(_get(data, "rules"), "rules"),
            vbavailable=_json_value(_get(data, "vbavailable")),
            vbrequired=_u32(_get(data, "vbrequired"), "vbrequired"),
            previousblockhash=_str(_get(data, "previousblockhash"), "previousblockhash"),
            transactions=_json_value(transactions),
            coinbaseaux=_json_value(_get(data, "coinbaseaux")),
            coinbasevalue=_u64(_get(data, "coinbasevalue"), "coinbasevalue"),
            longpollid=_str(_get(data, "longpollid"), "longpollid"),
            target=_str(_get(data, "target"), "target"),
            mintime=_u64(_get(data, "mintime"), "mintime"),
            mutable=_str_list(_get(data, "mutable"), "mutable"),
            noncerange=_str(_get(data, "noncerange"), "noncerange"),
            sigoplimit=_u32(_get(data, "sigoplimit"), "sigoplimit"),
            sizelimit=_u32(_get(data, "sizelimit"), "sizelimit"),
            weightlimit=_u32(_get(data, "weightlimit"), "weightlimit"),
            curtime=_time(_get(data, "curtime"), "curtime"),
            bits=_str(_get(data, "bits"), "bits"),
            height=_u32(_get(data, "height"), "height"),
            signet_challenge=_str(_get(data, "signet_challenge"), "signet_challenge"),
            default_witness_commitment=_str(
                _get(data, "default_witness_commitment"), "default_witness_commitment"
            ),
            diff=_float(_get(data, "diff"), "diff"),
            ntime=_time_from_hex(_get(data, "ntime"), "ntime"),
            bbversion=_str(_get(data, "bbversion"), "bbversion"),
            nbit=_str(_get(data, "nbit"), "nbit"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "capabilities": list(self.capabilities),
            "version": self.version,
            "rules": list(self.rules),
            "vbavailable": self.vbavailable,
            "vbrequired": self.vbrequired,
            "previousblockhash": self.previousblockhash,
            "transactions": list(self.transactions),
            "coinbaseaux": self.coinbaseaux,
            "coinbasevalue": self.coinbasevalue,
            "longpollid": self.longpollid,
            "target": self.target,
            "mintime": self.mintime,
            "mutable": list(self.mutable),
            "noncerange": self.noncerange,
            "sigoplimit": self.sigoplimit,
            "sizelimit": self.sizelimit,
            "weightlimit": self.weightlimit,
            "curtime": self.curtime,
            "bits": self.bits,
            "height": self.height,
            "signet_challenge": self.signet_challenge,
            "default_witness_commitment": self.default_witness_commitment,
            "diff": self.diff,
            "ntime": _time_to_hex(self.ntime),
            "bbversion": self.bbversion,
            "nbit": self.nbit,
        }


@dataclass
class MinerWorkbase:
    """A workbase as used by ckpool."""

    workinfoid: int
    gbt: Gbt
    txns: list[WorkbaseTxn] = field(default_factory=list)
    merkles: list[WorkbaseMerkleItem] = field(default_factory=list)
    coinb1: str = ""
    coinb2: str = ""
    coinb3: str = ""
    # Block header hex without merkle root and nonce.
    header: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> MinerWorkbase:
        data = _require_mapping(data, "workbase")
        txns = _get(data, "txns")
        merkles = _get(data, "merkles")
        if not isinstance(txns, list):
            raise ValueError("field 'txns' must be a list")
        if not isinstance(merkles, list):
            raise ValueError("field 'merkles' must be a list")
        return cls(
            workinfoid=_u64(_get(data, "workinfoid"), "workinfoid"),
            gbt=Gbt.from_dict(_get(data, "gbt")),
            txns=[WorkbaseTxn.from_dict(item) for item in txns],
            merkles=[WorkbaseMerkleItem.from_dict(item) for item in merkles],
            coinb1=_str(_get(data, "coinb1"), "coinb1"),
            coinb2=_str(_get(data, "coinb2"), "coinb2"),
            coinb3=_str(_get(data, "coinb3"), "coinb3"),
            header=_str(_get(data, "header"), "header"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "workinfoid": self.workinfoid,
            "gbt": self.gbt.to_dict(),
            "txns": [txn.to_dict() for txn in self.txns],
            "merkles": [item.to_dict() for item in self.merkles],
            "coinb1": self.coinb1,
            "coinb2": self.coinb2,
            "coinb3": self.coinb3,
            "header": self.header,
        }


@dataclass
class UserWorkbaseParams:
    """Stratum notify parameters; serialized as a positional list of nine."""

    id: str
    prevhash: str
    coinb1: str
    coinb2: str
    merkles: list[str]
    version: str
    nbit: str
    ntime: str
    clean_jobs: bool

    @classmethod
    def from_list(cls, items: Any) -> UserWorkbaseParams:
        if not isinstance(items, (list, tuple)) or len(items) != 9:
            raise ValueError("user workbase params must be a list of 9 items")
        id_, prevhash, coinb1, coinb2, merkles, version, nbit, ntime, clean_jobs = items
        return cls(
            id=_str(id_, "id"),
            prevhash=_str(prevhash, "prevhash"),
            coinb1=_str(coinb1, "coinb1"),
            coinb2=_str(coinb2, "coinb2"),
            merkles=_str_list(merkles, "merkles"),
            version=_str(version, "version"),
            nbit=_str(nbit, "nbit"),
            ntime=_str(ntime, "ntime"),
            clean_jobs=_bool(clean_jobs, "clean_jobs"),
        )

    def to_list(self) -> list[Any]:
        return [
            self.id,
            self.prevhash,
            self.coinb1,
            self.coinb2,
            list(self.merkles),
            self.version,
            self.nbit,
            self.ntime,
            self.clean_jobs,
        ]


@dataclass
class UserWorkbase:
    """The per-user view of a workbase sent to a miner."""

    params: UserWorkbaseParams
    id: str | None
    workinfoid: int
    method: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> UserWorkbase:
        data = _require_mapping(data, "user workbase")
        raw_id = data.get("id")
        return cls(
            params=UserWorkbaseParams.from_list(_get(data, "params")),
            id=None if raw_id is None else _str(raw_id, "id"),
            workinfoid=_u64(_get(data, "workinfoid"), "workinfoid"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "params": self.params.to_list(),
            "id": self.id,
            "workinfoid": self.workinfoid,
        }


CkPoolMessage = Union[MinerShare, MinerWorkbase, UserWorkbase]

_MESSAGE_TYPES: dict[str, type] = {
    "Share": MinerShare,
    "Workbase": MinerWorkbase,
    "UserWorkbase": UserWorkbase,
}


def load_ckpool_message(data: Any) -> CkPoolMessage:
    """Build a message from its tagged JSON object form."""
    data = _require_mapping(data, "ckpool message")
    if len(data) != 1:
        raise ValueError("ckpool message must have exactly one tag")
    ((tag, payload),) = data.items()
    try:
        message_type = _MESSAGE_TYPES[tag]
    except KeyError:
        raise ValueError(f"unknown ckpool message tag {tag!r}") from None
    return message_type.from_dict(payload)


def dump_ckpool_message(message: CkPoolMessage) -> dict[str, Any]:
    """Tagged JSON object form of ``message``."""
    for tag, message_type in _MESSAGE_TYPES.items():
        if isinstance(message, message_type):
            return {tag: message.to_dict()}
    raise TypeError(f"not a ckpool message: {type(message).__name__}")


def loads(text: str | bytes) -> CkPoolMessage | list[CkPoolMessage]:
    """Parse JSON holding one message or a list of messages."""
    data = json.loads(text, parse_float=Decimal)
    if isinstance(data, list):
        return [load_ckpool_message(item) for item in data]
    return load_ckpool_message(data)


def _encode_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def dumps(obj: CkPoolMessage | list[CkPoolMessage]) -> str:
    """Compact JSON for one message or a list of messages."""
    if isinstance(obj, (list, tuple)):
        data: Any = [dump_ckpool_message(message) for message in obj]
    else:
        data = dump_ckpool_message(obj)
    return json.dumps(data, separators=(",", ":"), default=_encode_default)