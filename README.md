# p2pshares

Building blocks for a peer-to-peer mining pool share chain: the messages a
ckpool instance publishes, the bitcoin blocks and headers that can be rebuilt
from them, the share blocks that make up the share chain, and a receiver that
listens to ckpool over ZeroMQ.

## Installation

```
pip install .
```

For running the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `p2pshares.genesis`: the `Network` enumeration, the frozen `GenesisData`
  record and `genesis_data(network)`. That function returns the hard-coded
  genesis data for a network. Only `Network.SIGNET` is supported. Any other
  network raises `ValueError("Unsupported network")`.

- `p2pshares.blockdata`: minimal bitcoin consensus types.
  - `TxIn` and `TxOut`.
  - `Transaction`, with `parse`, `serialize(include_witness=True)`, `txid` and
    `is_coinbase`.
  - `BlockHeader`, with `serialize`, `block_hash`, `target` and
    `validate_pow(required_target)`. `validate_pow` returns the block hash or
    raises `ValueError`.
  - `Block`, with `check_merkle_root` and `check_witness_commitment`.
  - The helpers `double_sha256`, `hash_to_hex`, `hex_to_hash`, `merkle_root`
    and `compact_to_target`.

  Hashes are `bytes` in internal byte order. `hash_to_hex` and `hex_to_hash`
  convert to and from the usual byte-reversed display form.

- `p2pshares.messages`: the data ckpool sends.
  - `MinerShare`.
  - `MinerWorkbase`, with its `Gbt` block template, `WorkbaseTxn` and
    `WorkbaseMerkleItem`.
  - `UserWorkbase`, with `UserWorkbaseParams`. The params are serialized as a
    positional list of nine items.

  Each class has `from_dict`/`to_dict`. `UserWorkbaseParams` has
  `from_list`/`to_list` instead.

  `load_ckpool_message` builds a message object from the tagged JSON object
  form, and `dump_ckpool_message` turns one back into that form. The tagged
  form is `{"Share": {...}}`, `{"Workbase": {...}}` or
  `{"UserWorkbase": {...}}`.

  `loads` parses JSON text holding one message or a list of messages. Floats
  are read as `Decimal`, so share difficulties stay exact. `dumps` writes
  compact JSON. Malformed input raises `ValueError`.

- `p2pshares.builders`: rebuilds bitcoin data from a workbase, a user workbase
  and a share.
  - `build_coinbase_from_share`.
  - `decode_transactions` and `decode_txids`.
  - `compute_merkle_root_from_txids`.
  - `build_bitcoin_header` and `build_bitcoin_block`.
  - `validate_share(share, workbase, user_workbase)`. It returns `True`, or
    raises `ShareValidationError` (a `ValueError`) naming the failure: a
    coinbase, txid, header or block that cannot be built, an invalid proof of
    work, merkle root or witness commitment.

- `p2pshares.shares`: the share chain types.
  - `ShareBlockHash` is built from 32 bytes or a hex string. It compares equal
    to an equal hash or to a matching hex string, and is hashable.
  - `ShareHeader` has a `genesis` constructor. Two headers are equal when
    their miner shares carry the same bitcoin hash.
  - `ShareBlock`. Its `compute_blockhash` hashes the block's CBOR encoding and
    caches the result.
  - `ShareBlockBuilder`.
  - `StorageShareBlock` is the header-only form used for storage. It has
    `from_share_block`, `into_share_block`,
    `into_share_block_with_transactions`, `cbor_serialize` and
    `cbor_deserialize`.

- `p2pshares.ckpool_socket`: receiving from ckpool.
  - `create_zmq_socket(host, port)` opens a SUB socket subscribed to
    everything.
  - `receive_shares(socket, queue)` puts every received JSON value on `queue`.
    It raises `ShareReceiveError` on bad JSON, undecodable data or a socket
    error. Its `disconnected` attribute marks a lost socket.
  - `receive_from_ckpool(host, port, queue)` loops forever, reconnecting with
    an exponential backoff that starts at 100 ms.

## Examples

Parse a message published by ckpool:

```python
from p2pshares.messages import loads

message = loads(raw_json_text)   # a MinerShare, MinerWorkbase or UserWorkbase
```

Rebuild and check the bitcoin block behind a share:

```python
from p2pshares.blockdata import hash_to_hex
from p2pshares.builders import ShareValidationError, build_bitcoin_block, validate_share

block = build_bitcoin_block(workbase, userworkbase, share)
print(hash_to_hex(block.header.block_hash()))

try:
    validate_share(share, workbase, userworkbase)
except ShareValidationError as err:
    print("rejected:", err)
```

Feed messages from a running ckpool into a queue from a worker thread:

```python
import queue
import threading

from p2pshares.ckpool_socket import receive_from_ckpool

received = queue.Queue()
threading.Thread(
    target=receive_from_ckpool,
    args=("127.0.0.1", 8881, received),
    daemon=True,
).start()

first_value = received.get()
```

## What this package does not do

This package is a library of types and helpers.

- It has no share chain: no store, no tracking of tips, difficulty or reorgs,
  and no locator queries.
- It has no peer-to-peer networking or gossip.
- It has no command-line program.
- It does not create coinbase transactions for share blocks. Transactions are
  passed in by the caller.
- The only genesis data it knows is for signet.