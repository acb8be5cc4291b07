# flexpool

Building blocks for an object-pool allocator:

- `flexpool.freelist`: a fixed-length freelist backed by 32-bit bitmap
  words. A set bit marks a free slot. The list can be serialised to bytes
  and loaded back from them.
- `flexpool.hashtable`: an open-addressing hash table that uses Robin Hood
  placement. It maps string (or bytes) keys to integer values. DJB2 picks
  a key's home slot and SDBM tells keys apart.
- `flexpool.protocol`: the wire format for messages sent over a UNIX
  stream socket, with blocking helpers to send and receive them.
- `flexpool.daemon`: a selector-based UNIX-socket server that passes each
  message it receives to a handler you supply.
- `flexpool.client`: a client that connects to the daemon, asks it to
  identify itself and exchanges messages with it.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Freelist

```python
from flexpool.freelist import Freelist, FreelistFullError, freelist_size

flist = Freelist(37)
first = flist.alloc(1)        # 0
second = flist.alloc(1)       # 1
flist.free(first)
print(flist.num_reserved())   # 1
print(flist.words())          # bitmap words, set bits are free slots

restored = Freelist.from_bytes(flist.to_bytes())
assert restored == flist
assert len(flist.to_bytes()) == freelist_size(37)
```

- `alloc(num)` reserves `num` slots, lowest free slot first, and returns
  the index of the first one. It raises `FreelistFullError` once the slots
  run out.
- `free(ndx)` and `free_range(ndx, num)` release slots. Releasing a slot
  that is already free does nothing. An index outside the list raises
  `IndexError`.
- `reset()` marks every slot as free again.
- `search(func, first_only=True)` calls `func` on the index of each
  reserved slot in ascending order. It returns how many calls returned a
  true value. With `first_only` set, it stops at the first such call.

## Hash table

```python
from flexpool.hashtable import HashTable, TableFullError, hash_djb2, hash_sdbm

table = HashTable(17)
table.insert("one", 1)
table.insert("one", 10)       # inserting an existing key updates its value
entry = table.lookup("one")
print(entry.val, entry.psl)   # 10 0
print(len(table), table.size) # 1 17
table.remove("one")
assert "one" not in table
```

- `insert` raises `TableFullError` when every slot is taken.
- `lookup` returns `None` when the key is absent.
- Removing a key that is absent does nothing.
- `entries()` returns every slot in table order, with `None` for an empty
  slot.
- The table counts its insert calls, failed inserts and placement tries in
  `insert_calls`, `insert_failed` and `insert_tries`.

Keys themselves are not stored. Each slot keeps only the SDBM hash of its
key.

## Protocol

A message is an 8-byte little-endian header followed by a data segment of
at most `MSG_DATA_MAX` (2048) bytes. The header holds:

- the length of the data segment (uint32),
- a command code (uint16),
- a tag (uint16) that lets a client match replies to requests.

```python
from flexpool.protocol import Message, MessageCommand, MessageHeader

msg = Message(cmd=MessageCommand.SYNC, data=b"\x00\x00\x00\x00", tag=7)
wire = msg.pack()
header = MessageHeader.unpack(wire)   # MessageHeader(length=4, cmd=SYNC, tag=7)
reply = msg.reply(b"ok")              # same command and tag
```

Other parts of the module:

- `send_msg(sock, msg)` and `recv_msg(sock)` move whole messages over a
  connected socket.
- `recv_msg` raises `ProtocolError` in three cases: the peer closes the
  connection part-way through, the header announces more than
  `MSG_DATA_MAX` bytes, or the command is `MessageCommand.NULL`.
- `SysIdentity` is the identity a daemon reports about itself. Its
  defaults are type 1000 and version 1.
- `socket_address(path)` rejects socket paths longer than 107 bytes.

## Daemon and client

```python
import threading
from flexpool.daemon import Daemon, identify_response
from flexpool.client import DaemonClient
from flexpool.protocol import MessageCommand, SysIdentity

def on_msg(daemon, conn, request):
    if request.cmd == MessageCommand.IDENTIFY:
        identify_response(daemon, conn, request)

stop = threading.Event()
with Daemon("/tmp/flexpool.sock", on_msg, 8, 4, SysIdentity()) as daemon:
    worker = threading.Thread(target=daemon.serve, args=(lambda: not stop.is_set(),))
    worker.start()
    with DaemonClient("/tmp/flexpool.sock") as client:
        print(client.server_identity)
    stop.set()
    worker.join()
```

The daemon:

- refuses to start (`DaemonError`) if a file already exists at the socket
  path.
- counts the listening socket in `max_clients`, so at most
  `max_clients - 1` clients are connected at once. Any further connection
  is closed straight away.
- disconnects a client when a message from it is malformed, or when the
  handler raises an exception.
- keeps serving once `keep_running()` turns false, until every connected
  client has gone away.
- is closed by `close()` (or leaving the `with` block), which closes the
  listening socket and removes the socket file.

The client:

- asks the daemon to identify itself as soon as it connects.
- `send_recv(msg)` sends a message and returns the reply.
- `close()` sends a `SYNC_NO_RSPS` message and then closes the connection.
- raises `ClientError` when any of these fail.

## What this package does not do

- **No storage back end.** There are no devices, pools or objects behind
  the daemon.
- **Most commands have no handler.** `MessageCommand` lists the pool and
  object commands (`POOL_OPEN`, `OBJECT_CREATE` and the rest). The only
  ready-made handler is `identify_response`, and the only request the
  client makes for you is `identify`. Any other command needs your own
  `on_msg` handler and your own `send_recv` calls.
- **No command-line program.** A daemon runs only from your own Python
  code.