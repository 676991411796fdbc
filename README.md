# airdap

Building blocks for a network-attached CMSIS-DAP debug probe, written in
pure Python with no third-party dependencies.

## What is inside

* `airdap.kcp` – `Kcp`, a complete implementation of the KCP
  automatic-repeat-request protocol: fragmentation, selective and cumulative
  acknowledgement, fast retransmit, congestion control and window probing.
  Protocol errors (a malformed datagram, a message too large for the receive
  window, an MTU that is too small) are raised as `KcpError`, whose `code`
  attribute carries the protocol's error number. `LogMask` selects which
  events are passed to a `writelog(message, kcp, user)` callback.
* `airdap.segment` – the 24-byte wire header: `encode_header`,
  `decode_header` (returning a `SegmentHeader`), `get_conv`, the `Command`
  codes, the `Segment` record and `time_diff` for wrapping 32-bit
  timestamps and sequence numbers.
* `airdap.clock` – `clock64()` and `clock()`, millisecond timestamps
  (the latter truncated to 32 bits, as `Kcp.update` expects).
* `airdap.dap` – CMSIS-DAP command identifiers (`CommandId`), transfer
  request and response flags (`TransferRequest`, `TransferResponse`), SWO
  status bits (`SwoStatus`), buffer reset signals (`ResetSignal`), packet
  sizing (`DapConfig`) and the parity helpers `parity_even_u32` and
  `parity_even_u8`.
* `airdap.dap_handle` – `DapHandler`, which queues incoming DAP requests,
  runs them through a command processor you supply and hands the responses
  back in order. A `QueueCommands` request is executed as
  `ExecuteCommands`.

## Examples

Parity of a 32-bit word, as used for SWD data phases:

```python
from airdap.dap import parity_even_u32

assert parity_even_u32(7) == 1
assert parity_even_u32(3) == 0
```

Two KCP endpoints wired together through lists:

```python
from airdap.kcp import Kcp

wire = []
sender = Kcp(1, lambda data, kcp, user: wire.append(data))
receiver = Kcp(1, lambda data, kcp, user: None)

sender.send(b"hello")
sender.update(0)
sender.update(100)
for datagram in wire:
    receiver.input(datagram)

assert receiver.recv() == b"hello"
```

A `Kcp` object is driven by its caller: feed it datagrams with `input`,
queue messages with `send`, call `update` with the current `clock()` value
every few milliseconds and read whole messages with `recv`. `check` says
when the next `update` is due. `set_mtu`, `set_interval`, `set_nodelay` and
`set_window_size` tune the link.

Handling DAP requests:

```python
from airdap.dap_handle import DapHandler

handler = DapHandler(lambda request: bytes([request[0], 0]))
handler.submit(b"\x00\x01")
assert handler.process_pending() == 1
assert handler.take_response() == b"\x00\x00"
```

`DapHandler.run(stop_event)` processes requests on a worker thread until the
`threading.Event` is set; `signal` asks it to rebuild or drop its buffers,
and `queue_swo_transfer` / `take_swo_data` pass SWO trace data along.

## What this package does not do

It does not talk to a debug target: the command processor given to
`DapHandler` must be supplied by you. It contains no network server and no
command-line program; carrying KCP datagrams over a socket and driving a
serial line are left to the application.

## Tests

The test suite uses pytest and lives in `tests/`.