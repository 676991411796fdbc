"""KCP: a reliable, ordered ARQ protocol carried over an unreliable datagram link."""

from __future__ import annotations

from collections import deque
from enum import IntFlag
from typing import Any, Callable, Optional

from airdap.segment import (
    ASK_SEND,
    ASK_TELL,
    DEADLINK,
    FASTACK_LIMIT,
    INTERVAL,
    MTU_DEF,
    OVERHEAD,
    PROBE_INIT,
    PROBE_LIMIT,
    RTO_DEF,
    RTO_MAX,
    RTO_MIN,
    RTO_NDL,
    THRESH_INIT,
    THRESH_MIN,
    WND_RCV,
    WND_SND,
    Command,
    Segment,
    decode_header,
    encode_header,
    time_diff,
)

_U32 = 0xFFFFFFFF

OutputCallback = Callable[[bytes, "Kcp", Any], Any]
LogCallback = Callable[[str, "Kcp", Any], Any]


class KcpError(Exception):
    """Raised when the control block rejects data or a setting."""

    def __init__(self, message: str, code: int = -1) -> None:
        super().__init__(message)
        self.code = code


class LogMask(IntFlag):
    """Categories of events that can be passed to the log callback."""

    OUTPUT = 1
    INPUT = 2
    SEND = 4
    RECV = 8
    IN_DATA = 16
    IN_ACK = 32
    IN_PROBE = 64
    IN_WINS = 128
    OUT_DATA = 256
    OUT_ACK = 512
    OUT_PROBE = 1024
    OUT_WINS = 2048


class Kcp:
    """One end of a KCP conversation.

    ``output(data, kcp, user)`` is called with every datagram that must be sent
    to the peer; datagrams received from the peer are handed to :meth:`input`.
    """

    def __init__(self, conv, output: Optional[OutputCallback] = None, user: Any = None) -> None:
        self.conv = conv & _U32
        self.user = user
        self.output = output
        self.writelog: Optional[LogCallback] = None
        self.logmask = 0

        self.snd_una = 0
        self.snd_nxt = 0
        self.rcv_nxt = 0
        self.ts_recent = 0
        self.ts_lastack = 0
        self.ts_probe = 0
        self.probe_wait = 0
        self.snd_wnd = WND_SND
        self.rcv_wnd = WND_RCV
        self.rmt_wnd = WND_RCV
        self.cwnd = 0
        self.incr = 0
        self.probe = 0
        self.mtu = MTU_DEF
        self.mss = self.mtu - OVERHEAD
        self.stream = 0

        self.snd_queue: deque[Segment] = deque()
        self.rcv_queue: deque[Segment] = deque()
        self.snd_buf: list[Segment] = []
        self.rcv_buf: list[Segment] = []
        self.acklist: list[tuple[int, int]] = []

        self.state = 0
        self.rx_srtt = 0
        self.rx_rttval = 0
        self.rx_rto = RTO_DEF
        self.rx_minrto = RTO_MIN
        self.current = 0
        self.interval = INTERVAL
        self.ts_flush = INTERVAL
        self.nodelay = 0
        self.updated = 0
        self.ssthresh = THRESH_INIT
        self.fastresend = 0
        self.fastlimit = FASTACK_LIMIT
        self.nocwnd = 0
        self.xmit = 0
        self.dead_link = DEADLINK

    # ------------------------------------------------------------------ logging

    def _can_log(self, mask: int) -> bool:
        return bool(mask & self.logmask) and self.writelog is not None

    def _log(self, mask: int, message: str) -> None:
        if self._can_log(mask):
            self.writelog(message, self, self.user)

    def _output(self, data) -> None:
        self._log(LogMask.OUTPUT, f"[RO] {len(data)} bytes")
        if not data:
            return
        if self.output is None:
            raise KcpError("no output callback installed")
        self.output(bytes(data), self, self.user)

    # ------------------------------------------------------------------ receive side

    def recv(self, peek: bool = False) -> Optional[bytes]:
        """Return the next complete message, or None if none is ready.

        With ``peek`` the message is left in the receive queue.
        """
        if not self.rcv_queue:
            return None
        if self.peeksize() is None:
            return None

        recover = len(self.rcv_queue) >= self.rcv_wnd
        parts = []
        if peek:
            for seg in self.rcv_queue:
                parts.append(seg.data)
                self._log(LogMask.RECV, f"recv sn={seg.sn}")
                if seg.frg == 0:
                    break
        else:
            while self.rcv_queue:
                seg = self.rcv_queue.popleft()
                parts.append(seg.data)
                self._log(LogMask.RECV, f"recv sn={seg.sn}")
                if seg.frg == 0:
                    break

        self._move_to_rcv_queue()

        if len(self.rcv_queue) < self.rcv_wnd and recover:
            self.probe |= ASK_TELL

        return b"".join(parts)

    def peeksize(self) -> Optional[int]:
        """Size of the next complete message, or None if it is not complete yet."""
        if not self.rcv_queue:
            return None
        first = self.rcv_queue[0]
        if first.frg == 0:
            return len(first.data)
        if len(self.rcv_queue) < first.frg + 1:
            return None
        length = 0
        for seg in self.rcv_queue:
            length += len(seg.data)
            if seg.frg == 0:
                break
        return length

    def _move_to_rcv_queue(self) -> None:
        while self.rcv_buf:
            seg = self.rcv_buf[0]
            if seg.sn != self.rcv_nxt or len(self.rcv_queue) >= self.rcv_wnd:
                break
            self.rcv_buf.pop(0)
            self.rcv_queue.append(seg)
            self.rcv_nxt = (self.rcv_nxt + 1) & _U32

    # ------------------------------------------------------------------ send side

    def send(self, data) -> None:
        """Queue a message for sending, splitting it into fragments if needed."""
        if self.mss <= 0:
            raise KcpError("mss must be positive", -1)
        data = bytes(data)

        if self.stream:
            if self.snd_queue:
                old = self.snd_queue[-1]
                if len(old.data) < self.mss:
                    extend = min(len(data), self.mss - len(old.data))
                    old.data = old.data + data[:extend]
                    old.frg = 0
                    data = data[extend:]
            if not data:
                return

        if len(data) <= self.mss:
            count = 1
        else:
            count = (len(data) + self.mss - 1) // self.mss
        if count >= WND_RCV:
            raise KcpError(f"message needs {count} fragments, limit is {WND_RCV - 1}", -2)

        for i in range(count):
            chunk = data[i * self.mss:(i + 1) * self.mss]
            frg = 0 if self.stream else count - i - 1
            self.snd_queue.append(Segment(data=chunk, frg=frg))

    def wait_send(self) -> int:
        """Number of segments not yet acknowledged or not yet sent."""
        return len(self.snd_buf) + len(self.snd_queue)

    # ------------------------------------------------------------------ acknowledgement

    def _update_ack(self, rtt: int) -> None:
        if self.rx_srtt == 0:
            self.rx_srtt = rtt
            self.rx_rttval = rtt // 2
        else:
            delta = abs(rtt - self.rx_srtt)
            self.rx_rttval = (3 * self.rx_rttval + delta) // 4
            self.rx_srtt = (7 * self.rx_srtt + rtt) // 8
            if self.rx_srtt < 1:
                self.rx_srtt = 1
        rto = self.rx_srtt + max(self.interval, 4 * self.rx_rttval)
        self.rx_rto = min(max(self.rx_minrto, rto), RTO_MAX)

    def _shrink_buf(self) -> None:
        self.snd_una = self.snd_buf[0].sn if self.snd_buf else self.snd_nxt

    def _in_flight_range(self, sn: int) -> bool:
        return time_diff(sn, self.snd_una) >= 0 and time_diff(sn, self.snd_nxt) < 0

    def _parse_ack(self, sn: int) -> None:
        if not self._in_flight_range(sn):
            return
        for index, seg in enumerate(self.snd_buf):
            if seg.sn == sn:
                del self.snd_buf[index]
                break
            if time_diff(sn, seg.sn) < 0:
                break

    def _parse_una(self, una: int) -> None:
        while self.snd_buf and time_diff(una, self.snd_buf[0].sn) > 0:
            self.snd_buf.pop(0)

    def _parse_fastack(self, sn: int) -> None:
        if not self._in_flight_range(sn):
            return
        for seg in self.snd_buf:
            if time_diff(sn, seg.sn) < 0:
                break
            if sn != seg.sn:
                seg.fastack += 1

    def _parse_data(self, newseg: Segment) -> None:
        sn = newseg.sn
        if (time_diff(sn, self.rcv_nxt + self.rcv_wnd) >= 0
                or time_diff(sn, self.rcv_nxt) < 0):
            return

        insert_at = 0
        repeat = False
        for index in reversed(range(len(self.rcv_buf))):
            seg = self.rcv_buf[index]
            if seg.sn == sn:
                repeat = True
                break
            if time_diff(sn, seg.sn) > 0:
                insert_at = index + 1
                break

        if not repeat:
            self.rcv_buf.insert(insert_at, newseg)

        self._move_to_rcv_queue()

    # ------------------------------------------------------------------ input

    def input(self, data) -> None:
        """Feed one datagram received from the peer.

        Raises KcpError for a packet that is too short, belongs to another
        conversation (code -1), is truncated (code -2) or carries an unknown
        command (code -3). Segments decoded before the bad one stay applied.
        """
        if data is None:
            raise KcpError("no data", -1)
        data = bytes(data)
        self._log(LogMask.INPUT, f"[RI] {len(data)} bytes")
        if len(data) < OVERHEAD:
            raise KcpError("packet shorter than a segment header", -1)

        prev_una = self.snd_una
        maxack = 0
        flag = False
        offset = 0

        while len(data) - offset >= OVERHEAD:
            header = decode_header(data, offset)
            if header.conv != self.conv:
                raise KcpError(f"conversation {header.conv} does not match {self.conv}", -1)
            offset += OVERHEAD
            if len(data) - offset < header.length:
                raise KcpError("segment payload is truncated", -2)
            if header.cmd not in (Command.PUSH, Command.ACK, Command.WASK, Command.WINS):
                raise KcpError(f"unknown command {header.cmd}", -3)

            self.rmt_wnd = header.wnd
            self._parse_una(header.una)
            self._shrink_buf()

            sn, ts = header.sn, header.ts
            if header.cmd == Command.ACK:
                rtt = time_diff(self.current, ts)
                if rtt >= 0:
                    self._update_ack(rtt)
                self._parse_ack(sn)
                self._shrink_buf()
                if not flag:
                    flag = True
                    maxack = sn
                elif time_diff(sn, maxack) > 0:
                    maxack = sn
                self._log(LogMask.IN_ACK,
                          f"input ack: sn={sn} rtt={rtt} rto={self.rx_rto}")
            elif header.cmd == Command.PUSH:
                self._log(LogMask.IN_DATA, f"input psh: sn={sn} ts={ts}")
                if time_diff(sn, self.rcv_nxt + self.rcv_wnd) < 0:
                    self.acklist.append((sn, ts))
                    if time_diff(sn, self.rcv_nxt) >= 0:
                        seg = Segment(
                            conv=header.conv, cmd=header.cmd, frg=header.frg,
                            wnd=header.wnd, ts=ts, sn=sn, una=header.una,
                            data=data[offset:offset + header.length],
                        )
                        self._parse_data(seg)
            elif header.cmd == Command.WASK:
                self.probe |= ASK_TELL
                self._log(LogMask.IN_PROBE, "input probe")
            else:
                self._log(LogMask.IN_WINS, f"input wins: {header.wnd}")

            offset += header.length

        if flag:
            self._parse_fastack(maxack)

        if time_diff(self.snd_una, prev_una) > 0 and self.cwnd < self.rmt_wnd:
            mss = self.mss
            if self.cwnd < self.ssthresh:
                self.cwnd += 1
                self.incr += mss
            else:
                if self.incr < mss:
                    self.incr = mss
                self.incr += (mss * mss) // self.incr + mss // 16
                if (self.cwnd + 1) * mss <= self.incr:
                    self.cwnd = (self.incr + mss - 1) // (mss if mss > 0 else 1)
            if self.cwnd > self.rmt_wnd:
                self.cwnd = self.rmt_wnd
                self.incr = self.rmt_wnd * mss

    # ------------------------------------------------------------------ flush

    def _wnd_unused(self) -> int:
        queued = len(self.rcv_queue)
        return self.rcv_wnd - queued if queued < self.rcv_wnd else 0

    def flush(self) -> None:
        """Send pending acknowledgements, probes and data segments."""
        if not self.updated:
            return

        current = self.current
        buffer = bytearray()

        def make_room(need: int) -> None:
            if len(buffer) + need > self.mtu:
                self._output(buffer)
                buffer.clear()

        wnd = self._wnd_unused()
        una = self.rcv_nxt
        last_sn = last_ts = 0

        for last_sn, last_ts in self.acklist:
            make_room(OVERHEAD)
            buffer += encode_header(self.conv, Command.ACK, 0, wnd, last_ts, last_sn, una, 0)
        self.acklist.clear()

        if self.rmt_wnd == 0:
            if self.probe_wait == 0:
                self.probe_wait = PROBE_INIT
                self.ts_probe = (current + self.probe_wait) & _U32
            elif time_diff(current, self.ts_probe) >= 0:
                if self.probe_wait < PROBE_INIT:
                    self.probe_wait = PROBE_INIT
                self.probe_wait += self.probe_wait // 2
                if self.probe_wait > PROBE_LIMIT:
                    self.probe_wait = PROBE_LIMIT
                self.ts_probe = (current + self.probe_wait) & _U32
                self.probe |= ASK_SEND
        else:
            self.ts_probe = 0
            self.probe_wait = 0

        if self.probe & ASK_SEND:
            make_room(OVERHEAD)
            buffer += encode_header(self.conv, Command.WASK, 0, wnd, last_ts, last_sn, una, 0)
        if self.probe & ASK_TELL:
            make_room(OVERHEAD)
            buffer += encode_header(self.conv, Command.WINS, 0, wnd, last_ts, last_sn, una, 0)
        self.probe = 0

        cwnd = min(self.snd_wnd, self.rmt_wnd)
        if not self.nocwnd:
            cwnd = min(self.cwnd, cwnd)

        while time_diff(self.snd_nxt, self.snd_una + cwnd) < 0 and self.snd_queue:
            newseg = self.snd_queue.popleft()
            self.snd_buf.append(newseg)
            newseg.conv = self.conv
            newseg.cmd = Command.PUSH
            newseg.wnd = wnd
            newseg.ts = current
            newseg.sn = self.snd_nxt
            self.snd_nxt = (self.snd_nxt + 1) & _U32
            newseg.una = self.rcv_nxt
            newseg.resendts = current
            newseg.rto = self.rx_rto
            newseg.fastack = 0
            newseg.xmit = 0

        resent = self.fastresend if self.fastresend > 0 else _U32
        rtomin = (self.rx_rto >> 3) if self.nodelay == 0 else 0
        change = 0
        lost = False

        for segment in self.snd_buf:
            needsend = False
            if segment.xmit == 0:
                needsend = True
                segment.xmit += 1
                segment.rto = self.rx_rto
                segment.resendts = (current + segment.rto + rtomin) & _U32
            elif time_diff(current, segment.resendts) >= 0:
                needsend = True
                segment.xmit += 1
                self.xmit += 1
                if self.nodelay == 0:
                    segment.rto += max(segment.rto, self.rx_rto)
                else:
                    step = segment.rto if self.nodelay < 2 else self.rx_rto
                    segment.rto += step // 2
                segment.resendts = (current + segment.rto) & _U32
                lost = True
            elif segment.fastack >= resent:
                if segment.xmit <= self.fastlimit or self.fastlimit <= 0:
                    needsend = True
                    segment.xmit += 1
                    segment.fastack = 0
                    segment.resendts = (current + segment.rto) & _U32
                    change += 1

            if needsend:
                segment.ts = current
                segment.wnd = wnd
                segment.una = self.rcv_nxt
                make_room(OVERHEAD + len(segment.data))
                buffer += segment.encode()
                if segment.xmit >= self.dead_link:
                    self.state = _U32

        if buffer:
            self._output(buffer)

        if change:
            inflight = (self.snd_nxt - self.snd_una) & _U32
            self.ssthresh = max(inflight // 2, THRESH_MIN)
            self.cwnd = self.ssthresh + resent
            self.incr = self.cwnd * self.mss

        if lost:
            self.ssthresh = max(cwnd // 2, THRESH_MIN)
            self.cwnd = 1
            self.incr = self.mss

        if self.cwnd < 1:
            self.cwnd = 1
            self.incr = self.mss

    # ------------------------------------------------------------------ timing

    def update(self, current) -> None:
        """Advance the clock to ``current`` milliseconds and flush when due."""
        current &= _U32
        self.current = current
        if not self.updated:
            self.updated = 1
            self.ts_flush = current

        slap = time_diff(current, self.ts_flush)
        if slap >= 10000 or slap < -10000:
            self.ts_flush = current
            slap = 0

        if slap >= 0:
            self.ts_flush = (self.ts_flush + self.interval) & _U32
            if time_diff(current, self.ts_flush) >= 0:
                self.ts_flush = (current + self.interval) & _U32
            self.flush()

    def check(self, current) -> int:
        """Time at which :meth:`update` should next be called."""
        current &= _U32
        if not self.updated:
            return current

        ts_flush = self.ts_flush
        diff = time_diff(current, ts_flush)
        if diff >= 10000 or diff < -10000:
            ts_flush = current
        if time_diff(current, ts_flush) >= 0:
            return current

        tm_flush = time_diff(ts_flush, current)
        tm_packet = 0x7FFFFFFF
        for seg in self.snd_buf:
            diff = time_diff(seg.resendts, current)
            if diff <= 0:
                return current
            tm_packet = min(tm_packet, diff)

        minimal = min(tm_packet, tm_flush)
        if minimal >= self.interval:
            minimal = self.interval
        return (current + minimal) & _U32

    # ------------------------------------------------------------------ settings

    def set_mtu(self, mtu) -> None:
        """Change the maximum datagram size; the smallest accepted is 50."""
        if mtu < 50 or mtu < OVERHEAD:
            raise KcpError(f"mtu {mtu} is too small", -1)
        self.mtu = mtu
        self.mss = mtu - OVERHEAD

    def set_interval(self, interval) -> None:
        """Set the internal flush interval, clamped to 10..5000 ms."""
        self.interval = min(max(interval, 10), 5000)

    def set_nodelay(self, nodelay, interval, resend, nc) -> None:
        """Tune latency settings; a negative argument leaves that setting alone."""
        if nodelay >= 0:
            self.nodelay = nodelay
            self.rx_minrto = RTO_NDL if nodelay else RTO_MIN
        if interval >= 0:
            self.set_interval(interval)
        if resend >= 0:
            self.fastresend = resend
        if nc >= 0:
            self.nocwnd = nc

    def set_window_size(self, sndwnd, rcvwnd) -> None:
        """Set send and receive windows; the receive window never drops below the default."""
        if sndwnd > 0:
            self.snd_wnd = sndwnd
        if rcvwnd > 0:
            self.rcv_wnd = max(rcvwnd, WND_RCV)