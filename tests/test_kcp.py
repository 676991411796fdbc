import pytest

from airdap.kcp import Kcp, KcpError, LogMask
from airdap.segment import (
    OVERHEAD,
    RTO_NDL,
    WND_RCV,
    Command,
    decode_header,
    encode_header,
    get_conv,
)


def make_pair(fast=True):
    a_out, b_out = [], []
    a = Kcp(1, lambda data, kcp, user: a_out.append(data))
    b = Kcp(1, lambda data, kcp, user: b_out.append(data))
    if fast:
        a.set_nodelay(1, 10, 2, 1)
        b.set_nodelay(1, 10, 2, 1)
    return a, b, a_out, b_out


def pump(a, b, a_out, b_out, steps, start=0, drop_a=0):
    t = start
    for _ in range(steps):
        a.update(t)
        b.update(t)
        for packet in list(a_out):
            if drop_a > 0:
                drop_a -= 1
                continue
            b.input(packet)
        a_out.clear()
        for packet in list(b_out):
            a.input(packet)
        b_out.clear()
        t += 10
    return t


def drain(kcp):
    messages = []
    while (msg := kcp.recv()) is not None:
        messages.append(msg)
    return messages


def test_short_message_round_trip():
    a, b, a_out, b_out = make_pair()
    a.send(b"hello")
    pump(a, b, a_out, b_out, 5)
    assert b.recv() == b"hello"
    assert b.recv() is None


def test_fragmented_messages_keep_order():
    a, b, a_out, b_out = make_pair()
    big = bytes(range(256)) * 12
    a.send(big)
    a.send(b"tail")
    pump(a, b, a_out, b_out, 10)
    assert drain(b) == [big, b"tail"]


def test_empty_queue_recv_and_peeksize():
    a, _, _, _ = make_pair()
    assert a.recv() is None
    assert a.peeksize() is None


def test_peek_leaves_message_queued():
    a, b, a_out, b_out = make_pair()
    a.send(b"peekaboo")
    pump(a, b, a_out, b_out, 5)
    assert b.peeksize() == len(b"peekaboo")
    assert b.recv(peek=True) == b"peekaboo"
    assert b.recv() == b"peekaboo"
    assert b.recv() is None


def test_too_many_fragments_rejected():
    a, _, _, _ = make_pair()
    with pytest.raises(KcpError) as info:
        a.send(b"x" * (a.mss * WND_RCV))
    assert info.value.code == -2


def test_first_packet_wire_layout():
    a, _, a_out, _ = make_pair()
    a.send(b"data")
    a.update(0)
    assert len(a_out) == 1
    packet = a_out[0]
    header = decode_header(packet)
    assert get_conv(packet) == 1
    assert header.cmd == Command.PUSH
    assert header.sn == 0
    assert header.frg == 0
    assert header.length == 4
    assert packet[OVERHEAD:] == b"data"


def test_acknowledgement_empties_send_buffer():
    a, b, a_out, b_out = make_pair()
    for chunk in (b"a", b"b", b"c"):
        a.send(chunk)
    assert a.wait_send() == 3
    pump(a, b, a_out, b_out, 5)
    assert a.wait_send() == 0
    assert a.snd_una == a.snd_nxt


def test_input_rejects_short_packet():
    a, _, _, _ = make_pair()
    with pytest.raises(KcpError) as info:
        a.input(b"\x01\x00")
    assert info.value.code == -1


def test_input_rejects_other_conversation():
    a, _, _, _ = make_pair()
    packet = encode_header(7, Command.PUSH, 0, 32, 0, 0, 0, 0)
    with pytest.raises(KcpError) as info:
        a.input(packet)
    assert info.value.code == -1


def test_input_rejects_truncated_payload():
    a, _, _, _ = make_pair()
    packet = encode_header(1, Command.PUSH, 0, 32, 0, 0, 0, 10)
    with pytest.raises(KcpError) as info:
        a.input(packet)
    assert info.value.code == -2


def test_input_rejects_unknown_command():
    a, _, _, _ = make_pair()
    packet = encode_header(1, 99, 0, 32, 0, 0, 0, 0)
    with pytest.raises(KcpError) as info:
        a.input(packet)
    assert info.value.code == -3


def test_window_probe_answered_with_window_size():
    a, _, a_out, _ = make_pair()
    a.update(0)
    a_out.clear()
    a.input(encode_header(1, Command.WASK, 0, 128, 0, 0, 0, 0))
    a.flush()
    commands = [decode_header(p).cmd for p in a_out]
    assert Command.WINS in commands


def test_lost_packet_is_retransmitted():
    a, b, a_out, b_out = make_pair()
    a.send(b"retry me")
    pump(a, b, a_out, b_out, 40, drop_a=1)
    assert b.recv() == b"retry me"
    assert a.xmit >= 1


def test_duplicate_packet_delivered_once():
    a, b, a_out, _ = make_pair()
    a.send(b"once")
    a.update(0)
    b.update(0)
    packet = a_out[0]
    b.input(packet)
    b.input(packet)
    assert drain(b) == [b"once"]


def test_sequence_numbers_wrap():
    a, b, a_out, b_out = make_pair()
    start = 0xFFFFFFFE
    a.snd_una = a.snd_nxt = start
    b.rcv_nxt = start
    messages = [bytes([i]) * (i + 1) for i in range(6)]
    for msg in messages:
        a.send(msg)
    pump(a, b, a_out, b_out, 10)
    assert drain(b) == messages
    assert a.wait_send() == 0


def test_stream_mode_merges_small_sends():
    a, b, a_out, b_out = make_pair()
    a.stream = 1
    a.send(b"ab")
    a.send(b"cd")
    assert a.wait_send() == 1
    pump(a, b, a_out, b_out, 5)
    assert b.recv() == b"abcd"


def test_dead_link_sets_state():
    a, _, a_out, _ = make_pair()
    a.dead_link = 2
    a.send(b"nobody home")
    t = 0
    for _ in range(40):
        a.update(t)
        t += 10
    assert a.state == 0xFFFFFFFF
    assert len(a_out) >= 2


def test_set_mtu():
    a, _, _, _ = make_pair()
    with pytest.raises(KcpError):
        a.set_mtu(49)
    a.set_mtu(768)
    assert a.mtu == 768
    assert a.mss == 768 - OVERHEAD


def test_set_mtu_limits_datagram_size():
    a, b, a_out, b_out = make_pair()
    a.set_mtu(100)
    payload = bytes(range(200))
    a.send(payload)
    sizes = []
    t = 0
    for _ in range(10):
        a.update(t)
        b.update(t)
        sizes.extend(len(p) for p in a_out)
        for p in a_out:
            b.input(p)
        a_out.clear()
        for p in b_out:
            a.input(p)
        b_out.clear()
        t += 10
    assert max(sizes) <= 100
    assert b.recv() == payload


def test_set_interval_clamps():
    a, _, _, _ = make_pair()
    a.set_interval(1)
    assert a.interval == 10
    a.set_interval(99999)
    assert a.interval == 5000


def test_set_nodelay_negative_keeps_values():
    a = Kcp(1)
    a.set_nodelay(1, 20, 2, 1)
    a.set_nodelay(-1, -1, -1, -1)
    assert (a.nodelay, a.interval, a.fastresend, a.nocwnd) == (1, 20, 2, 1)
    assert a.rx_minrto == RTO_NDL


def test_set_window_size_floor():
    a = Kcp(1)
    a.set_window_size(4096, 16)
    assert a.snd_wnd == 4096
    assert a.rcv_wnd == WND_RCV
    a.set_window_size(0, 4096)
    assert a.snd_wnd == 4096
    assert a.rcv_wnd == 4096


def test_check_schedule():
    a = Kcp(1, lambda data, kcp, user: None)
    assert a.check(5) == 5
    a.update(1000)
    next_time = a.check(1000)
    assert 1000 <= next_time <= 1000 + a.interval


def test_output_is_logged():
    a, _, _, _ = make_pair()
    messages = []
    a.writelog = lambda msg, kcp, user: messages.append(msg)
    a.logmask = LogMask.OUTPUT
    a.send(b"log me")
    a.update(0)
    assert messages
    assert all(m.startswith("[RO]") for m in messages)


def test_flush_without_output_raises():
    a = Kcp(1)
    a.set_nodelay(1, 10, 2, 1)
    a.send(b"x")
    with pytest.raises(KcpError):
        a.update(0)