import socket
import struct

import pytest
from hypothesis import given
from hypothesis import strategies as st

from flexpool.protocol import (
    HEADER_SIZE,
    MSG_BUFSIZ,
    MSG_DATA_MAX,
    SOCKET_PATH_MAX,
    SYS_FLEXALLOC_TYPE,
    SYS_FLEXALLOC_V1,
    Message,
    MessageCommand,
    MessageHeader,
    ProtocolError,
    SysIdentity,
    recv_msg,
    send_bytes,
    send_msg,
    socket_address,
)


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    a.settimeout(2)
    b.settimeout(2)
    yield a, b
    a.close()
    b.close()


@pytest.mark.parametrize(
    "code, command",
    [
        (1, MessageCommand.IDENTIFY),
        (12, MessageCommand.SYNC_NO_RSPS),
        (30, MessageCommand.INIT_INFO),
        (0xFFFF, MessageCommand.NULL),
    ],
)
def test_command_codes_on_the_wire(code, command):
    wire = struct.pack("<IHH", 0, code, 0)
    assert MessageHeader.unpack(wire).cmd == command
    assert MessageHeader(length=0, cmd=command).pack() == wire


def test_full_message_fills_buffer():
    assert MSG_DATA_MAX == 2048
    packed = Message(cmd=MessageCommand.SYNC, data=b"x" * MSG_DATA_MAX).pack()
    assert len(packed) == MSG_BUFSIZ
    assert len(packed) == HEADER_SIZE + MSG_DATA_MAX


def test_header_wire_bytes():
    hdr = MessageHeader(length=5, cmd=MessageCommand.IDENTIFY, tag=2)
    assert hdr.pack() == b"\x05\x00\x00\x00\x01\x00\x02\x00"


@given(
    st.integers(0, 0xFFFFFFFF),
    st.integers(0, 0xFFFF),
    st.integers(0, 0xFFFF),
)
def test_header_round_trip(length, cmd, tag):
    hdr = MessageHeader(length=length, cmd=cmd, tag=tag)
    packed = hdr.pack()
    assert len(packed) == HEADER_SIZE
    assert MessageHeader.unpack(packed) == hdr


def test_header_unpack_short_raises():
    with pytest.raises(ProtocolError):
        MessageHeader.unpack(b"\x00" * (HEADER_SIZE - 1))


def test_header_rejects_out_of_range_cmd():
    with pytest.raises(ValueError):
        MessageHeader(length=0, cmd=0x10000)


def test_message_pack_is_header_then_data():
    msg = Message(cmd=MessageCommand.POOL_OPEN, data=b"mypool", tag=7)
    packed = msg.pack()
    assert packed[HEADER_SIZE:] == b"mypool"
    assert MessageHeader.unpack(packed) == MessageHeader(
        length=len(b"mypool"), cmd=MessageCommand.POOL_OPEN, tag=7
    )


def test_message_data_limit():
    assert len(Message(cmd=MessageCommand.SYNC, data=b"x" * MSG_DATA_MAX).data) == MSG_DATA_MAX
    with pytest.raises(ProtocolError):
        Message(cmd=MessageCommand.SYNC, data=b"x" * (MSG_DATA_MAX + 1))


def test_reply_keeps_command_and_tag():
    request = Message(cmd=MessageCommand.OBJECT_CREATE, data=b"req", tag=42)
    reply = request.reply(b"rsp")
    assert reply.cmd == MessageCommand.OBJECT_CREATE
    assert reply.tag == 42
    assert reply.data == b"rsp"


def test_identity_defaults():
    ident = SysIdentity()
    assert ident.type == 1000
    assert ident.version == 1
    assert (SYS_FLEXALLOC_TYPE, SYS_FLEXALLOC_V1) == (ident.type, ident.version)


@given(st.integers(0, 0xFFFFFFFF), st.integers(0, 0xFFFFFFFF))
def test_identity_round_trip(ident_type, version):
    ident = SysIdentity(type=ident_type, version=version)
    assert SysIdentity.unpack(ident.pack()) == ident


def test_identity_unpack_short_raises():
    with pytest.raises(ProtocolError):
        SysIdentity.unpack(SysIdentity().pack()[:-1])


def test_socket_address_accepts_max_length():
    path = "/" + "a" * (SOCKET_PATH_MAX - 1)
    assert socket_address(path) == path


def test_socket_address_rejects_long_path():
    with pytest.raises(ValueError):
        socket_address("/" + "a" * SOCKET_PATH_MAX)


def test_send_bytes_delivers_everything(pair):
    a, b = pair
    payload = bytes(range(256)) * 8
    send_bytes(a, payload)
    received = bytearray()
    while len(received) < len(payload):
        received += b.recv(len(payload) - len(received))
    assert bytes(received) == payload


def test_send_recv_round_trip(pair):
    a, b = pair
    first = Message(cmd=MessageCommand.POOL_CREATE, data=b"pool-arg", tag=3)
    second = Message(cmd=MessageCommand.SYNC)
    send_msg(a, first)
    send_msg(a, second)
    assert recv_msg(b) == first
    assert recv_msg(b) == second


@given(st.binary(max_size=MSG_DATA_MAX), st.integers(0, 0xFFFE), st.integers(0, 0xFFFF))
def test_send_recv_arbitrary(data, cmd, tag):
    a, b = socket.socketpair()
    try:
        a.settimeout(2)
        b.settimeout(2)
        msg = Message(cmd=cmd, data=data, tag=tag)
        send_msg(a, msg)
        got = recv_msg(b)
        assert (int(got.cmd), got.data, got.tag) == (cmd, data, tag)
    finally:
        a.close()
        b.close()


def test_recv_rejects_oversized_length(pair):
    a, b = pair
    a.sendall(MessageHeader(length=MSG_DATA_MAX + 1, cmd=MessageCommand.SYNC).pack())
    with pytest.raises(ProtocolError):
        recv_msg(b)


def test_recv_rejects_null_command(pair):
    a, b = pair
    a.sendall(MessageHeader(length=0, cmd=MessageCommand.NULL).pack())
    with pytest.raises(ProtocolError):
        recv_msg(b)


def test_recv_on_closed_peer_raises(pair):
    a, b = pair
    a.close()
    with pytest.raises(ProtocolError):
        recv_msg(b)


def test_recv_truncated_payload_raises(pair):
    a, b = pair
    a.sendall(MessageHeader(length=10, cmd=MessageCommand.SYNC).pack() + b"abc")
    a.shutdown(socket.SHUT_WR)
    with pytest.raises(ProtocolError):
        recv_msg(b)


def test_recv_partial_header_raises(pair):
    a, b = pair
    a.sendall(MessageHeader(length=0, cmd=MessageCommand.SYNC).pack()[:3])
    a.shutdown(socket.SHUT_WR)
    with pytest.raises(ProtocolError):
        recv_msg(b)