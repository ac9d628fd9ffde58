import pytest

from disq.domain.errors import (
    DisqError,
    PoolClosedError,
    ProtocolError,
    ReplyError,
    TransportError,
    UnexpectedReplyError,
)


def test_disq_error_is_exception():
    err = DisqError("test message")
    assert isinstance(err, Exception)
    assert str(err) == "test message"


def test_reply_error_message_is_verbatim():
    text = "NOREPL Not enough reachable nodes for the requested replication level"
    err = ReplyError(text)
    assert isinstance(err, DisqError)
    assert str(err) == text
    assert err.message == text


def test_reply_error_code_is_leading_word():
    assert ReplyError("ERR syntax error").code == "ERR"
    assert ReplyError("NOREPL Not enough reachable nodes").code == "NOREPL"
    assert ReplyError("BUSY").code == "BUSY"
    assert ReplyError("").code == ""


def test_transport_error_stores_cause_and_message():
    cause = ConnectionResetError("peer reset")
    err = TransportError("read failed", cause)
    assert err.cause is cause
    assert "read failed" in str(err)
    assert "peer reset" in str(err)


def test_transport_error_without_cause():
    err = TransportError("closed")
    assert err.cause is None
    assert str(err) == "closed"


def test_protocol_error_is_transport_error():
    err = ProtocolError("bad frame")
    assert isinstance(err, TransportError)
    assert str(err) == "bad frame"


def test_unexpected_reply_error_stores_command_and_reply():
    err = UnexpectedReplyError("QLEN", b"abc")
    assert err.command == "QLEN"
    assert err.reply == b"abc"
    assert "QLEN" in str(err)


def test_error_hierarchy():
    assert issubclass(TransportError, DisqError)
    assert issubclass(ProtocolError, TransportError)
    assert issubclass(ReplyError, DisqError)
    assert issubclass(UnexpectedReplyError, DisqError)
    assert issubclass(PoolClosedError, DisqError)
    assert not issubclass(ReplyError, TransportError)


def test_can_catch_subclass_as_base():
    with pytest.raises(DisqError):
        raise ReplyError("ERR x")
