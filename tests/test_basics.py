"""Basic unit tests for the zapdesk package."""

from zapdesk import (
    AsyncZapdesk,
    AssignError,
    AuthStateError,
    ConnectionError,
    DatastoreError,
    DecodeError,
    PublishError,
    SessionNotReadyError,
    ZapdeskError,
    Command,
    Queue,
    SessionState,
    __version__,
)
from zapdesk.models.events import MESSAGE_TYPE_ALIASES, MessageType


def test_version():
    assert __version__ == "0.1.0"


def test_public_exports():
    assert AsyncZapdesk is not None


def test_error_hierarchy():
    for cls in (DecodeError, PublishError, AssignError, AuthStateError,
                SessionNotReadyError, ConnectionError, DatastoreError):
        assert issubclass(cls, ZapdeskError)


def test_error_attributes():
    err = ZapdeskError(code="test_code", message="something broke")
    assert err.code == "test_code"
    assert str(err) == "something broke"
    assert err.details is None

    decode_err = DecodeError("empty", code=DecodeError.EMPTY_TEXT)
    assert decode_err.code == "empty_text"

    publish_err = PublishError("down", queue=Queue.OUTGOING, message_id="x1")
    assert publish_err.code == "publish_error"
    assert publish_err.details == {"queue": "whatsapp.outgoing", "message_id": "x1"}

    assign_err = AssignError("full", AssignError.OPERATOR_AT_CAPACITY, {"operator_id": "op1"})
    assert assign_err.code == "operator_at_capacity"

    not_ready = SessionNotReadyError(state=SessionState.QR_READY)
    assert not_ready.code == "session_not_ready"
    assert not_ready.state == "qr_ready"


def test_wire_constants():
    assert Queue.INCOMING == "whatsapp.incoming"
    assert Queue.OUTGOING == "whatsapp.outgoing"
    assert Command.GENERATE_QR == "generate_qr"
    assert Command.FORCE_NEW_AUTH == "force_new_auth"
    assert MESSAGE_TYPE_ALIASES["ptt"] == MessageType.AUDIO
