import errno
from http.client import RemoteDisconnected

import pytest
import requests
from urllib3 import exceptions as urllib3_exceptions

from transient_errors import (
    TRANSIENT_WEB_STATUSES,
    Failure,
    FailureKind,
    SocketErrorCode,
    WebStatus,
    failure_from_exception,
    get_error_code,
    is_transient,
    protocol_failure,
)


def _web(status, status_code=None, inner=None):
    return Failure(kind=FailureKind.WEB, web_status=status, status_code=status_code, inner=inner)


@pytest.mark.parametrize("status", sorted(TRANSIENT_WEB_STATUSES, key=lambda s: s.value))
def test_connection_level_statuses_are_transient(status):
    assert is_transient(_web(status))


@pytest.mark.parametrize("status_code", [500, 502, 503, 408])
def test_protocol_errors_with_server_status_are_transient(status_code):
    assert is_transient(_web(WebStatus.PROTOCOL_ERROR, status_code))


@pytest.mark.parametrize("status_code", [400, 401, 403, 404, 409, 429, 504])
def test_other_protocol_errors_are_permanent(status_code):
    assert not is_transient(_web(WebStatus.PROTOCOL_ERROR, status_code))


@pytest.mark.parametrize("status", [WebStatus.NAME_RESOLUTION_FAILURE, WebStatus.TRUST_FAILURE,
                                    WebStatus.UNKNOWN_ERROR])
def test_non_connection_web_statuses_are_permanent(status):
    assert not is_transient(_web(status, 503))


@pytest.mark.parametrize("code,expected", [
    (SocketErrorCode.CONNECTION_REFUSED, True),
    (SocketErrorCode.TIMED_OUT, True),
    (SocketErrorCode.CONNECTION_RESET, False),
    (SocketErrorCode.OTHER, False),
])
def test_socket_codes(code, expected):
    assert is_transient(Failure(kind=FailureKind.SOCKET, socket_code=code)) is expected


@pytest.mark.parametrize("text,expected", [
    ("<error><code>ServerBusy</code></error>", True),
    ("<Error><Code>OperationTimedOut</Code></Error>", True),
    ("<code>TableBeingDeleted</code>", True),
    ("<code>ResourceNotFound</code>", False),
    ("ServerBusy", False),
])
def test_data_service_request_error_codes(text, expected):
    failure = Failure(kind=FailureKind.DATA_SERVICE_REQUEST,
                      inner=Failure(kind=FailureKind.OTHER, message=text))
    assert is_transient(failure) is expected


def test_data_service_request_batch_status():
    assert is_transient(Failure(kind=FailureKind.DATA_SERVICE_REQUEST, batch_status_codes=(201, 503)))
    assert not is_transient(Failure(kind=FailureKind.DATA_SERVICE_REQUEST, batch_status_codes=(201, 404)))


def test_get_error_code_without_inner_failure():
    assert get_error_code(Failure(kind=FailureKind.DATA_SERVICE_REQUEST, message="<code>ServerBusy</code>")) is None


@pytest.mark.parametrize("status_code,expected", [(500, True), (408, True), (404, False), (None, False)])
def test_data_service_client_status(status_code, expected):
    assert is_transient(Failure(kind=FailureKind.DATA_SERVICE_CLIENT, status_code=status_code)) is expected


def test_bare_io_failure_is_transient_only_without_inner():
    assert is_transient(Failure(kind=FailureKind.IO))
    assert not is_transient(Failure(kind=FailureKind.IO, inner=Failure(kind=FailureKind.OTHER)))


def test_io_subtype_is_permanent():
    assert not is_transient(Failure(kind=FailureKind.IO_SUBTYPE, message="could not load file"))


def test_inner_failure_checked_one_level_only():
    refused = Failure(kind=FailureKind.SOCKET, socket_code=SocketErrorCode.CONNECTION_REFUSED)
    assert is_transient(Failure(kind=FailureKind.OTHER, inner=refused))
    assert not is_transient(Failure(kind=FailureKind.OTHER,
                                    inner=Failure(kind=FailureKind.OTHER, inner=refused)))


def test_wrapped_io_failure_is_transient_through_outer():
    assert is_transient(Failure(kind=FailureKind.OTHER, inner=Failure(kind=FailureKind.IO)))


def test_absent_failure_is_permanent():
    assert not is_transient(None)


def test_classification_is_repeatable():
    failure = _web(WebStatus.PROTOCOL_ERROR, 503)
    assert is_transient(failure) == is_transient(failure)
    assert is_transient(failure) is True


def test_protocol_failure_ignores_storage_error_code_in_body():
    busy = protocol_failure(409, "Conflict", "<Error><Code>ServerBusy</Code></Error>")
    bad_request = protocol_failure(400, "Bad Request", "<Error><Code>InternalError</Code></Error>")
    unavailable = protocol_failure(503, "Service Unavailable", "<Error><Code>ResourceNotFound</Code></Error>")

    assert busy.body == "<Error><Code>ServerBusy</Code></Error>"
    assert busy.inner is None
    assert not is_transient(busy)
    assert not is_transient(bad_request)
    assert is_transient(unavailable)


def test_failure_from_timeout():
    failure = failure_from_exception(requests.exceptions.ConnectTimeout("connect timed out"))
    assert failure.kind == FailureKind.WEB
    assert failure.web_status == WebStatus.TIMEOUT
    assert is_transient(failure)


def test_failure_from_dropped_connection():
    exc = requests.exceptions.ConnectionError(
        urllib3_exceptions.ProtocolError("Connection aborted.", RemoteDisconnected("closed")))
    failure = failure_from_exception(exc)
    assert failure.web_status == WebStatus.CONNECTION_CLOSED
    assert failure.inner.web_status == WebStatus.CONNECTION_CLOSED
    assert is_transient(failure)


def test_failure_from_refused_connection():
    reason = urllib3_exceptions.NewConnectionError(None, "Failed to establish a new connection")
    exc = requests.exceptions.ConnectionError(
        urllib3_exceptions.MaxRetryError(None, "/catalogs", reason=reason))
    failure = failure_from_exception(exc)
    assert failure.web_status == WebStatus.CONNECT_FAILURE
    assert failure.inner.web_status == WebStatus.CONNECT_FAILURE
    assert is_transient(failure)


def test_failure_from_tls_error_is_permanent():
    failure = failure_from_exception(requests.exceptions.SSLError("certificate verify failed"))
    assert failure.web_status == WebStatus.TRUST_FAILURE
    assert not is_transient(failure)


def test_failure_from_http_error_keeps_status_and_body(make_response):
    response = make_response(503, body=b"busy", reason="Service Unavailable")
    failure = failure_from_exception(requests.exceptions.HTTPError("503", response=response))
    assert failure.web_status == WebStatus.PROTOCOL_ERROR
    assert failure.status_code == 503
    assert failure.status_text == "Service Unavailable"
    assert failure.body == "busy"
    assert is_transient(failure)


@pytest.mark.parametrize("exc,code", [
    (ConnectionRefusedError(errno.ECONNREFUSED, "refused"), SocketErrorCode.CONNECTION_REFUSED),
    (TimeoutError("timed out"), SocketErrorCode.TIMED_OUT),
    (OSError(errno.ETIMEDOUT, "timed out"), SocketErrorCode.TIMED_OUT),
    (ConnectionResetError(errno.ECONNRESET, "reset"), SocketErrorCode.CONNECTION_RESET),
])
def test_failure_from_socket_errors(exc, code):
    failure = failure_from_exception(exc)
    assert failure.kind == FailureKind.SOCKET
    assert failure.socket_code == code


def test_failure_from_generic_os_error_is_transient_io():
    failure = failure_from_exception(OSError("Unable to read data from the transport connection"))
    assert failure.kind == FailureKind.IO
    assert is_transient(failure)


def test_failure_from_os_error_subtype_is_permanent():
    failure = failure_from_exception(FileNotFoundError(errno.ENOENT, "missing.dll"))
    assert failure.kind == FailureKind.IO_SUBTYPE
    assert not is_transient(failure)


def test_failure_from_explicitly_chained_os_error_is_permanent():
    try:
        try:
            raise ValueError("malformed frame")
        except ValueError as cause:
            raise OSError("read failed") from cause
    except OSError as e:
        failure = failure_from_exception(e)

    assert failure.kind == FailureKind.IO
    assert failure.inner.kind == FailureKind.OTHER
    assert not is_transient(failure)


def test_failure_from_os_error_raised_while_handling_another_is_transient():
    try:
        try:
            raise ValueError("unrelated")
        except ValueError:
            raise OSError("Unable to read data from the transport connection")
    except OSError as e:
        failure = failure_from_exception(e)

    assert failure.kind == FailureKind.IO
    assert failure.inner is None
    assert is_transient(failure)


def test_failure_from_unrelated_exception():
    failure = failure_from_exception(ValueError("bad payload"))
    assert failure.kind == FailureKind.OTHER
    assert not is_transient(failure)
    assert failure_from_exception(None) is None
