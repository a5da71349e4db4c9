"""
Transient fault detection for Azure Data Catalog HTTP calls
"""

import re
import socket
import errno
from enum import Enum
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional, Tuple

import requests
from urllib3 import exceptions as urllib3_exceptions


class FailureKind(Enum):
    """Variant tag of a captured failure"""
    WEB = "web"
    SOCKET = "socket"
    DATA_SERVICE_REQUEST = "data_service_request"
    DATA_SERVICE_CLIENT = "data_service_client"
    IO = "io"                  # exactly the generic I/O failure
    IO_SUBTYPE = "io_subtype"  # a more specific OSError (file not found, permission, ...)
    OTHER = "other"


class WebStatus(Enum):
    """Connection-level status of a web failure"""
    CONNECTION_CLOSED = "connection_closed"
    TIMEOUT = "timeout"
    REQUEST_CANCELED = "request_canceled"
    KEEP_ALIVE_FAILURE = "keep_alive_failure"
    PIPELINE_FAILURE = "pipeline_failure"
    RECEIVE_FAILURE = "receive_failure"
    CONNECT_FAILURE = "connect_failure"
    SEND_FAILURE = "send_failure"
    PROTOCOL_ERROR = "protocol_error"
    NAME_RESOLUTION_FAILURE = "name_resolution_failure"
    TRUST_FAILURE = "trust_failure"
    UNKNOWN_ERROR = "unknown_error"


class SocketErrorCode(Enum):
    CONNECTION_REFUSED = "connection_refused"
    TIMED_OUT = "timed_out"
    CONNECTION_RESET = "connection_reset"
    OTHER = "other"


TRANSIENT_WEB_STATUSES: FrozenSet[WebStatus] = frozenset({
    WebStatus.CONNECTION_CLOSED,
    WebStatus.TIMEOUT,
    WebStatus.REQUEST_CANCELED,
    WebStatus.KEEP_ALIVE_FAILURE,
    WebStatus.PIPELINE_FAILURE,
    WebStatus.RECEIVE_FAILURE,
    WebStatus.CONNECT_FAILURE,
    WebStatus.SEND_FAILURE,
})

TRANSIENT_HTTP_STATUS_CODES: FrozenSet[int] = frozenset({500, 502, 503, 408})

TRANSIENT_SOCKET_CODES: FrozenSet[SocketErrorCode] = frozenset({
    SocketErrorCode.CONNECTION_REFUSED,
    SocketErrorCode.TIMED_OUT,
})

TRANSIENT_STORAGE_ERROR_CODES: FrozenSet[str] = frozenset({
    "InternalError",
    "ServerBusy",
    "OperationTimedOut",
    "TableServerOutOfMemory",
    "TableBeingDeleted",
})

_ERROR_CODE_REGEX = re.compile(r"<code>(\w+)</code>", re.IGNORECASE)


@dataclass(frozen=True)
class Failure:
    """
    A failure captured at the point a catalog call failed.

    Only the fields that make sense for the given kind are populated:
    web failures carry web_status (and status_code/status_text/body for
    protocol errors), socket failures carry socket_code, data service
    failures carry message and batch_status_codes or status_code.
    """
    kind: FailureKind
    message: str = ""
    web_status: Optional[WebStatus] = None
    socket_code: Optional[SocketErrorCode] = None
    status_code: Optional[int] = None
    status_text: Optional[str] = None
    body: Optional[str] = None
    batch_status_codes: Tuple[int, ...] = ()
    inner: Optional["Failure"] = field(default=None, compare=False)

    def __str__(self) -> str:
        parts = [self.kind.value]
        if self.web_status is not None:
            parts.append(self.web_status.value)
        if self.socket_code is not None:
            parts.append(self.socket_code.value)
        if self.status_code is not None:
            parts.append(f"HTTP {self.status_code} {self.status_text or ''}".strip())
        if self.message:
            parts.append(self.message)
        return ": ".join(parts)


class CatalogRequestError(Exception):
    """Raised when a catalog request fails; carries the classified failure"""

    def __init__(self, failure: Failure):
        super().__init__(str(failure))
        self.failure = failure


# ============================================================================
# CLASSIFICATION
# ============================================================================

def get_error_code(failure: Failure) -> Optional[str]:
    """Extract the <code>...</code> token from a data service failure's inner error text"""
    if failure.inner is None:
        return None
    match = _ERROR_CODE_REGEX.search(failure.inner.message or "")
    return match.group(1) if match else None


def _web_is_transient(failure: Failure) -> bool:
    if failure.web_status in TRANSIENT_WEB_STATUSES:
        return True
    return (failure.web_status == WebStatus.PROTOCOL_ERROR
            and failure.status_code in TRANSIENT_HTTP_STATUS_CODES)


def _socket_is_transient(failure: Failure) -> bool:
    return failure.socket_code in TRANSIENT_SOCKET_CODES


def _data_service_request_is_transient(failure: Failure) -> bool:
    if get_error_code(failure) in TRANSIENT_STORAGE_ERROR_CODES:
        return True
    return any(code in TRANSIENT_HTTP_STATUS_CODES for code in failure.batch_status_codes)


def _data_service_client_is_transient(failure: Failure) -> bool:
    return failure.status_code in TRANSIENT_HTTP_STATUS_CODES


def _io_is_transient(failure: Failure) -> bool:
    # "Unable to read data from the transport connection" shows up as a bare
    # OSError under heavy load; subtypes such as FileNotFoundError never qualify
    return failure.inner is None


_RULES: Dict[FailureKind, Callable[[Failure], bool]] = {
    FailureKind.WEB: _web_is_transient,
    FailureKind.SOCKET: _socket_is_transient,
    FailureKind.DATA_SERVICE_REQUEST: _data_service_request_is_transient,
    FailureKind.DATA_SERVICE_CLIENT: _data_service_client_is_transient,
    FailureKind.IO: _io_is_transient,
}


def _check_is_transient(failure: Failure) -> bool:
    rule = _RULES.get(failure.kind)
    return rule is not None and rule(failure)


def is_transient(failure: Optional[Failure]) -> bool:
    """
    Determine whether a failure can be compensated by a retry.

    The failure itself and its directly wrapped inner failure are checked;
    deeper nesting is ignored.
    """
    if failure is None:
        return False
    if _check_is_transient(failure):
        return True
    return failure.inner is not None and _check_is_transient(failure.inner)


# ============================================================================
# EXCEPTION TRANSLATION
# ============================================================================

def protocol_failure(status_code: int, status_text: str, body: str = "") -> Failure:
    """
    Failure for an HTTP error response.

    Only the status code decides whether it is transient; the body is kept
    for diagnostics and never consulted for error codes.
    """
    return Failure(
        kind=FailureKind.WEB,
        web_status=WebStatus.PROTOCOL_ERROR,
        status_code=status_code,
        status_text=status_text,
        body=body or None,
        message=f"The remote server returned an error: ({status_code}) {status_text}",
    )


def _inner_exception(exc: BaseException) -> Optional[BaseException]:
    """Find the exception wrapped by exc, following requests/urllib3 conventions"""
    if isinstance(exc, requests.RequestException) and exc.args:
        wrapped = exc.args[0]
        if isinstance(wrapped, urllib3_exceptions.MaxRetryError) and wrapped.reason is not None:
            return wrapped.reason
        if isinstance(wrapped, BaseException):
            return wrapped
    if isinstance(exc, urllib3_exceptions.ProtocolError) and len(exc.args) > 1:
        if isinstance(exc.args[1], BaseException):
            return exc.args[1]
    # Only explicit chaining (raise ... from ...) counts as wrapping
    return exc.__cause__


def _web_status_for(exc: requests.RequestException) -> WebStatus:
    # ConnectTimeout is both a ConnectionError and a Timeout
    if isinstance(exc, requests.exceptions.Timeout):
        return WebStatus.TIMEOUT
    if isinstance(exc, requests.exceptions.SSLError):
        return WebStatus.TRUST_FAILURE
    if isinstance(exc, (requests.exceptions.ChunkedEncodingError,
                        requests.exceptions.ContentDecodingError)):
        return WebStatus.RECEIVE_FAILURE
    if isinstance(exc, requests.exceptions.HTTPError) and exc.response is not None:
        return WebStatus.PROTOCOL_ERROR
    if isinstance(exc, requests.exceptions.ConnectionError):
        inner = _inner_exception(exc)
        if isinstance(inner, urllib3_exceptions.NameResolutionError):
            return WebStatus.NAME_RESOLUTION_FAILURE
        if isinstance(inner, urllib3_exceptions.NewConnectionError):
            return WebStatus.CONNECT_FAILURE
        if isinstance(inner, urllib3_exceptions.ProtocolError):
            return WebStatus.CONNECTION_CLOSED
        return WebStatus.CONNECT_FAILURE
    return WebStatus.UNKNOWN_ERROR


def _socket_code_for(exc: OSError) -> Optional[SocketErrorCode]:
    if isinstance(exc, ConnectionRefusedError) or exc.errno == errno.ECONNREFUSED:
        return SocketErrorCode.CONNECTION_REFUSED
    if isinstance(exc, (socket.timeout, TimeoutError)) or exc.errno == errno.ETIMEDOUT:
        return SocketErrorCode.TIMED_OUT
    if isinstance(exc, ConnectionResetError) or exc.errno == errno.ECONNRESET:
        return SocketErrorCode.CONNECTION_RESET
    if isinstance(exc, ConnectionError):
        return SocketErrorCode.OTHER
    return None


def failure_from_exception(exc: Optional[BaseException], _depth: int = 0) -> Optional[Failure]:
    """
    Translate an exception raised while talking to the catalog into a Failure.

    One level of wrapped exception is captured as the inner failure.
    """
    if exc is None:
        return None

    inner = None
    if _depth == 0:
        wrapped = _inner_exception(exc)
        if wrapped is not None and wrapped is not exc:
            inner = failure_from_exception(wrapped, _depth + 1)

    if isinstance(exc, requests.RequestException):
        web_status = _web_status_for(exc)
        response = exc.response
        if web_status == WebStatus.PROTOCOL_ERROR and response is not None:
            return protocol_failure(response.status_code, response.reason or "", response.text or "")
        return Failure(kind=FailureKind.WEB, web_status=web_status, message=str(exc), inner=inner)

    # NewConnectionError derives from ConnectTimeoutError in urllib3 2.x
    if isinstance(exc, urllib3_exceptions.NameResolutionError):
        return Failure(kind=FailureKind.WEB, web_status=WebStatus.NAME_RESOLUTION_FAILURE, message=str(exc), inner=inner)

    if isinstance(exc, urllib3_exceptions.NewConnectionError):
        return Failure(kind=FailureKind.WEB, web_status=WebStatus.CONNECT_FAILURE, message=str(exc), inner=inner)

    if isinstance(exc, (urllib3_exceptions.ReadTimeoutError, urllib3_exceptions.ConnectTimeoutError)):
        return Failure(kind=FailureKind.WEB, web_status=WebStatus.TIMEOUT, message=str(exc), inner=inner)

    if isinstance(exc, urllib3_exceptions.ProtocolError):
        return Failure(kind=FailureKind.WEB, web_status=WebStatus.CONNECTION_CLOSED, message=str(exc), inner=inner)

    if isinstance(exc, OSError):
        socket_code = _socket_code_for(exc)
        if socket_code is not None:
            return Failure(kind=FailureKind.SOCKET, socket_code=socket_code, message=str(exc), inner=inner)
        kind = FailureKind.IO if type(exc) is OSError else FailureKind.IO_SUBTYPE
        return Failure(kind=kind, message=str(exc), inner=inner)

    return Failure(kind=FailureKind.OTHER, message=str(exc), inner=inner)
