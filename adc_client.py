"""
Azure Data Catalog (ADC) client for API connections
"""

import os
import random
import time
import uuid
import logging
from typing import Callable, Mapping, Optional, Tuple
from urllib.parse import urljoin
from dataclasses import dataclass, field, replace

import requests
from requests.structures import CaseInsensitiveDict
from dotenv import load_dotenv

from adc_auth import DEFAULT_AUTHORITY, MsalTokenProvider, StaticTokenProvider
from transient_errors import (
    CatalogRequestError,
    Failure,
    FailureKind,
    WebStatus,
    failure_from_exception,
    is_transient,
    protocol_failure,
)

DEFAULT_API_HOST = "api.azuredatacatalog.com"
DEFAULT_API_VERSION = "2016-03-30"
DEFAULT_CATALOG_NAME = "DefaultCatalog"

REDIRECT_STATUS_CODE = 302
MAX_REDIRECTS = 5
CLIENT_REQUEST_ID_HEADER = "x-ms-client-request-id"
JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by every call the client makes"""
    classifier: Callable[[Optional[Failure]], bool] = is_transient
    max_attempts: int = 5
    min_backoff_seconds: float = 0.1
    max_backoff_seconds: float = 0.5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.min_backoff_seconds < 0 or self.max_backoff_seconds < self.min_backoff_seconds:
            raise ValueError("backoff bounds must satisfy 0 <= min <= max")

    def backoff(self, retry_number: int) -> float:
        """Delay before the given retry (1 = first retry): exponential with jitter, clamped to the bounds"""
        delta = self.min_backoff_seconds * (2 ** (retry_number - 1)) * random.uniform(0.8, 1.2)
        return max(self.min_backoff_seconds, min(self.max_backoff_seconds, delta))


@dataclass(frozen=True)
class OutboundRequest:
    """An HTTP request; rebuilt rather than mutated for every hop and attempt"""
    url: str
    method: str = "POST"
    content_type: str = JSON_CONTENT_TYPE
    headers: Tuple[Tuple[str, str], ...] = ()

    def with_headers(self, **extra: str) -> "OutboundRequest":
        return replace(self, headers=tuple(extra.items()))

    def redirected_to(self, location: str) -> "OutboundRequest":
        """Same method and content type, new target, no headers carried over"""
        return replace(self, url=location, headers=())

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None


@dataclass(frozen=True)
class InboundResponse:
    """A fully drained HTTP response"""
    status_code: int
    status_text: str
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    body: bytes = b""

    @property
    def location(self) -> Optional[str]:
        return self.headers.get("Location")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class ADCClient:
    """
    Azure Data Catalog client that owns the HTTP session, the token provider
    and the retry policy. Every request goes through execute(), which retries
    transient failures and follows redirects itself.
    """

    def __init__(self, config_file=None, catalog_name: Optional[str] = None,
                 token_provider=None, retry_policy: Optional[RetryPolicy] = None,
                 session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 timeout: Tuple[float, float] = (10, 60)):
        """
        Initialize ADC client

        Args:
            config_file: Optional path to .env file
            catalog_name: Catalog name, defaults to ADC_CATALOG_NAME
            token_provider: Object exposing authorization_header()
            retry_policy: Retry configuration, defaults to ADC_* settings
            session: Optional requests session to use
            sleep: Blocking sleep used between attempts
            timeout: (connect, read) timeout in seconds
        """
        load_dotenv(config_file or '.env', override=True)

        # Load configuration
        self.catalog_name = catalog_name or os.environ.get('ADC_CATALOG_NAME', DEFAULT_CATALOG_NAME)
        self.api_host = os.environ.get('ADC_API_HOST', DEFAULT_API_HOST)
        self.api_version = os.environ.get('ADC_API_VERSION', DEFAULT_API_VERSION)

        self._logger = logging.getLogger(__name__)
        self._token_provider = token_provider or self._create_token_provider()
        self.retry_policy = retry_policy or self._load_retry_policy()
        self._session = session or self._create_session()
        self._sleep = sleep
        self._timeout = timeout

        self._validate_config()

    def _validate_config(self):
        """Validate required configuration"""
        if not self.catalog_name:
            raise ValueError("ADC_CATALOG_NAME environment variable is required")
        if not self.api_host:
            raise ValueError("ADC_API_HOST environment variable is required")
        if not self.api_version:
            raise ValueError("ADC_API_VERSION environment variable is required")

    @staticmethod
    def _create_token_provider():
        access_token = os.environ.get('ADC_ACCESS_TOKEN')
        if access_token:
            return StaticTokenProvider(access_token)
        return MsalTokenProvider(
            client_id=os.environ.get('ADC_CLIENT_ID'),
            authority=os.environ.get('ADC_AUTHORITY', DEFAULT_AUTHORITY)
        )

    @staticmethod
    def _load_retry_policy() -> RetryPolicy:
        try:
            return RetryPolicy(
                max_attempts=int(os.environ.get('ADC_MAX_ATTEMPTS', 5)),
                min_backoff_seconds=int(os.environ.get('ADC_MIN_BACKOFF_MS', 100)) / 1000,
                max_backoff_seconds=int(os.environ.get('ADC_MAX_BACKOFF_MS', 500)) / 1000
            )
        except ValueError as e:
            raise ValueError(f"Invalid retry configuration: {e}")

    def _create_session(self) -> requests.Session:
        """Create a new configured session"""
        session = requests.Session()

        # Retries are handled by the retry policy, not the transport
        session.mount('https://', requests.adapters.HTTPAdapter(
            max_retries=0,
            pool_connections=1,
            pool_maxsize=1
        ))

        return session

    # ------------------------------------------------------------------------
    # Request execution
    # ------------------------------------------------------------------------

    def _authorize(self, request: OutboundRequest) -> OutboundRequest:
        """Attach a freshly fetched token and a new correlation id"""
        return request.with_headers(**{
            'Authorization': self._token_provider.authorization_header(),
            CLIENT_REQUEST_ID_HEADER: str(uuid.uuid4()),
        })

    def _raise_request_failure(self, request: OutboundRequest, exc: BaseException):
        """Log and release any error response attached to exc, then raise its classified failure"""
        failure = failure_from_exception(exc)

        response = getattr(exc, 'response', None)
        if response is not None:
            with response:
                text = response.text
            if text:
                self._logger.error(f"{request.method} {request.url} failed with "
                                   f"{response.status_code} {response.reason or ''}: {text}")

        raise CatalogRequestError(failure) from exc

    def _send(self, request: OutboundRequest, body: bytes) -> InboundResponse:
        """Issue one physical request and drain its response"""
        headers = dict(request.headers)
        headers['Content-Type'] = request.content_type
        headers['Content-Length'] = str(len(body))

        self._logger.debug(f"{request.method} {request.url} ({CLIENT_REQUEST_ID_HEADER}: "
                           f"{request.header(CLIENT_REQUEST_ID_HEADER)})")
        try:
            response = self._session.request(
                request.method, request.url,
                data=body, headers=headers,
                allow_redirects=False, timeout=self._timeout
            )
        except (requests.RequestException, OSError) as e:
            self._raise_request_failure(request, e)

        with response:
            try:
                content = response.content
            except (requests.RequestException, OSError) as e:
                self._raise_request_failure(request, e)

            inbound = InboundResponse(
                status_code=response.status_code,
                status_text=response.reason or "",
                headers=CaseInsensitiveDict(response.headers),
                body=content or b""
            )

        if inbound.status_code >= 400:
            if inbound.body:
                self._logger.error(f"{request.method} {request.url} failed with "
                                   f"{inbound.status_code} {inbound.status_text}: {inbound.text}")
            raise CatalogRequestError(protocol_failure(inbound.status_code, inbound.status_text, inbound.text))

        return inbound

    def _send_following_redirects(self, build_request: Callable[[], OutboundRequest],
                                  body: bytes) -> InboundResponse:
        """One attempt: send, then keep following 302 responses to their Location"""
        request = self._authorize(build_request())

        for hop in range(MAX_REDIRECTS + 1):
            response = self._send(request, body)
            if response.status_code != REDIRECT_STATUS_CODE:
                return response

            location = response.location
            if not location:
                raise CatalogRequestError(Failure(
                    kind=FailureKind.WEB,
                    web_status=WebStatus.PROTOCOL_ERROR,
                    status_code=response.status_code,
                    status_text=response.status_text,
                    message="Redirect response without a Location header"
                ))

            self._logger.debug(f"Following redirect {hop + 1} to {location}")
            request = self._authorize(request.redirected_to(urljoin(request.url, location)))

        raise CatalogRequestError(Failure(
            kind=FailureKind.WEB,
            web_status=WebStatus.PROTOCOL_ERROR,
            status_code=REDIRECT_STATUS_CODE,
            status_text="Found",
            message=f"Exceeded {MAX_REDIRECTS} redirects"
        ))

    def execute(self, build_request: Callable[[], OutboundRequest],
                body: Optional[bytes] = None) -> InboundResponse:
        """
        Execute one logical request under the retry policy.

        build_request is called once per attempt; redirect hops derive new
        requests from it. Non-transient failures propagate immediately, and
        the last failure propagates once attempts are exhausted.
        """
        body = body or b""
        policy = self.retry_policy
        attempt = 0

        while True:
            attempt += 1
            if attempt > 1:
                delay = policy.backoff(attempt - 1)
                self._logger.warning(f"Retrying in {delay:.2f}s (attempt {attempt}/{policy.max_attempts})")
                self._sleep(delay)

            try:
                return self._send_following_redirects(build_request, body)
            except CatalogRequestError as e:
                if not policy.classifier(e.failure):
                    raise
                if attempt >= policy.max_attempts:
                    self._logger.error(f"Giving up after {attempt} attempts: {e}")
                    raise
                self._logger.warning(f"Transient failure on attempt {attempt}: {e}")

    # ------------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------------

    def views_url(self, view_type: str) -> str:
        return f"https://{self.api_host}/catalogs/{self.catalog_name}/views/{view_type}"

    def resolve_location(self, location: str) -> str:
        """Return an absolute URL for a Location value such as 'tables/{id}'"""
        if location.startswith(("https://", "http://")):
            return location
        return self.views_url(location.lstrip('/'))

    def post_json(self, url: str, json_payload: str) -> InboundResponse:
        """POST a JSON string to url?api-version=..."""
        separator = '&' if '?' in url else '?'
        full_url = f"{url}{separator}api-version={self.api_version}"
        return self.execute(lambda: OutboundRequest(url=full_url, method="POST"),
                            json_payload.encode("utf-8"))

    def register_data_asset(self, json_payload: str, view_type: str) -> str:
        """
        Register a data asset, or update it when one with the same identity exists.

        Use view_type "containers" for a data source container and "tables"
        for a data asset. Returns the Location header of the created
        resource (format: {view_type}/{id} or its absolute URL).
        """
        response = self.post_json(self.views_url(view_type), json_payload)
        if not response.location:
            raise CatalogRequestError(Failure(
                kind=FailureKind.OTHER,
                status_code=response.status_code,
                status_text=response.status_text,
                message=f"Registration returned no Location header ({response.status_text})"
            ))

        self._logger.info(f"Registered {view_type}: {response.status_code} {response.status_text}")
        return response.location

    def annotate_data_asset(self, asset_location: str, annotation: str, json_payload: str) -> str:
        """Annotate a data asset, e.g. annotation="descriptions"; returns the response text"""
        url = f"{self.resolve_location(asset_location).rstrip('/')}/{annotation}"
        response = self.post_json(url, json_payload)
        return response.text

    def close(self):
        """Close the HTTP session"""
        self._session.close()

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
