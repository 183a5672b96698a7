"""
Request executor: one logical operation, one HTTP exchange.

The executor turns an Operation into an authenticated request against the
company base URL and interprets the response:

1. Take a permit from the context's rate limiter (no network call when blocked)
2. Serialize the operation and attach the bearer token
3. Send; transport failures surface as QBOTransportError
4. On 401, refresh the token once (if a refresh token exists) and resend once
5. On 429 or a throttling fault, raise QBOThrottleError
6. On other 4xx, raise QBOBadRequest carrying the structured fault
7. On 2xx, decode the typed result

The single refresh-and-resend in step 4 is the only retry performed here.
Backoff on throttling or transport failures is left to the caller.
"""

from typing import Any, Optional

import httpx
import structlog

from qbkit.connectors.context import QBContext
from qbkit.errors import (
    QBOAuthError,
    QBOBadRequest,
    QBOThrottleError,
    QBOTransportError,
)
from qbkit.models.enums import RateBudget
from qbkit.models.operations import Operation, WireRequest
from qbkit.models.results import Fault, FaultError

logger = structlog.get_logger()


class RequestExecutor:
    """
    Executes operations against a QBContext.

    Owns an ``httpx.AsyncClient`` unless one is injected. Use as an async
    context manager, or call ``aclose`` when done.
    """

    def __init__(self, context: QBContext, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the executor.

        Args:
            context: Authenticated context shared with other executors
            http_client: Optional client (connection pool, mock transport, ...)
        """
        self.context = context
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self):
        """Async context manager entry."""
        if self._http_client is None:
            self._http_client = self._new_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.aclose()

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.context.settings.qb_http_timeout_seconds)

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = self._new_client()
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def build_request(self, wire: WireRequest) -> httpx.Request:
        """
        Build the HTTP request for a serialized operation with current credentials.

        Args:
            wire: Serialized operation

        Returns:
            Ready-to-send httpx request
        """
        settings = self.context.settings
        params = dict(wire.params)
        if settings.qb_minor_version:
            params.setdefault("minorversion", settings.qb_minor_version)

        headers = {**self.context.auth_header(), "Accept": wire.accept}
        url = f"{self.context.base_url()}/{wire.path}"

        if wire.files is not None:
            # httpx sets the multipart Content-Type with its boundary
            return self.http_client.build_request(
                wire.method,
                url,
                params=params,
                headers=headers,
                files=wire.files,
                timeout=settings.qb_http_timeout_seconds,
            )

        headers["Content-Type"] = wire.content_type
        return self.http_client.build_request(
            wire.method,
            url,
            params=params,
            headers=headers,
            json=wire.json_body,
            timeout=settings.qb_http_timeout_seconds,
        )

    async def _send(self, wire: WireRequest, attempt: int) -> httpx.Response:
        request = self.build_request(wire)
        try:
            response = await self.http_client.send(request)
        except httpx.TransportError as e:
            logger.error(
                "qbo_request_error",
                method=wire.method,
                path=wire.path,
                error=str(e),
                attempt=attempt,
            )
            raise QBOTransportError(f"{wire.method} {wire.path} failed: {e}") from e

        logger.debug(
            "qbo_request_sent",
            method=wire.method,
            path=wire.path,
            status_code=response.status_code,
            attempt=attempt,
        )
        return response

    async def dispatch(
        self,
        wire: WireRequest,
        budget: RateBudget = RateBudget.STANDARD,
    ) -> httpx.Response:
        """
        Send a serialized request under a rate budget, with the single 401 refresh-and-resend.

        Args:
            wire: Serialized operation
            budget: Rate budget to draw from; only the batch engine uses BATCH

        Returns:
            The successful (2xx) response

        Raises:
            QBOThrottleError: Local budget exhausted, remote 429 or throttling fault
            QBOTransportError: Network failure or remote 5xx
            QBOAuthError: Token rejected without a refresh token or app credentials to
                exchange it, rejected again after refresh, or the refresh itself rejected
            QBOBadRequest: Remote rejected the request content
        """
        limiter = self.context.rate_limiter
        limiter.admit(budget)

        if self.context.should_refresh_proactively():
            await self.context.refresh(self.http_client, stale_token=self.context.access_token)

        token_used = self.context.access_token
        response = await self._send(wire, attempt=1)

        if response.status_code == 401:
            if not self.context.can_refresh():
                logger.error("qbo_auth_rejected", path=wire.path, refreshable=False)
                raise QBOAuthError(
                    "Access token rejected and the context cannot refresh it", status_code=401
                )

            logger.info("access_token_rejected", path=wire.path)
            await self.context.refresh(self.http_client, stale_token=token_used)

            # The resend is a second request as far as the remote is concerned.
            limiter.admit(budget)
            response = await self._send(wire, attempt=2)

            if response.status_code == 401:
                logger.error("qbo_auth_rejected", path=wire.path, refreshable=True)
                raise QBOAuthError("Access token rejected after refresh", status_code=401)

        self._raise_for_status(response, wire)
        return response

    def _raise_for_status(self, response: httpx.Response, wire: WireRequest) -> None:
        status = response.status_code
        if status < 400:
            return

        logger.error(
            "qbo_request_failed",
            method=wire.method,
            path=wire.path,
            status_code=status,
            intuit_tid=response.headers.get("intuit_tid"),
        )

        if status == 429:
            raise QBOThrottleError(
                "QuickBooks throttled the request",
                retry_after=self._retry_after(response),
                status_code=status,
            )

        if status >= 500:
            raise QBOTransportError(
                f"QuickBooks server error: {response.text[:500]}", status_code=status
            )

        fault = None
        try:
            fault = Fault.from_body(response.json())
        except ValueError:
            pass

        if fault is not None and fault.is_throttle():
            raise QBOThrottleError(
                fault.summary(), retry_after=self._retry_after(response), status_code=status
            )
        if fault is None:
            fault = Fault(
                type="HTTPError",
                errors=[
                    FaultError(
                        code=str(status),
                        message=response.reason_phrase,
                        detail=response.text[:500],
                    )
                ],
            )
        raise QBOBadRequest(fault, status_code=status)

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("Retry-After")
        if header:
            try:
                return float(header)
            except ValueError:
                pass
        return self.context.settings.qb_throttle_cooldown_seconds

    def read_json(self, response: httpx.Response) -> Any:
        """
        Decode a successful response body, surfacing faults carried in a 2xx body.

        Raises:
            QBOTransportError: If the body is not valid JSON
            QBOThrottleError: If the body carries a throttling fault
            QBOBadRequest: If the body carries any other fault
        """
        try:
            body = response.json()
        except ValueError as e:
            raise QBOTransportError(
                f"Malformed JSON response: {e}", status_code=response.status_code
            ) from e

        fault = Fault.from_body(body)
        if fault is not None:
            if fault.is_throttle():
                raise QBOThrottleError(
                    fault.summary(),
                    retry_after=self._retry_after(response),
                    status_code=response.status_code,
                )
            raise QBOBadRequest(fault, status_code=response.status_code)
        return body

    async def execute(self, operation: Operation) -> Any:
        """
        Execute one operation under the standard budget.

        Args:
            operation: Operation to run (validated at construction)

        Returns:
            Decoded result: entity dict, QueryResultSet, report dict, or bytes for PDFs

        Raises:
            QBOAPIError: Any subclass, see ``dispatch``
        """
        wire = operation.to_wire()
        response = await self.dispatch(wire, budget=RateBudget.STANDARD)

        if operation.expects_binary:
            result: Any = response.content
        else:
            result = operation.decode(self.read_json(response))

        logger.info("qbo_operation_executed", status_code=response.status_code, **operation.describe())
        return result
