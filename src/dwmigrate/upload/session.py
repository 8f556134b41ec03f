"""Authenticated session against the DocuWare Platform REST API.

The session state is the cookie jar of one shared ``httpx.AsyncClient``.
:class:`DocuWareSession` owns that client; the uploader receives the session
object and issues its requests through :attr:`DocuWareSession.client`, so
there is exactly one live session per run and no module-level state.

Lifecycle: uninitialized -> authenticated (``login``) -> expired (any 401
seen by the uploader) -> re-authenticated (``login`` again) -> terminated
(``logoff`` / ``aclose``).
"""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

_XHR_HEADERS = {
    "Accept": "application/xml",
    "X-Requested-With": "XMLHttpRequest",
}


def describe_http_error(exc: httpx.HTTPError) -> str:
    """Short description of an httpx error: ``HTTP 401`` or the transport message."""
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return str(exc) or type(exc).__name__


class DocuWareSession:
    """Login/logoff lifecycle for the DocuWare Platform.

    Usage::

        async with DocuWareSession(base_url, "admin", "secret", "Acme") as session:
            if not await session.login():
                ...
            await session.logoff()

    Args:
        base_url: Platform root, e.g. ``https://dw.example.com/DocuWare/Platform``.
        username: DocuWare user name.
        password: DocuWare password.
        organization: DocuWare organization name.
        login_timeout: Seconds allowed for the logon request.
        probe_timeout: Seconds allowed for the ``/FileCabinets`` probe.
        logoff_timeout: Seconds allowed for the logoff request.
        verify_tls: Verify the server certificate.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        organization: str,
        login_timeout: float = 30.0,
        probe_timeout: float = 15.0,
        logoff_timeout: float = 10.0,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._username = username
        self._password = password
        self._organization = organization
        self._login_timeout = login_timeout
        self._probe_timeout = probe_timeout
        self._logoff_timeout = logoff_timeout

        self._client = httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=5,
            timeout=60.0,
            verify=verify_tls,
            transport=transport,
        )
        self._authenticated = False
        self.login_count = 0

    @property
    def client(self) -> httpx.AsyncClient:
        """The shared HTTP client carrying the session cookies."""
        return self._client

    @property
    def is_established(self) -> bool:
        """True while a login succeeded or session cookies are held."""
        return self._authenticated or len(self._client.cookies.jar) > 0

    # ------------------------------------------------------------------
    # Login / logoff
    # ------------------------------------------------------------------

    async def login(self) -> bool:
        """Exchange credentials and verify the session with one probe request.

        Returns:
            True when both the logon and the ``/FileCabinets`` probe succeed,
            False on any HTTP or transport failure. Never raises for those.
        """
        self.login_count += 1
        logger.info("Attempting DocuWare login as %s...", self._username)
        payload = {
            "userName": self._username,
            "password": self._password,
            "organization": self._organization,
            "rememberMe": "false",
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/Account/Logon",
                data=payload,
                headers=_XHR_HEADERS,
                timeout=self._login_timeout,
            )
            response.raise_for_status()

            probe = await self._client.get(
                f"{self.base_url}/FileCabinets",
                headers={"Accept": "application/json"},
                timeout=self._probe_timeout,
            )
            probe.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("DocuWare login FAILED (%s)", describe_http_error(exc))
            self._authenticated = False
            self._client.cookies.clear()
            return False

        self._authenticated = True
        logger.info("DocuWare login successful")
        return True

    async def logoff(self) -> None:
        """End the DocuWare session, best effort.

        Does nothing when no session is established. Failures are logged
        and never propagated so shutdown always continues.
        """
        if not self.is_established:
            logger.debug("No DocuWare session to log off")
            return

        logger.info("Logging off DocuWare...")
        try:
            response = await self._client.get(
                f"{self.base_url}/Account/Logoff",
                headers=_XHR_HEADERS,
                timeout=self._logoff_timeout,
            )
            response.raise_for_status()
            logger.info("Logoff successful")
        except httpx.HTTPError as exc:
            logger.warning("Logoff failed: %s", describe_http_error(exc))
        finally:
            self._authenticated = False
            self._client.cookies.clear()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Dispose of the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> DocuWareSession:
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()
