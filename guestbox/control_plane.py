"""Client for the appliance's HTTP control API.

One configuration cycle walks these phases in order:

    PROBE_PORT -> CONFIGURE_IF_FIRST_RUN -> AUTHENTICATE
        -> READ_INTERFACES -> ENABLE_DHCP -> DONE

The listening port is not known up front. A fresh appliance serves its setup
wizard on the setup port and moves to the web port once configured, so the
port that answers first tells us whether first-run setup already happened.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Optional, Sequence

import httpx

from guestbox.config import RunnerConfig
from guestbox.errors import (
    AuthenticationFailed,
    ControlPlaneError,
    ControlPlaneUnreachable,
    DhcpActivationFailed,
    PollTimeout,
    RetriesExhausted,
)
from guestbox.models import Session
from guestbox.retry import Sleep, is_ready_status, poll_until_ready, with_retries

logger = logging.getLogger(__name__)

CONFIGURE_PATH = "/control/install/configure"
LOGIN_PATH = "/control/login"
INTERFACES_PATH = "/control/dhcp/interfaces"
SET_DHCP_CONFIG_PATH = "/control/dhcp/set_config"


class CyclePhase(str, Enum):
    """Where the client is in its configuration cycle."""
    IDLE = "idle"
    PROBE_PORT = "probe-port"
    CONFIGURE_IF_FIRST_RUN = "configure-if-first-run"
    AUTHENTICATE = "authenticate"
    READ_INTERFACES = "read-interfaces"
    ENABLE_DHCP = "enable-dhcp"
    DONE = "done"


def extract_cookie(headers: Any) -> Optional[str]:
    """Return the ``name=value`` part of the first Set-Cookie header.

    Uses ``get_list`` when the headers object has it and falls back to the
    single raw header value otherwise.
    """
    get_list = getattr(headers, "get_list", None)
    values = list(get_list("set-cookie")) if get_list else []
    if not values:
        raw = headers.get("set-cookie")
        values = [raw] if raw else []

    for value in values:
        pair = value.split(";", 1)[0].strip()
        if pair:
            return pair
    return None


class ControlPlaneClient:
    """Drives one configuration cycle against the appliance."""

    def __init__(
        self,
        config: RunnerConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
        log: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.timings = config.timings
        self.host = config.control_host
        self.state = CyclePhase.IDLE
        self.session: Optional[Session] = None
        self._sleep = sleep
        self.logger = log or logger
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared httpx client."""
        if self._http_client is None or self._http_client.is_closed:
            # Local appliance; never route through an ambient HTTP proxy.
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timings.http_timeout),
                trust_env=False,
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    async def __aenter__(self) -> "ControlPlaneClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _url(self, port: int, path: str = "/") -> str:
        return f"http://{self.host}:{port}{path}"

    # -- readiness -----------------------------------------------------------

    async def _answering_port(self, ports: Sequence[int]) -> Optional[int]:
        """Try each port once, in order; return the first that answers."""
        client = await self._get_http_client()
        for port in ports:
            try:
                response = await client.get(self._url(port))
            except httpx.HTTPError as e:
                self.logger.info(f"Control plane not responding on port {port}: {e!r}")
                continue
            self.logger.info(f"Control plane on port {port}: HTTP {response.status_code}")
            if is_ready_status(response.status_code):
                return port
        return None

    async def probe_port(
        self,
        ports: Sequence[int],
        attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> int:
        """Poll ``ports`` in priority order until one answers.

        Raises ControlPlaneUnreachable when the budget runs out.
        """
        attempts = attempts if attempts is not None else self.timings.probe_attempts
        delay = delay if delay is not None else self.timings.probe_delay
        label = f"control plane ({', '.join(str(p) for p in ports)})"
        try:
            port = await poll_until_ready(
                lambda: self._answering_port(ports),
                attempts,
                delay,
                label,
                sleep=self._sleep,
                log=self.logger,
            )
        except PollTimeout as e:
            self.logger.warning(f"Control plane did not answer on any of the ports: {list(ports)}")
            raise ControlPlaneUnreachable(self.host, ports) from e
        self.logger.info(f"Control plane answers on port {port}")
        return port

    async def wait_until_ready(self) -> int:
        """Wait for the appliance to answer on any known port after a restart."""
        return await self.probe_port(
            self.config.candidate_ports,
            attempts=self.timings.restart_wait_attempts,
            delay=self.timings.restart_wait_delay,
        )

    # -- first run -----------------------------------------------------------

    async def configure_first_run(self) -> int:
        """Push bind addresses and admin credentials, then wait for the rebind.

        Returns the port the appliance answers on afterwards.
        """
        client = await self._get_http_client()
        payload = {
            "web": {"ip": "0.0.0.0", "port": self.config.web_port},
            "dns": {"ip": "0.0.0.0", "port": 53},
            "username": self.config.admin_user,
            "password": self.config.admin_password,
        }

        async def post_configure() -> None:
            response = await client.post(
                self._url(self.config.setup_port, CONFIGURE_PATH), json=payload
            )
            if not response.is_success:
                raise ControlPlaneError(
                    f"Initial configuration rejected: HTTP {response.status_code} {response.text}"
                )

        await with_retries(
            post_configure,
            self.timings.configure_attempts,
            self.timings.configure_delay,
            "run the initial appliance configuration",
            sleep=self._sleep,
            log=self.logger,
        )
        self.logger.info("Initial configuration accepted, waiting for the web port")
        return await self.probe_port(
            [self.config.web_port],
            attempts=self.timings.rebind_attempts,
            delay=self.timings.rebind_delay,
        )

    # -- authentication ------------------------------------------------------

    async def _login_once(self, port: int) -> str:
        client = await self._get_http_client()
        response = await client.post(
            self._url(port, LOGIN_PATH),
            json={"name": self.config.admin_user, "password": self.config.admin_password},
        )
        cookie = extract_cookie(response.headers)
        if not cookie:
            raise AuthenticationFailed(
                f"No session cookie in login response (HTTP {response.status_code})"
            )
        return cookie

    async def login(self, port: int) -> Session:
        """Authenticate and keep the session for the rest of the cycle."""
        if self.session is not None:
            raise RuntimeError("A session already exists for this configuration cycle")

        try:
            cookie = await with_retries(
                lambda: self._login_once(port),
                self.timings.login_attempts,
                self.timings.login_delay,
                "obtain an appliance session cookie",
                sleep=self._sleep,
                log=self.logger,
            )
        except RetriesExhausted as e:
            raise AuthenticationFailed(str(e)) from e

        self.session = Session(host=self.host, port=port, cookie=cookie)
        self.logger.info(f"Cookie: {cookie}")
        return self.session

    def _require_session(self) -> Session:
        if self.session is None:
            raise RuntimeError("Not authenticated; call login() first")
        return self.session

    # -- DHCP ----------------------------------------------------------------

    async def read_interfaces(self) -> Optional[str]:
        """Log what the appliance reports about its interfaces.

        Diagnostic only: transport errors are logged and swallowed.
        """
        session = self._require_session()
        client = await self._get_http_client()
        self.logger.info("Checking DHCP interfaces")
        try:
            response = await client.get(
                f"{session.base_url}{INTERFACES_PATH}", headers=session.headers
            )
        except httpx.HTTPError as e:
            self.logger.warning(f"Could not read DHCP interfaces: {e!r}")
            return None
        self.logger.info(f"HTTP status: {response.status_code}")
        self.logger.info(f"DHCP interfaces response: {response.text}")
        return response.text

    async def enable_dhcp(self) -> None:
        """Turn on the DHCP server with the configured ranges."""
        session = self._require_session()
        client = await self._get_http_client()
        payload = self.config.dhcp.to_payload()
        attempt = 0
        last_status: Optional[int] = None

        async def post_config() -> None:
            nonlocal attempt, last_status
            attempt += 1
            self.logger.info(f"Enabling DHCP (attempt {attempt})...")
            response = await client.post(
                f"{session.base_url}{SET_DHCP_CONFIG_PATH}",
                json=payload,
                headers=session.headers,
            )
            last_status = response.status_code
            self.logger.info(f"DHCP responded with status {response.status_code}: {response.text}")
            if not response.is_success:
                raise ControlPlaneError(f"HTTP {response.status_code}")

        try:
            await with_retries(
                post_config,
                self.timings.dhcp_attempts,
                self.timings.dhcp_delay,
                "enable DHCP",
                sleep=self._sleep,
                log=self.logger,
            )
        except RetriesExhausted as e:
            raise DhcpActivationFailed(self.timings.dhcp_attempts, last_status) from e

        self.logger.info(f"DHCP enabled on {self.config.dhcp.interface_name}")

    # -- full cycle ----------------------------------------------------------

    async def authenticate(self) -> Session:
        """Run the cycle up to and including the interface read."""
        self.state = CyclePhase.PROBE_PORT
        port = await self.probe_port(self.config.candidate_ports)

        if port == self.config.setup_port:
            self.state = CyclePhase.CONFIGURE_IF_FIRST_RUN
            port = await self.configure_first_run()
        else:
            self.logger.info(
                f"Skipping initial configuration: control plane already on port {port}"
            )

        self.state = CyclePhase.AUTHENTICATE
        session = await self.login(port)

        self.state = CyclePhase.READ_INTERFACES
        await self.read_interfaces()
        return session

    async def activate_dhcp(self) -> None:
        """Finish the cycle by enabling DHCP."""
        self.state = CyclePhase.ENABLE_DHCP
        await self.enable_dhcp()
        self.state = CyclePhase.DONE

    async def configure(self) -> Session:
        """Run one full configuration cycle."""
        session = await self.authenticate()
        await self.activate_dhcp()
        return session
