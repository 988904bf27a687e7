#!/usr/bin/env python3
"""
mock_appliance - Stand-in for the appliance's HTTP control API.

Serves the setup wizard on one port until it is configured, then the admin
API on another, the way a freshly installed appliance behaves. Useful for
running the orchestrator locally without root or a real appliance.

Endpoints:
    GET  /                              - Liveness (503 on the inactive port)
    POST /control/install/configure     - First-run setup (setup port only)
    POST /control/login                 - Issue a session cookie
    GET  /control/dhcp/interfaces       - List interfaces (cookie required)
    POST /control/dhcp/set_config       - Enable DHCP (cookie required)

Usage:
    python -m guestbox.mock_appliance --setup-port 3000 --web-port 8080
"""

import argparse
import asyncio
import json
import logging
import secrets
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Optional

from aiohttp import web

logger = logging.getLogger(__name__)

COOKIE_NAME = "agh_session"


@dataclass
class ApplianceState:
    """Mutable state shared by the setup and web apps."""
    username: str = "admin"
    password: str = "123123123"
    configured: bool = False
    dhcp_failures: int = 0  # number of set_config calls to reject first
    dhcp_enabled: bool = False
    dhcp_config: Optional[dict] = None
    sessions: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)


class MockAppliance:
    def __init__(self, state: Optional[ApplianceState] = None):
        self.state = state or ApplianceState()

    def _record(self, request: web.Request) -> None:
        self.state.calls.append((request.method, request.path))

    def _authorized(self, request: web.Request) -> bool:
        return request.cookies.get(COOKIE_NAME) in self.state.sessions

    async def _json_body(self, request: web.Request) -> Optional[dict[str, Any]]:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return None
        return body if isinstance(body, dict) else None

    # -- setup port ----------------------------------------------------------

    async def setup_root(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.state.configured:
            return web.Response(status=HTTPStatus.SERVICE_UNAVAILABLE)
        return web.Response(text="setup wizard")

    async def install_configure(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.state.configured:
            return web.json_response(
                {"error": "already configured"}, status=HTTPStatus.FORBIDDEN
            )
        body = await self._json_body(request)
        if body is None or not body.get("username") or not body.get("password"):
            return web.json_response(
                {"error": "Missing credentials"}, status=HTTPStatus.BAD_REQUEST
            )
        self.state.username = body["username"]
        self.state.password = body["password"]
        self.state.configured = True
        logger.info(f"Appliance configured for user {self.state.username}")
        return web.json_response({})

    # -- web port ------------------------------------------------------------

    async def web_root(self, request: web.Request) -> web.Response:
        self._record(request)
        if not self.state.configured:
            return web.Response(status=HTTPStatus.SERVICE_UNAVAILABLE)
        return web.Response(text="admin")

    async def login(self, request: web.Request) -> web.Response:
        self._record(request)
        body = await self._json_body(request)
        if (
            body is None
            or body.get("name") != self.state.username
            or body.get("password") != self.state.password
        ):
            return web.json_response(
                {"error": "invalid credentials"}, status=HTTPStatus.FORBIDDEN
            )
        token = secrets.token_hex(16)
        self.state.sessions.add(token)
        response = web.json_response({})
        response.set_cookie(COOKIE_NAME, token, path="/", httponly=True)
        return response

    async def dhcp_interfaces(self, request: web.Request) -> web.Response:
        self._record(request)
        if not self._authorized(request):
            return web.Response(status=HTTPStatus.UNAUTHORIZED)
        return web.json_response({
            "br0": {
                "name": "br0",
                "hardware_address": "02:00:00:00:00:01",
                "flags": "up|broadcast|multicast",
                "ipv4_addresses": ["10.99.0.1"],
                "ipv6_addresses": [],
                "gateway_ip": "10.99.0.1",
            },
        })

    async def dhcp_set_config(self, request: web.Request) -> web.Response:
        self._record(request)
        if not self._authorized(request):
            return web.Response(status=HTTPStatus.UNAUTHORIZED)
        body = await self._json_body(request)
        if body is None:
            return web.json_response(
                {"error": "Invalid JSON"}, status=HTTPStatus.BAD_REQUEST
            )
        if self.state.dhcp_failures > 0:
            self.state.dhcp_failures -= 1
            return web.Response(
                text="dhcp: interface not ready", status=HTTPStatus.INTERNAL_SERVER_ERROR
            )
        self.state.dhcp_config = body
        self.state.dhcp_enabled = bool(body.get("enabled"))
        return web.Response(text="OK")

    def create_setup_app(self) -> web.Application:
        """Create the aiohttp application for the setup port."""
        app = web.Application()
        app.router.add_get("/", self.setup_root)
        app.router.add_post("/control/install/configure", self.install_configure)
        return app

    def create_web_app(self) -> web.Application:
        """Create the aiohttp application for the web port."""
        app = web.Application()
        app.router.add_get("/", self.web_root)
        app.router.add_post("/control/login", self.login)
        app.router.add_get("/control/dhcp/interfaces", self.dhcp_interfaces)
        app.router.add_post("/control/dhcp/set_config", self.dhcp_set_config)
        return app


async def serve(appliance: MockAppliance, host: str, setup_port: int, web_port: int) -> None:
    runners = []
    for app, port in (
        (appliance.create_setup_app(), setup_port),
        (appliance.create_web_app(), web_port),
    ):
        runner = web.AppRunner(app)
        await runner.setup()
        await web.TCPSite(runner, host, port).start()
        runners.append(runner)
        logger.info(f"mock appliance listening on {host}:{port}")

    try:
        await asyncio.Event().wait()
    finally:
        for runner in runners:
            await runner.cleanup()


def main():
    parser = argparse.ArgumentParser(description="Mock appliance control API")
    parser.add_argument("--host", default="127.0.0.1", help="Address to bind (default: 127.0.0.1)")
    parser.add_argument("--setup-port", type=int, default=3000, help="Setup wizard port (default: 3000)")
    parser.add_argument("--web-port", type=int, default=80, help="Admin API port (default: 80)")
    parser.add_argument(
        "--configured",
        action="store_true",
        help="Start as if first-run setup already happened",
    )
    parser.add_argument(
        "--dhcp-failures",
        type=int,
        default=0,
        help="Reject this many DHCP set_config calls before accepting",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    appliance = MockAppliance(
        ApplianceState(configured=args.configured, dhcp_failures=args.dhcp_failures)
    )
    try:
        asyncio.run(serve(appliance, args.host, args.setup_port, args.web_port))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
