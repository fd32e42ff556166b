from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

import httpx

from nitrod.config import Settings
from nitrod.exceptions import ProxyRejectedError, ProxyUnreachableError
from nitrod.schemas.caddy import CaddyUpdate, Match, RouteHandle, Server, ServerRoute, Upstream
from nitrod.schemas.sites import Site
from nitrod.services.polling import run_with_retry


logger = logging.getLogger(__name__)

SERVERS_PATH = "/config/apps/http/servers"


@dataclass
class ApplyResult:
    applied_count: int
    message: str
    error: bool = False


def site_route(site: Site) -> ServerRoute:
    return ServerRoute(
        match=[Match(host=site.hosts)],
        handle=[
            RouteHandle(
                handler="reverse_proxy",
                upstreams=[Upstream(dial=f"{site.upstream}:{site.port}")],
            )
        ],
        terminal=True,
    )


def static_fallback_route(static_root: str, caddyfile_path: str) -> ServerRoute:
    """Catch-all route serving the default page from the proxy's web root."""
    return ServerRoute(
        handle=[
            RouteHandle(handler="vars", root=static_root),
            RouteHandle(handler="file_server", root=static_root, hide=[caddyfile_path]),
        ],
        terminal=True,
    )


def build_update(
    sites: Iterable[Site],
    static_root: str = "/var/www/html",
    caddyfile_path: str = "/etc/caddy/Caddyfile",
) -> CaddyUpdate:
    """Project a batch of sites onto the https and http Caddy servers.

    Route order follows input order. The http server gets one extra static
    fallback route, always last.
    """
    routes = [site_route(site) for site in sites]
    return CaddyUpdate(
        https=Server(listen=[":443"], routes=list(routes)),
        http=Server(listen=[":80"], routes=[*routes, static_fallback_route(static_root, caddyfile_path)]),
    )


class RouteReconciler:
    """Pushes the full route set to the Caddy admin API."""

    def __init__(self, settings: Settings, transport: httpx.BaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.settings.caddy_admin_url,
            headers={"Content-Type": "application/json"},
            timeout=self.settings.caddy_timeout,
            transport=self._transport,
        )

    def _post(self, payload: dict) -> httpx.Response:
        with self._client() as client:
            return client.post(SERVERS_PATH, json=payload)

    def apply(self, sites: list[Site], strict: bool = False) -> ApplyResult:
        """Replace every route in Caddy with routes for ``sites``.

        A non-2xx answer is reported in the result, or raised as
        ProxyRejectedError when ``strict`` is set.
        """
        update = build_update(sites, self.settings.static_root, self.settings.caddyfile_path)
        payload = update.to_payload()

        try:
            response = run_with_retry(
                lambda: self._post(payload),
                attempts=self.settings.caddy_retry_attempts,
                retry_on=(httpx.TransportError,),
                description="Caddy config update",
            )
        except httpx.TransportError as exc:
            raise ProxyUnreachableError(
                f"unable to reach the Caddy API at {self.settings.caddy_admin_url}: {exc}"
            ) from exc

        if not response.is_success:
            logger.warning(
                "Caddy rejected the config update with %d: %s",
                response.status_code,
                response.text[:500],
            )
            if strict:
                raise ProxyRejectedError(response.status_code, response.text)
            return ApplyResult(
                applied_count=0,
                message=f"Received {response.status_code} response from Caddy API",
                error=True,
            )

        logger.info("Applied %d site routes to Caddy", len(sites))
        return ApplyResult(
            applied_count=len(sites),
            message=f"Successfully applied changes, sites: {len(sites)}",
        )
