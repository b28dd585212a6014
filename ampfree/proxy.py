"""Reverse proxy that rewrites selected request bodies, using mitmproxy."""

import logging
import socket

from mitmproxy import http, options
from mitmproxy.tools import dump

from ampfree.classifier import Policy, classify, split_path
from ampfree.config import AMP_MODE_FREE, AMP_MODE_HEADER, DEFAULT_LISTEN_HOST
from ampfree.rewriter import rewrite
from ampfree.settings import ProxySettings

logger = logging.getLogger(__name__)

# Substrings of mitmproxy flow errors raised when the client goes away
# mid-request, typically by aborting a long SSE response.
CLIENT_CANCEL_MARKERS = (
    "client disconnected",
    "connection killed",
    "stream reset",
    "cancelled",
    "canceled",
)


def is_client_cancellation(message: str | None) -> bool:
    """Return True for errors caused by the client abandoning the stream."""
    if not message:
        return False
    message = message.lower()
    return any(marker in message for marker in CLIENT_CANCEL_MARKERS)


class AmpFreeAddon:
    """mitmproxy addon that rewrites free-tier and model fields before forwarding.

    Holds nothing but the read-only settings, so concurrent flows never
    share rewrite state.
    """

    def __init__(self, settings: ProxySettings):
        self.settings = settings

    def _classify(self, request: http.Request, has_body: bool) -> Policy:
        path, query = split_path(request.path)
        return classify(
            path,
            query,
            self.settings.enable_free_search,
            self.settings.enable_model_mapping,
            has_body,
            bool(self.settings.model_mappings),
        )

    def requestheaders(self, flow: http.HTTPFlow) -> None:
        """Stream bodies of requests that can never be rewritten."""
        # Body presence is unknown until it arrives, so decide on path alone
        if self._classify(flow.request, has_body=True) is Policy.NONE:
            flow.request.stream = True

    def request(self, flow: http.HTTPFlow) -> None:
        """Rewrite a fully buffered request body just before it goes upstream."""
        if flow.request.stream or flow.response is not None:
            return
        try:
            self._rewrite_request(flow.request)
        except Exception:
            logger.warning(
                "Unexpected error rewriting %s, forwarding unchanged",
                flow.request.path,
                exc_info=True,
            )

    def _rewrite_request(self, request: http.Request) -> None:
        try:
            body = request.get_content(strict=True)
        except ValueError as e:
            # Undecodable content-encoding: the raw bytes stay attached as-is
            logger.warning("Could not read request body for %s: %s", request.path, e)
            return

        policy = self._classify(request, has_body=body is not None)
        if policy is Policy.NONE:
            return

        outcome = rewrite(policy, body, self.settings.model_mappings)
        if not outcome.mutated:
            logger.debug("No %s rewrite for %s", policy.value, request.path)
            return

        request.content = outcome.body
        # The body is fully buffered now; send it with an exact length
        request.headers.pop("transfer-encoding", None)
        request.headers["content-length"] = str(len(request.raw_content))

        if policy is Policy.FREE_TIER:
            _, query = split_path(request.path)
            logger.info("Modified %s request to use free tier", query)
        else:
            request.headers[AMP_MODE_HEADER] = AMP_MODE_FREE
            logger.info("Mapped model: %s -> %s", outcome.mapping.source, outcome.mapping.target)

    def responseheaders(self, flow: http.HTTPFlow) -> None:
        """Pass every response straight through, keeping SSE live."""
        flow.response.stream = True

    def error(self, flow: http.HTTPFlow) -> None:
        message = flow.error.msg if flow.error else None
        if is_client_cancellation(message):
            logger.debug("Client cancelled %s: %s", flow.request.path, message)
            return
        logger.warning("Proxy error: %s %s: %s", flow.request.method, flow.request.path, message)


def ensure_port_available(host: str, port: int) -> None:
    """Fail fast if the listen address cannot be bound.

    Raises:
        OSError: the address is in use or not bindable.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        s.bind((host, port))


def build_master(settings: ProxySettings, host: str = DEFAULT_LISTEN_HOST) -> dump.DumpMaster:
    """Build a mitmproxy master in reverse mode toward the configured upstream.

    Must be called with an event loop running.
    """
    opts = options.Options(
        listen_host=host,
        listen_port=settings.port,
        mode=[f"reverse:{settings.upstream}"],
    )

    master = dump.DumpMaster(
        opts,
        with_termlog=False,
        with_dumper=False,
    )

    # Accept non-local clients when listening on all interfaces
    master.options.update(block_global=False)
    master.addons.add(AmpFreeAddon(settings))
    return master


async def start_mitmproxy(settings: ProxySettings, host: str = DEFAULT_LISTEN_HOST) -> None:
    """Start mitmproxy and serve until shut down."""
    master = build_master(settings, host)

    logger.info("mitmproxy listening on %s:%d, forwarding to %s", host, settings.port, settings.upstream)
    await master.run()
