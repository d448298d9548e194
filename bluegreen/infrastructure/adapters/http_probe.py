"""
HTTP Traffic Probe Adapter

Architectural Intent:
- Implements TrafficProbePort by issuing an HTTP GET through the test
  listener's URL and comparing the status code
- Uses stdlib urllib for the HTTP layer, run in the default executor so the
  event loop is never blocked

Design Decisions:
- Transport errors and unexpected status codes both count as a failed probe
- The per-probe deadline is enforced by the caller; the socket timeout here
  only bounds a hung connection
"""

import asyncio
import logging
import urllib.error
import urllib.request

logger = logging.getLogger(__name__)


class HttpProbe:
    def __init__(self, url: str, expected_status: int = 200, timeout: float = 10.0) -> None:
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"Probe url must be http(s): {url!r}")
        self.url = url
        self.expected_status = expected_status
        self.timeout = timeout

    async def probe(self, listener_id: str) -> bool:
        def _get() -> int:
            request = urllib.request.Request(
                self.url, headers={"User-Agent": "bluegreen-probe", "X-Listener": listener_id}
            )
            try:
                with urllib.request.urlopen(request, timeout=self.timeout) as response:
                    return response.status
            except urllib.error.HTTPError as e:
                return e.code

        try:
            status = await asyncio.get_running_loop().run_in_executor(None, _get)
        except (urllib.error.URLError, OSError) as e:
            logger.warning("Probe via %s to %s failed: %s", listener_id, self.url, e)
            return False
        passed = status == self.expected_status
        if not passed:
            logger.warning(
                "Probe via %s to %s returned %d (expected %d)",
                listener_id,
                self.url,
                status,
                self.expected_status,
            )
        return passed
