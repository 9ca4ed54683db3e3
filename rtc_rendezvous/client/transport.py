"""HTTP request/response client for the rendezvous gateway."""

import asyncio
from functools import partial
from typing import Optional

import requests
from loguru import logger

from rtc_rendezvous.exceptions import TransportError
from rtc_rendezvous.protocol import InboundFrame, OutboundFrame, decode_frame


class SignalTransport:
    """Sends one frame per call to the rendezvous gateway.

    No retry and no timeout: callers decide how to treat a ``TransportError``.
    The blocking ``requests`` call runs in the loop's default executor.
    """

    def __init__(self, api_url: str, session: Optional[requests.Session] = None):
        self.api_url = api_url
        self._session = session or requests.Session()

    def _post(self, body: str) -> requests.Response:
        # The gateway may answer through a redirect (e.g. Apps Script deployments).
        return self._session.post(
            self.api_url,
            data=body,
            headers={"Content-Type": "text/plain;charset=utf-8"},
            allow_redirects=True,
        )

    async def send(self, frame: OutboundFrame) -> InboundFrame:
        """Send ``frame`` and return the decoded gateway response.

        Raises:
            TransportError: On network failure, non-2xx status, or a malformed body.
        """
        body = frame.encode()
        logger.debug(f"Gateway request: {body}")

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, partial(self._post, body))
        except requests.RequestException as e:
            raise TransportError(f"Gateway request failed: {e}") from e

        if not response.ok:
            raise TransportError(
                f"Gateway returned HTTP {response.status_code}: {response.text[:200]}"
            )

        frame_in = decode_frame(response.text)
        logger.debug(f"Gateway response: {response.text}")
        return frame_in

    def close(self) -> None:
        self._session.close()
