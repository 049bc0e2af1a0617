"""
Remote image download with format validation and failure classification.

Network failures are mapped onto distinct exception types so callers can
tell the user exactly what went wrong with their URL:

    DNS failure            -> HostUnresolvableError
    connection refused     -> ConnectionRefusedFetchError
    HTTP 404 / 403         -> ImageNotFoundError / AccessDeniedError
    timeout                -> FetchTimeoutError
    unsupported format     -> UnsupportedFormatError
    corrupt body           -> DecodeError
    anything else          -> FetchError (wrapping the cause)
"""

import os
import socket
import asyncio
import logging
from typing import Optional

import httpx

from .exceptions import (
    AccessDeniedError, ConnectionRefusedFetchError, FetchError,
    FetchTimeoutError, HostUnresolvableError, ImageNotFoundError,
    UnsupportedFormatError, VisualMatcherError,
)
from .preprocessing import ALLOWED_FORMATS, detect_format

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = float(os.environ.get("FETCH_TIMEOUT", "15"))
FETCH_MAX_REDIRECTS = int(os.environ.get("FETCH_MAX_REDIRECTS", "5"))
FETCH_USER_AGENT = os.environ.get("FETCH_USER_AGENT", "Visual-Product-Matcher/1.0")

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)


def _causes(exc: BaseException):
    """Walk the exception chain (cause/context), guarding against cycles."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def classify_connect_error(exc: httpx.ConnectError) -> FetchError:
    for cause in _causes(exc):
        if isinstance(cause, socket.gaierror):
            return HostUnresolvableError(str(exc))
        if isinstance(cause, ConnectionRefusedError):
            return ConnectionRefusedFetchError(str(exc))

    message = str(exc).lower()
    if any(marker in message for marker in _DNS_MARKERS):
        return HostUnresolvableError(str(exc))
    if "connection refused" in message:
        return ConnectionRefusedFetchError(str(exc))
    return FetchError(f"Failed to process image: {exc}")


def classify_status(response: httpx.Response) -> Optional[FetchError]:
    status = response.status_code
    if status == 404:
        return ImageNotFoundError()
    if status == 403:
        return AccessDeniedError()
    if status >= 400:
        return FetchError(f"Failed to process image: HTTP {status}")
    return None


def validate_image(content: bytes) -> str:
    """
    Check downloaded bytes decode to an allow-listed format.

    Returns:
        The Pillow format name.

    Raises:
        DecodeError: If the content is not a decodable image.
        UnsupportedFormatError: If the format is not allow-listed.
    """
    fmt = detect_format(content).upper()
    if fmt not in ALLOWED_FORMATS:
        raise UnsupportedFormatError(f"Unsupported image format: {fmt or 'unknown'}")
    logger.debug(f"Image validated: {fmt}")
    return fmt


class ImageFetcher:
    """
    Async image downloader.

    Owns its httpx client unless one is injected. Pass ``transport`` to
    route requests through a custom httpx transport.

    ``timeout`` bounds each whole download, not only the individual
    connect and read steps.
    """

    def __init__(self,
                 client: httpx.AsyncClient = None,
                 timeout: float = FETCH_TIMEOUT,
                 max_redirects: int = FETCH_MAX_REDIRECTS,
                 transport: httpx.AsyncBaseTransport = None):
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=max_redirects,
            headers={"User-Agent": FETCH_USER_AGENT, "Accept": "image/*"},
            transport=transport,
        )

    async def fetch(self, url: str) -> bytes:
        """
        Download an image and validate its format.

        Raises:
            FetchError (or a subclass), DecodeError, UnsupportedFormatError.
        """
        logger.info(f"Downloading image from URL: {url}")
        try:
            response = await asyncio.wait_for(self.client.get(url), self.timeout)
            error = classify_status(response)
            if error is not None:
                raise error

            content = response.content
            if not content:
                raise FetchError("No image data received from URL")

            validate_image(content)
            return content

        except VisualMatcherError:
            raise
        except asyncio.TimeoutError as e:
            raise FetchTimeoutError(f"No complete response within {self.timeout}s") from e
        except httpx.TimeoutException as e:
            raise FetchTimeoutError(str(e)) from e
        except httpx.ConnectError as e:
            raise classify_connect_error(e) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(f"Failed to process image: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
