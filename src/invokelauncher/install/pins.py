"""Version pin manifest lookup."""

from __future__ import annotations

import logging as py_logging
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from invokelauncher.errors import ExitCode, LauncherError
from invokelauncher.host import HostOS
from invokelauncher.install.policy import TorchPlatform
from invokelauncher.retry import RecoverableError, RetryPolicy, run_with_retry

logger = py_logging.getLogger(__name__)

DEFAULT_PINS_TIMEOUT_SECONDS = 20.0
PIN_URL_TEMPLATES = (
    "https://raw.githubusercontent.com/invoke-ai/InvokeAI/{tag}/pins.json",
    "https://cdn.jsdelivr.net/gh/invoke-ai/InvokeAI@{tag}/pins.json",
)


class PlatformIndices(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cuda: str | None = None
    cpu: str | None = None
    rocm: str | None = None

    def for_platform(self, torch_platform: TorchPlatform) -> str | None:
        return getattr(self, torch_platform.value)


class TorchIndexUrls(BaseModel):
    model_config = ConfigDict(extra="ignore")

    win32: PlatformIndices
    linux: PlatformIndices
    darwin: PlatformIndices


class Pins(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    python: str
    torch_index_url: TorchIndexUrls = Field(alias="torchIndexUrl")

    def index_url(self, host_os: HostOS, torch_platform: TorchPlatform) -> str | None:
        indices: PlatformIndices = getattr(self.torch_index_url, host_os.value)
        return indices.for_platform(torch_platform)


class PinsFetcher(Protocol):
    def __call__(self, url: str, timeout: float) -> bytes: ...


def version_tag(version: str) -> str:
    cleaned = version.strip()
    return cleaned if cleaned.startswith("v") else f"v{cleaned}"


def pin_urls(version: str) -> list[str]:
    tag = version_tag(version)
    return [template.format(tag=tag) for template in PIN_URL_TEMPLATES]


def _default_fetcher(url: str, timeout: float) -> bytes:
    request = Request(url, headers={"Accept": "application/json"}, method="GET")
    with urlopen(request, timeout=timeout) as response:  # nosec B310
        return response.read()


def parse_pins(payload: bytes | str) -> Pins:
    return Pins.model_validate_json(payload)


def fetch_pins(
    version: str,
    *,
    fetcher: PinsFetcher = _default_fetcher,
    timeout: float = DEFAULT_PINS_TIMEOUT_SECONDS,
) -> Pins:
    """Fetch the interpreter and torch index pins for ``version``.

    Each mirror is tried once, in order. A failure on one mirror is logged and
    the next is tried; exhausting every mirror raises ``LauncherError``.
    """
    urls = pin_urls(version)

    def _attempt(attempt: int) -> Pins:
        url = urls[attempt]
        logger.info("pins-fetch url=%s", url)
        try:
            return parse_pins(fetcher(url, timeout))
        except (HTTPError, URLError, OSError, ValidationError, ValueError) as exc:
            logger.warning("pins-fetch failed url=%s error=%s", url, exc)
            raise RecoverableError(f"{url}: {exc}") from exc

    def _next_mirror(attempt: int, _exc: RecoverableError) -> None:
        logger.info("pins-fetch trying mirror url=%s", urls[attempt + 1])

    try:
        return run_with_retry(
            _attempt,
            policy=RetryPolicy(max_attempts=len(urls), initial_backoff_seconds=0.0),
            on_retry=_next_mirror,
        )
    except RecoverableError as exc:
        raise LauncherError(
            f"Failed to fetch pins for version {version_tag(version)}",
            code=ExitCode.INSTALL_ERROR,
            hint="Check the version and your network connection, then retry.",
        ) from exc
