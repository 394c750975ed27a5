"""Clients for the browser quota governor.

Pipeline processes talk to the governor hosted by the backend service over
HTTP (``HttpQuotaClient``). The service itself, single-host runs and tests
call the in-process actor directly (``LocalQuotaClient``). Both expose the
same four operations and raise :class:`GovernorError` when the governor
cannot answer.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional, Protocol

import requests

from worknuggets import config
from worknuggets.crawler.errors import AcquisitionDeniedError, GovernorError

from .browser_quota import BrowserQuotaActor, QuotaCommandError, get_quota_actor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcquireResult:
    ok: bool
    reason: Optional[str] = None
    running: Optional[int] = None
    daily_seconds: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AcquireResult":
        return cls(
            ok=bool(payload.get("ok")),
            reason=payload.get("reason"),
            running=payload.get("running"),
            daily_seconds=payload.get("dailySeconds"),
        )


class QuotaClient(Protocol):
    name: str

    def acquire(
        self, reserve_seconds: int, max_concurrent: int, max_daily_seconds: int
    ) -> AcquireResult: ...

    def release(self) -> dict[str, Any]: ...

    def add_seconds(self, seconds: int) -> dict[str, Any]: ...

    def status(self) -> dict[str, Any]: ...


class _BaseQuotaClient:
    name: str

    def _call(self, command: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        raise NotImplementedError

    def acquire(
        self,
        reserve_seconds: int = config.BROWSER_RESERVATION_SECONDS,
        max_concurrent: int = config.MAX_CONCURRENT_BROWSER,
        max_daily_seconds: int = config.MAX_BROWSER_SECONDS_PER_DAY,
    ) -> AcquireResult:
        payload = self._call(
            "acquire",
            {
                "reserveSeconds": reserve_seconds,
                "maxConcurrent": max_concurrent,
                "maxDailySeconds": max_daily_seconds,
            },
        )
        return AcquireResult.from_payload(payload)

    def release(self) -> dict[str, Any]:
        return self._call("release")

    def add_seconds(self, seconds: int) -> dict[str, Any]:
        return self._call("addSeconds", {"seconds": int(seconds)})

    def status(self) -> dict[str, Any]:
        return self._call("status")


class HttpQuotaClient(_BaseQuotaClient):
    """POST governor commands to ``{base_url}/quota/{name}/{command}``."""

    def __init__(
        self,
        base_url: str,
        name: str = config.QUOTA_INSTANCE_NAME,
        session: requests.Session | None = None,
        timeout: float = config.QUOTA_REQUEST_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.session = session or requests.Session()
        self.timeout = timeout

    def _call(self, command: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}/quota/{self.name}/{command}"
        try:
            response = self.session.post(url, json=dict(payload or {}), timeout=self.timeout)
        except requests.RequestException as exc:
            raise GovernorError(f"Quota governor unreachable ({command}): {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise GovernorError(
                f"Quota governor {command} failed: HTTP {response.status_code} "
                f"{response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GovernorError(f"Quota governor returned invalid JSON for {command}") from exc

    def close(self) -> None:
        self.session.close()


class LocalQuotaClient(_BaseQuotaClient):
    """Call an in-process :class:`BrowserQuotaActor`."""

    def __init__(self, actor: BrowserQuotaActor | None = None, name: str | None = None):
        self.actor = actor or get_quota_actor(name)
        self.name = self.actor.name

    def _call(self, command: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        try:
            return self.actor.handle_command(command, payload)
        except QuotaCommandError:
            raise
        except Exception as exc:
            raise GovernorError(f"Quota governor {command} failed: {exc}") from exc


@contextmanager
def browser_slot(
    client: QuotaClient,
    reserve_seconds: int = config.BROWSER_RESERVATION_SECONDS,
    max_concurrent: int = config.MAX_CONCURRENT_BROWSER,
    max_daily_seconds: int = config.MAX_BROWSER_SECONDS_PER_DAY,
) -> Iterator[AcquireResult]:
    """Hold one browser slot for the duration of the ``with`` block.

    Raises :class:`AcquisitionDeniedError` when the governor refuses. Once
    granted, ``release()`` is called exactly once however the block exits;
    a failing release is logged and does not replace the block's outcome.
    """
    result = client.acquire(reserve_seconds, max_concurrent, max_daily_seconds)
    if not result.ok:
        raise AcquisitionDeniedError(
            result.reason or "unknown",
            running=result.running,
            daily_seconds=result.daily_seconds,
        )

    logger.info(
        "Browser slot acquired (running=%s, daily_seconds=%s)",
        result.running,
        result.daily_seconds,
    )
    try:
        yield result
    finally:
        try:
            client.release()
        except Exception as exc:
            logger.error("Failed to release browser slot: %s", exc)


def get_quota_client() -> QuotaClient:
    """HTTP client when ``QUOTA_SERVICE_URL`` is set, in-process otherwise."""
    if config.QUOTA_SERVICE_URL:
        return HttpQuotaClient(config.QUOTA_SERVICE_URL, name=config.QUOTA_INSTANCE_NAME)
    return LocalQuotaClient(name=config.QUOTA_INSTANCE_NAME)
