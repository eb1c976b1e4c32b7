from __future__ import annotations

"""
Client side of the transcript services (transcribe, format, extract, key moments).

Design intent:
- Every call returns a tagged `ServiceResult` instead of raising, so the
  orchestrator decides per stage whether to abort or degrade.
- Requests built locally are validated before any network call.
- Read-type calls retry under `RetryPolicy`; mutation-type calls run once.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Literal, Optional, TypeVar

import requests
from pydantic import ValidationError

from trialscribe.internal_core.contracts import (
    ExtractResponse,
    FormatTranscriptResponse,
    KeyMoment,
    TranscribeResponse,
)
from trialscribe.pipeline.adapters import MomentShapeError, coerce_moments

logger = logging.getLogger(__name__)

T = TypeVar("T")

ServiceStatus = Literal["ok", "validation_failure", "transport_failure"]
QUOTA_CODE = "QUOTA_EXCEEDED"
MIN_SERVICE_TRANSCRIPT_CHARS = 10


@dataclass(frozen=True)
class ServiceResult(Generic[T]):
    status: ServiceStatus
    payload: Optional[T] = None
    status_code: Optional[int] = None
    code: Optional[str] = None
    message: str = ""
    body: Any = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def is_quota(self) -> bool:
        return self.status == "transport_failure" and (
            self.status_code == 429 or self.code == QUOTA_CODE
        )

    @classmethod
    def success(cls, payload: T, status_code: Optional[int] = 200) -> "ServiceResult[T]":
        return cls(status="ok", payload=payload, status_code=status_code)

    @classmethod
    def validation_failure(cls, message: str) -> "ServiceResult[T]":
        return cls(status="validation_failure", message=message)

    @classmethod
    def transport_failure(
        cls,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        body: Any = None,
    ) -> "ServiceResult[T]":
        return cls(
            status="transport_failure",
            message=message,
            status_code=status_code,
            code=code,
            body=body,
        )


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_sec: float = 1.0
    backoff_max_sec: float = 30.0
    retryable_4xx: frozenset[int] = frozenset({408, 429})

    def should_retry(self, attempt: int, status_code: Optional[int]) -> bool:
        if attempt >= self.max_attempts:
            return False
        if status_code is not None and 400 <= status_code < 500:
            return status_code in self.retryable_4xx
        return True

    def delay_sec(self, attempt: int) -> float:
        return min(self.backoff_base_sec * (2 ** (attempt - 1)), self.backoff_max_sec)


NO_RETRY = RetryPolicy(max_attempts=1)

# Schema failures on a 2xx body are final; retries skip them.
INVALID_RESPONSE = "INVALID_RESPONSE"


async def call_with_retry(
    fn: Callable[[], Awaitable[ServiceResult[T]]],
    policy: RetryPolicy,
    *,
    label: str,
) -> ServiceResult[T]:
    attempt = 0
    while True:
        attempt += 1
        result = await fn()
        if result.status != "transport_failure" or result.code == INVALID_RESPONSE:
            return result
        if not policy.should_retry(attempt, result.status_code):
            return result
        delay = policy.delay_sec(attempt)
        logger.warning(
            "retrying %s attempt=%d status=%s delay=%.2fs",
            label,
            attempt,
            result.status_code,
            delay,
        )
        if delay > 0:
            await asyncio.sleep(delay)


class TranscriptServices(ABC):
    """Boundary to the black-box transcript services."""

    @abstractmethod
    async def transcribe(
        self, audio_base64: str, mime_type: Optional[str] = None
    ) -> ServiceResult[TranscribeResponse]: ...

    @abstractmethod
    async def format_transcript(self, transcript: str) -> ServiceResult[FormatTranscriptResponse]: ...

    @abstractmethod
    async def extract(self, transcript: str) -> ServiceResult[ExtractResponse]: ...

    @abstractmethod
    async def key_moments(
        self, transcript: str, duration_sec: Optional[float] = None
    ) -> ServiceResult[list[KeyMoment]]: ...


def _parse_moments(data: Any) -> list[KeyMoment]:
    return coerce_moments(data)


class HttpTranscriptServices(TranscriptServices):
    def __init__(
        self,
        base_url: str,
        timeout_sec: float = 60.0,
        read_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = float(timeout_sec)
        self.read_policy = read_policy or RetryPolicy()
        self._session = session or requests.Session()

    def _post_sync(self, path: str, body: dict[str, Any], parse: Callable[[Any], T]) -> ServiceResult[T]:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.post(url, json=body, timeout=self.timeout_sec)
        except requests.exceptions.RequestException as exc:
            logger.error("service transport error path=%s error=%s", path, exc)
            return ServiceResult.transport_failure(str(exc))

        try:
            data = resp.json()
        except ValueError:
            data = None

        if not 200 <= resp.status_code < 300:
            message = None
            code = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("message")
                code = data.get("code")
            logger.warning("service call failed path=%s status=%d code=%s", path, resp.status_code, code)
            return ServiceResult.transport_failure(
                str(message or f"{path} failed with status {resp.status_code}"),
                status_code=resp.status_code,
                code=code,
                body=data if data is not None else resp.text,
            )

        try:
            payload = parse(data)
        except (ValidationError, MomentShapeError, TypeError, ValueError) as exc:
            logger.warning("malformed service response path=%s error=%s", path, exc)
            return ServiceResult.transport_failure(
                f"Malformed response from {path}: {exc}",
                status_code=resp.status_code,
                code=INVALID_RESPONSE,
                body=data,
            )
        return ServiceResult.success(payload, status_code=resp.status_code)

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        parse: Callable[[Any], T],
        policy: RetryPolicy,
    ) -> ServiceResult[T]:
        loop = asyncio.get_running_loop()

        async def _attempt() -> ServiceResult[T]:
            return await loop.run_in_executor(None, self._post_sync, path, body, parse)

        return await call_with_retry(_attempt, policy, label=path)

    async def transcribe(
        self, audio_base64: str, mime_type: Optional[str] = None
    ) -> ServiceResult[TranscribeResponse]:
        if not audio_base64:
            return ServiceResult.validation_failure("No audio captured.")
        body: dict[str, Any] = {"audioBase64": audio_base64}
        if mime_type:
            body["mimeType"] = mime_type
        return await self._post("/api/transcribe", body, TranscribeResponse.model_validate, NO_RETRY)

    async def format_transcript(self, transcript: str) -> ServiceResult[FormatTranscriptResponse]:
        if not (transcript or "").strip():
            return ServiceResult.validation_failure("Transcript is empty.")
        return await self._post(
            "/api/format-transcript",
            {"transcript": transcript},
            FormatTranscriptResponse.model_validate,
            NO_RETRY,
        )

    async def extract(self, transcript: str) -> ServiceResult[ExtractResponse]:
        if len(transcript or "") < MIN_SERVICE_TRANSCRIPT_CHARS:
            return ServiceResult.validation_failure(
                f"Transcript must be at least {MIN_SERVICE_TRANSCRIPT_CHARS} characters."
            )
        return await self._post(
            "/api/extract",
            {"transcript": transcript},
            ExtractResponse.model_validate,
            NO_RETRY,
        )

    async def key_moments(
        self, transcript: str, duration_sec: Optional[float] = None
    ) -> ServiceResult[list[KeyMoment]]:
        if len(transcript or "") < MIN_SERVICE_TRANSCRIPT_CHARS:
            return ServiceResult.validation_failure(
                f"Transcript must be at least {MIN_SERVICE_TRANSCRIPT_CHARS} characters."
            )
        body: dict[str, Any] = {"transcript": transcript}
        if duration_sec is not None and duration_sec > 0:
            body["durationSec"] = float(duration_sec)
        return await self._post("/api/key-moments", body, _parse_moments, self.read_policy)
