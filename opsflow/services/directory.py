"""Organizational role directory adapters.

The chain builder turns an approver role into the user currently holding
it. The directory is an external collaborator; adapters translate its
failures into DependencyError so the engine never half-builds a chain.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional
from urllib.parse import quote

import httpx
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from opsflow.core.errors import DependencyError

logger = logging.getLogger(__name__)


class RoleDirectory(ABC):
    """Resolves an approver role to its current holder's user id."""

    @abstractmethod
    def resolve_role(self, role: str) -> Optional[str]:
        """Return the holder of ``role``, or None if the role is vacant."""


class StaticRoleDirectory(RoleDirectory):
    """Directory backed by a fixed role -> user mapping."""

    def __init__(self, assignments: Mapping[str, str]):
        self.assignments: Dict[str, str] = dict(assignments)

    def resolve_role(self, role: str) -> Optional[str]:
        return self.assignments.get(role)

    def assign(self, role: str, user_id: str) -> None:
        self.assignments[role] = user_id


class HttpRoleDirectory(RoleDirectory):
    """
    Directory served by an HTTP endpoint.

    ``GET {base_url}/roles/{role}/holder`` must answer ``{"user_id": ...}``;
    404 means the role is vacant. Transport errors, malformed bodies and
    5xx responses are retried with exponential backoff, ``max_retries``
    times, before raising DependencyError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        max_retries: int = 2,
        retry_backoff: float = 0.2,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._client = client or httpx.Client(timeout=timeout)

    def resolve_role(self, role: str) -> Optional[str]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_backoff),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self._fetch_holder, role)
        except httpx.HTTPStatusError as e:
            if e.response.status_code < 500:
                raise DependencyError(
                    f"Role directory rejected lookup of {role!r}: HTTP {e.response.status_code}",
                    role=role,
                ) from e
            raise DependencyError(f"Role directory unavailable for {role!r}", role=role) from e
        except (httpx.TransportError, ValueError) as e:
            raise DependencyError(f"Role directory unavailable for {role!r}", role=role) from e

    def _fetch_holder(self, role: str) -> Optional[str]:
        response = self._client.get(f"{self.base_url}/roles/{quote(role, safe='')}/holder")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        user_id = response.json().get("user_id")
        return str(user_id) if user_id is not None else None

    def close(self) -> None:
        self._client.close()


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, (httpx.TransportError, ValueError))
