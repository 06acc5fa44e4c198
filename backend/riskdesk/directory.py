"""User directory lookups and block-status enrichment of risk profiles."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from threading import Lock
from typing import Any, Iterable, Optional, Protocol

import httpx
from pydantic import ValidationError

from .config import DIRECTORY_TIMEOUT, DIRECTORY_TOKEN, DIRECTORY_URL
from .models import ActorRiskProfile, UserRecord

log = logging.getLogger(__name__)

SUSPENDED = "SUSPENDED"


class DirectoryUnavailable(RuntimeError):
    """The user directory could not be reached or returned garbage."""


def read_users(users: Iterable[Any]) -> list[UserRecord]:
    """Validate a caller-supplied user list, dropping rows that don't parse."""
    records: list[UserRecord] = []
    for user in users:
        if isinstance(user, UserRecord):
            records.append(user)
            continue
        try:
            records.append(UserRecord.model_validate(user))
        except ValidationError:
            log.debug(f"Ignoring unreadable directory entry {user!r}")
    return records


class UserDirectory(Protocol):
    def lookup(self, actor_ids: list[str]) -> dict[str, UserRecord]:
        ...


class StaticUserDirectory:
    """Directory backed by an already-fetched list of users."""

    def __init__(self, users: Iterable[Any]) -> None:
        self._users = {user.id: user for user in read_users(users)}

    def lookup(self, actor_ids: list[str]) -> dict[str, UserRecord]:
        return {aid: self._users[aid] for aid in actor_ids if aid in self._users}


class HttpUserDirectory:
    """Directory read from the admin users endpoint of the backend API.

    The endpoint has no id filter, so the full list is fetched and matched
    locally.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = DIRECTORY_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def lookup(self, actor_ids: list[str]) -> dict[str, UserRecord]:
        try:
            response = self._client.get("/admin/users")
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise DirectoryUnavailable(f"User directory request failed: {exc}") from exc

        if isinstance(body, dict):
            rows = body.get("data") or body.get("users") or []
        else:
            rows = body
        if not isinstance(rows, list):
            raise DirectoryUnavailable("User directory returned an unexpected payload")

        wanted = set(actor_ids)
        found: dict[str, UserRecord] = {}
        for row in rows:
            if not isinstance(row, dict) or row.get("id") not in wanted:
                continue
            try:
                found[row["id"]] = UserRecord.model_validate(row)
            except ValidationError:
                log.debug(f"Ignoring unreadable directory entry {row.get('id')!r}")
        return found

    def close(self) -> None:
        self._client.close()


_directory_client: Optional[HttpUserDirectory] = None
_directory_lock = Lock()

# Shared by every enrichment call; never shut down per lookup.
_lookup_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="directory")


def directory_from_env() -> Optional[HttpUserDirectory]:
    """Process-wide HTTP directory, or None when no URL is configured."""
    global _directory_client
    if not DIRECTORY_URL:
        return None
    with _directory_lock:
        if _directory_client is None:
            _directory_client = HttpUserDirectory(DIRECTORY_URL, token=DIRECTORY_TOKEN)
    return _directory_client


@dataclass
class EnrichmentOutcome:
    profiles: list[ActorRiskProfile]
    warning: Optional[str] = None


def _checked_lookup(directory: UserDirectory, actor_ids: list[str]) -> dict[str, UserRecord]:
    users = directory.lookup(actor_ids)
    if not isinstance(users, Mapping):
        raise DirectoryUnavailable(
            f"User directory returned {type(users).__name__} instead of a mapping"
        )
    checked: dict[str, UserRecord] = {}
    for actor_id, user in users.items():
        if isinstance(user, UserRecord):
            checked[actor_id] = user
            continue
        try:
            checked[actor_id] = UserRecord.model_validate(user)
        except ValidationError as exc:
            raise DirectoryUnavailable(f"Unreadable directory entry for {actor_id!r}") from exc
    return checked


def enrich_profiles(
    profiles: list[ActorRiskProfile],
    directory: UserDirectory,
    timeout: float = DIRECTORY_TIMEOUT,
) -> EnrichmentOutcome:
    """Annotate profiles with block status from the directory.

    The lookup is bounded by ``timeout`` seconds. If it fails, times out or
    returns something unreadable, profiles come back unblocked with a warning
    instead of an error.
    """
    if not profiles:
        return EnrichmentOutcome(profiles=profiles)

    actor_ids = [p.actor_id for p in profiles]
    future = _lookup_pool.submit(_checked_lookup, directory, actor_ids)
    try:
        users = future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        warning = f"User directory lookup timed out after {timeout:g}s; block status unknown"
        log.warning(warning)
        return EnrichmentOutcome(profiles=_unblocked(profiles), warning=warning)
    except Exception as exc:
        warning = f"User directory unavailable; block status unknown: {exc}"
        log.warning(warning)
        return EnrichmentOutcome(profiles=_unblocked(profiles), warning=warning)

    for profile in profiles:
        user = users.get(profile.actor_id)
        if user is None:
            profile.is_blocked = False
            profile.blocked_at = None
            continue
        profile.is_blocked = user.status == SUSPENDED
        profile.blocked_at = user.block_timestamp

    log.info(f"Enriched {len(profiles)} profile(s), {len(users)} found in directory")
    return EnrichmentOutcome(profiles=profiles)


def _unblocked(profiles: list[ActorRiskProfile]) -> list[ActorRiskProfile]:
    for profile in profiles:
        profile.is_blocked = False
        profile.blocked_at = None
    return profiles
