"""
Scheduled batch submission of pending reservations.

The host only accepts bookings inside a fixed look-ahead window, so every run
picks the pending instances dated exactly ``lead_days`` after the local
today. Instances are grouped by owner so each owner logs in once; one owner's
failure never stops the others, and one instance's failure never stops the
rest of its owner's instances.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from datetime import datetime
from typing import Callable

import httpx

from studyroom.booking import BookingRequest, book_instance
from studyroom.bridge import (
    BridgeError,
    InvalidCredentials,
    NetworkError,
    SessionArtifacts,
    UpstreamSessionError,
    create_http_client,
    login_to_library,
    login_to_portal,
)
from studyroom.config import BridgeSettings
from studyroom.crypto import SecretUnwrapper
from studyroom.dates import batch_target_date, local_today
from studyroom.models import (
    BatchSummary,
    InstanceOutcome,
    ReservationInstance,
    ReservationStatus,
)
from studyroom.store import ReservationStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.AsyncClient]

MISSING_CREDENTIAL = "No stored credential for this owner"
DECRYPTION_FAILED = "Stored credential could not be decrypted"
PORTAL_REJECTED = "Portal login rejected; the password may have changed"
LIBRARY_LOGIN_FAILED = "Library login failed"
PORTAL_UNREACHABLE = "Portal login request failed"
LIBRARY_UNREACHABLE = "Library login request failed"


def authorize_trigger(authorization: str | None, secret: str) -> bool:
    """
    Check the static bearer credential of a scheduled trigger.

    An unset secret never authorizes anything.
    """
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {secret}".encode())


def group_by_owner(
    instances: list[ReservationInstance],
) -> dict[str, list[ReservationInstance]]:
    """Group instances by owner, keeping first-seen owner order and instance order."""
    groups: dict[str, list[ReservationInstance]] = {}
    for instance in instances:
        groups.setdefault(instance.owner_id, []).append(instance)
    return groups


def mark_failed(
    store: ReservationStore, instance: ReservationInstance, message: str
) -> InstanceOutcome:
    store.update_status(instance.id, ReservationStatus.FAILED, error_message=message)
    return InstanceOutcome(
        reservation_id=instance.id,
        reservation_date=instance.reservation_date,
        status=ReservationStatus.FAILED,
        message=message,
    )


def mark_success(
    store: ReservationStore,
    instance: ReservationInstance,
    message: str,
    booking_id: str | None,
) -> InstanceOutcome:
    store.update_status(instance.id, ReservationStatus.SUCCESS, booking_id=booking_id)
    return InstanceOutcome(
        reservation_id=instance.id,
        reservation_date=instance.reservation_date,
        status=ReservationStatus.SUCCESS,
        message=message,
        booking_id=booking_id,
    )


async def submit_instances(
    client: httpx.AsyncClient,
    session: SessionArtifacts,
    store: ReservationStore,
    instances: list[ReservationInstance],
    settings: BridgeSettings,
) -> list[InstanceOutcome]:
    """
    Submit an owner's instances one at a time against the same session.

    Args:
        client: HTTP client bound to this owner
        session: The owner's session artifacts
        store: Record store to write outcomes to
        instances: Instances in processing order
        settings: Host endpoints

    Returns:
        One outcome per submitted instance, in order. Instances that left
        ``pending`` since they were selected are skipped.
    """
    outcomes = []
    for instance in instances:
        current = store.get_instance(instance.id)
        if current is None or current.status is not ReservationStatus.PENDING:
            logger.info(f"Reservation {instance.id} is no longer pending, skipping")
            continue

        try:
            result = await book_instance(
                client, session, BookingRequest.from_instance(instance), settings
            )
        except BridgeError as e:
            logger.warning(f"Reservation {instance.id} failed: {e}")
            outcomes.append(mark_failed(store, instance, str(e)))
            continue
        except Exception as e:
            logger.exception(f"Unexpected error for reservation {instance.id}: {e}")
            outcomes.append(mark_failed(store, instance, str(e) or e.__class__.__name__))
            continue

        if result.success:
            logger.info(
                f"Reservation {instance.id} booked (booking id: {result.booking_id or 'unresolved'})"
            )
            outcomes.append(
                mark_success(store, instance, result.message, result.booking_id)
            )
        else:
            outcomes.append(mark_failed(store, instance, result.message))

    return outcomes


async def process_owner(
    owner_id: str,
    instances: list[ReservationInstance],
    store: ReservationStore,
    unwrap_secret: SecretUnwrapper,
    settings: BridgeSettings,
    client_factory: ClientFactory,
) -> list[InstanceOutcome]:
    """
    Authenticate one owner and submit all of their due instances.

    Authentication failures mark every instance of the owner as failed with a
    message naming the cause; they are never raised to the caller.
    """
    encrypted = store.get_credential(owner_id)
    if not encrypted:
        logger.warning(f"No credential stored for {owner_id}")
        return [mark_failed(store, i, MISSING_CREDENTIAL) for i in instances]

    try:
        secret = unwrap_secret(encrypted)
    except Exception as e:
        logger.warning(f"Credential decryption failed for {owner_id}: {e.__class__.__name__}")
        return [mark_failed(store, i, DECRYPTION_FAILED) for i in instances]

    async with client_factory() as client:
        try:
            portal_token = await login_to_portal(client, owner_id, secret, settings)
        except InvalidCredentials:
            return [mark_failed(store, i, PORTAL_REJECTED) for i in instances]
        except NetworkError as e:
            logger.warning(f"Portal login for {owner_id} failed: {e}")
            return [mark_failed(store, i, PORTAL_UNREACHABLE) for i in instances]

        try:
            session = await login_to_library(client, portal_token, settings)
        except UpstreamSessionError:
            return [mark_failed(store, i, LIBRARY_LOGIN_FAILED) for i in instances]
        except NetworkError as e:
            logger.warning(f"Library login for {owner_id} failed: {e}")
            return [mark_failed(store, i, LIBRARY_UNREACHABLE) for i in instances]

        return await submit_instances(client, session, store, instances, settings)


async def run_batch(
    store: ReservationStore,
    unwrap_secret: SecretUnwrapper,
    settings: BridgeSettings | None = None,
    now: datetime | None = None,
    client_factory: ClientFactory = create_http_client,
) -> BatchSummary:
    """
    Submit every pending reservation whose booking window opens today.

    Owners are processed concurrently up to ``max_concurrent_owners``; each
    owner's instances are processed sequentially in a stable order.

    Args:
        store: Record store
        unwrap_secret: Decrypts a stored credential
        settings: Host endpoints and batch settings
        now: Current time (defaults to the real clock)
        client_factory: Builds one HTTP client per owner

    Returns:
        Batch summary with one outcome per selected instance
    """
    settings = settings or BridgeSettings()
    target = batch_target_date(local_today(settings.timezone, now), settings.lead_days)
    due = store.list_due(target)
    summary = BatchSummary(target_date=target)

    if not due:
        logger.info(f"No pending reservations for {target}")
        return summary

    groups = group_by_owner(due)
    logger.info(f"Processing {len(due)} reservations for {len(groups)} owners on {target}")

    semaphore = asyncio.Semaphore(max(1, settings.max_concurrent_owners))

    async def run_owner(owner_id: str, instances: list[ReservationInstance]):
        async with semaphore:
            return await process_owner(
                owner_id, instances, store, unwrap_secret, settings, client_factory
            )

    results = await asyncio.gather(
        *(run_owner(owner_id, instances) for owner_id, instances in groups.items()),
        return_exceptions=True,
    )

    for (owner_id, instances), result in zip(groups.items(), results):
        if isinstance(result, Exception):
            logger.error(f"Owner {owner_id} aborted unexpectedly: {result}")
            summary.results.extend(
                mark_failed(store, i, str(result) or result.__class__.__name__)
                for i in instances
                if store.get_instance(i.id).status is ReservationStatus.PENDING
            )
        else:
            summary.results.extend(result)

    log_batch_summary(summary)
    return summary


def log_batch_summary(summary: BatchSummary) -> None:
    logger.info("Batch Summary:")
    logger.info(f"  Target date: {summary.target_date}")
    logger.info(f"  Successful: {summary.success}")
    logger.info(f"  Failed: {summary.failed}")

    for outcome in summary.results:
        if outcome.status is ReservationStatus.FAILED:
            logger.warning(f"  Failed reservation {outcome.reservation_id}: {outcome.message}")
