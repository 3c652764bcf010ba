"""
Run Leases

Time-bounded exclusivity for pipeline runs. A lease row keyed by invoice id
is written transactionally before a run starts; a second run for the same
invoice is refused while the lease is live. Expired leases (a crashed
worker) are reclaimed by the next run.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from invex.db.connection import Database
from invex.db.models import RunLease, utcnow
from invex.exceptions import DuplicateRunError

logger = logging.getLogger(__name__)

DEFAULT_LEASE_TTL = 3600  # seconds


class RunLeaseManager:
    """
    Acquires and releases run leases.

    Usage:
        leases = RunLeaseManager(db, ttl=3600)
        leases.acquire(invoice_id, owner)
        try:
            ...
        finally:
            leases.release(invoice_id, owner)
    """

    def __init__(self, db: Database, ttl: float = DEFAULT_LEASE_TTL):
        self.db = db
        self.ttl = ttl

    def acquire(self, invoice_id: int, owner: str, now: Optional[datetime] = None) -> RunLease:
        """
        Take the lease for ``invoice_id``.

        Raises:
            DuplicateRunError: If another owner holds an unexpired lease
        """
        now = now or utcnow()
        expires_at = now + timedelta(seconds=self.ttl)

        try:
            with self.db.transaction() as session:
                lease = session.get(RunLease, invoice_id)

                if lease is not None and not lease.is_expired(now):
                    raise DuplicateRunError(
                        f"Invoice {invoice_id} is already being processed "
                        f"(lease held by {lease.owner} until {lease.expires_at.isoformat()})",
                        invoice_id=invoice_id
                    )

                if lease is not None:
                    previous_owner = lease.owner
                    reclaimed = session.query(RunLease).filter(
                        RunLease.invoice_id == invoice_id,
                        RunLease.owner == previous_owner,
                        RunLease.expires_at <= now
                    ).update(
                        {
                            RunLease.owner: owner,
                            RunLease.acquired_at: now,
                            RunLease.expires_at: expires_at
                        },
                        synchronize_session=False
                    )
                    if not reclaimed:
                        # Another run took the lease after it was read
                        raise DuplicateRunError(
                            f"Invoice {invoice_id} is already being processed",
                            invoice_id=invoice_id
                        )
                    logger.warning(
                        f"Reclaimed expired lease for invoice {invoice_id} from {previous_owner}"
                    )
                    session.expunge(lease)

                new_lease = RunLease(
                    invoice_id=invoice_id,
                    owner=owner,
                    acquired_at=now,
                    expires_at=expires_at
                )
                if lease is None:
                    session.add(new_lease)
                lease = new_lease

        except IntegrityError as e:
            # Lost the insert race to a concurrent run
            raise DuplicateRunError(
                f"Invoice {invoice_id} is already being processed", invoice_id=invoice_id
            ) from e

        logger.debug(f"Lease acquired for invoice {invoice_id} by {owner}")
        return lease

    def release(self, invoice_id: int, owner: str) -> bool:
        """
        Release the lease if ``owner`` still holds it.

        Returns:
            True if a lease row was removed
        """
        with self.db.transaction() as session:
            lease = session.get(RunLease, invoice_id)
            if lease is None or lease.owner != owner:
                return False
            session.delete(lease)

        logger.debug(f"Lease released for invoice {invoice_id} by {owner}")
        return True

    def is_held(self, invoice_id: int, now: Optional[datetime] = None) -> bool:
        """Whether a live lease exists for the invoice"""
        with self.db.session() as session:
            lease = session.get(RunLease, invoice_id)
            return lease is not None and not lease.is_expired(now)
