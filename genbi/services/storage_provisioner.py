"""
Storage Provisioner
===================

Makes sure the storage buckets exist before anything is uploaded.

Each bucket is tried against an ordered list of strategies until one
succeeds. A bucket that already exists (including one created by a racing
process, reported as a conflict) counts as success. Access policies are
attached afterwards on a best-effort basis.

Results are remembered, so repeated calls are cheap; force=True re-runs
the strategies, which the upload fallback path relies on.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Protocol, Sequence

from genbi.config import settings
from genbi.services.object_store import ObjectStore, StorageAdmin, StorageError

logger = logging.getLogger(__name__)


class BucketStrategy(Protocol):
    name: str

    async def ensure(self, bucket: str) -> str:
        """Make the bucket exist. Returns "exists" or "created"; raises on failure."""


class DirectBucketStrategy:
    """List buckets, create the missing one through the object store API."""

    name = "direct"

    def __init__(self, store: ObjectStore):
        self.store = store

    async def ensure(self, bucket: str) -> str:
        existing: Optional[List[str]] = None
        try:
            existing = await self.store.list_buckets()
        except Exception as e:
            # Listing often needs more privilege than creating; try anyway
            logger.warning(
                "bucket_list_failed",
                extra={"storage.bucket": bucket, "error.message": str(e)},
            )

        if existing is not None and bucket in existing:
            return "exists"

        try:
            await self.store.create_bucket(bucket, public=True)
        except StorageError as e:
            if e.is_conflict:
                return "exists"
            raise
        return "created"


class ServerSideBucketStrategy:
    """Ask the storage-manager function to create the bucket with service privileges."""

    name = "server-side"

    def __init__(self, admin: StorageAdmin):
        self.admin = admin

    async def ensure(self, bucket: str) -> str:
        try:
            await self.admin.provision_bucket(bucket, public=True)
        except StorageError as e:
            if e.is_conflict:
                return "exists"
            raise
        return "created"


@dataclass
class BucketOutcome:
    bucket: str
    ok: bool
    required: bool
    strategy: Optional[str] = None
    status: Optional[str] = None      # exists | created
    policies_attached: bool = False
    errors: Optional[List[str]] = None


class StorageProvisioner:
    """Idempotent, lock-protected bucket provisioning."""

    def __init__(
        self,
        strategies: Sequence[BucketStrategy],
        admin: Optional[StorageAdmin] = None,
        buckets: Optional[List[str]] = None,
        required: Optional[List[str]] = None,
    ):
        if not strategies:
            raise ValueError("StorageProvisioner needs at least one strategy")
        self.strategies = list(strategies)
        self.admin = admin
        self.buckets = buckets or settings.required_buckets()
        self.required = set(required if required is not None else [settings.hot_bucket])
        self.last_report: Dict[str, BucketOutcome] = {}
        self._ready: set = set()
        self._lock = asyncio.Lock()

    def is_ready(self, bucket: str) -> bool:
        return bucket in self._ready

    def has_failed(self, bucket: str) -> bool:
        outcome = self.last_report.get(bucket)
        return outcome is not None and not outcome.ok

    async def ensure_buckets(self, force: bool = False) -> bool:
        """Ensure every configured bucket exists.

        Returns False only when a required bucket could not be made to
        exist by any strategy.
        """
        async with self._lock:
            for bucket in self.buckets:
                if not force and bucket in self._ready:
                    continue
                outcome = await self._ensure_one(bucket)
                self.last_report[bucket] = outcome
                if outcome.ok:
                    self._ready.add(bucket)
                else:
                    self._ready.discard(bucket)

            missing = sorted(b for b in self.required if b not in self._ready)
            if missing:
                logger.error("storage_provisioning_failed", extra={"storage.missing": missing})
                return False
            return True

    async def _ensure_one(self, bucket: str) -> BucketOutcome:
        outcome = BucketOutcome(bucket=bucket, ok=False, required=bucket in self.required, errors=[])

        for strategy in self.strategies:
            try:
                outcome.status = await strategy.ensure(bucket)
            except Exception as e:
                outcome.errors.append(f"{strategy.name}: {e}")
                logger.warning(
                    "bucket_strategy_failed",
                    extra={"storage.bucket": bucket, "storage.strategy": strategy.name, "error.message": str(e)},
                )
                continue
            outcome.ok = True
            outcome.strategy = strategy.name
            break

        if not outcome.ok:
            return outcome

        logger.info(
            "bucket_ready",
            extra={"storage.bucket": bucket, "storage.strategy": outcome.strategy, "storage.status": outcome.status},
        )

        if self.admin is not None:
            try:
                await self.admin.attach_policies(bucket)
                outcome.policies_attached = True
            except Exception as e:
                logger.warning(
                    "bucket_policy_attach_failed",
                    extra={"storage.bucket": bucket, "error.message": str(e)},
                )
        return outcome

    def report(self) -> Dict[str, dict]:
        return {
            bucket: asdict(self.last_report[bucket]) if bucket in self.last_report else {"bucket": bucket, "ok": None}
            for bucket in self.buckets
        }


def default_strategies(store) -> List[BucketStrategy]:
    """Direct API first, then the server-side function when the store offers it."""
    strategies: List[BucketStrategy] = [DirectBucketStrategy(store)]
    if hasattr(store, "provision_bucket"):
        strategies.append(ServerSideBucketStrategy(store))
    return strategies
