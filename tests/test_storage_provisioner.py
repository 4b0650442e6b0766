"""Tests for StorageProvisioner: strategy fallback, idempotency, locking, policies."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from genbi.services.object_store import StorageError
from genbi.services.storage_provisioner import (
    DirectBucketStrategy,
    ServerSideBucketStrategy,
    StorageProvisioner,
    default_strategies,
)

BUCKETS = ["datasets", "secure", "cold_storage"]


def _store(existing=None):
    store = AsyncMock()
    store.list_buckets = AsyncMock(return_value=list(existing or []))
    store.create_bucket = AsyncMock(return_value=None)
    store.provision_bucket = AsyncMock(return_value=None)
    store.attach_policies = AsyncMock(return_value=None)
    return store


def _provisioner(store, required=("datasets",)):
    return StorageProvisioner(
        [DirectBucketStrategy(store), ServerSideBucketStrategy(store)],
        admin=store,
        buckets=list(BUCKETS),
        required=list(required),
    )


class TestEnsureBuckets:
    @pytest.mark.asyncio
    async def test_creates_missing_buckets(self):
        store = _store(existing=["secure"])
        assert await _provisioner(store).ensure_buckets() is True

        created = [c.args[0] for c in store.create_bucket.await_args_list]
        assert created == ["datasets", "cold_storage"]
        for call in store.create_bucket.await_args_list:
            assert call.kwargs == {"public": True}

    @pytest.mark.asyncio
    async def test_twice_in_sequence_creates_once(self):
        store = _store()
        provisioner = _provisioner(store)

        assert await provisioner.ensure_buckets() is True
        assert await provisioner.ensure_buckets() is True

        assert store.create_bucket.await_count == len(BUCKETS)
        assert store.list_buckets.await_count == len(BUCKETS)

    @pytest.mark.asyncio
    async def test_force_reruns_strategies(self):
        store = _store()
        provisioner = _provisioner(store)
        await provisioner.ensure_buckets()

        store.list_buckets.return_value = list(BUCKETS)
        assert await provisioner.ensure_buckets(force=True) is True

        assert store.list_buckets.await_count == 2 * len(BUCKETS)
        # Second run found them all, so nothing new was created
        assert store.create_bucket.await_count == len(BUCKETS)

    @pytest.mark.asyncio
    async def test_listing_failure_still_attempts_creation(self):
        store = _store()
        store.list_buckets.side_effect = StorageError("permission denied for listing", 403)

        assert await _provisioner(store).ensure_buckets() is True
        assert store.create_bucket.await_count == len(BUCKETS)
        store.provision_bucket.assert_not_called()

    @pytest.mark.asyncio
    async def test_conflict_counts_as_success(self):
        store = _store()
        store.create_bucket.side_effect = StorageError("The resource already exists", 409)

        provisioner = _provisioner(store)
        assert await provisioner.ensure_buckets() is True
        assert provisioner.last_report["datasets"].status == "exists"
        store.provision_bucket.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_to_server_side_strategy(self):
        store = _store()
        store.create_bucket.side_effect = StorageError("new row violates row-level security policy", 403)

        provisioner = _provisioner(store)
        assert await provisioner.ensure_buckets() is True
        assert provisioner.last_report["datasets"].strategy == "server-side"
        assert store.provision_bucket.await_count == len(BUCKETS)

    @pytest.mark.asyncio
    async def test_fails_only_when_required_bucket_fails(self):
        store = _store()
        store.create_bucket.side_effect = StorageError("boom", 500)
        store.provision_bucket.side_effect = StorageError("boom", 500)

        provisioner = _provisioner(store)
        assert await provisioner.ensure_buckets() is False
        assert provisioner.has_failed("datasets")
        assert not provisioner.is_ready("datasets")
        assert len(provisioner.last_report["datasets"].errors) == 2

    @pytest.mark.asyncio
    async def test_optional_bucket_failure_is_not_fatal(self):
        store = _store()

        async def _create(name, public=True):
            if name == "cold_storage":
                raise StorageError("quota exceeded", 500)

        store.create_bucket.side_effect = _create
        store.provision_bucket.side_effect = StorageError("function unavailable", 503)

        provisioner = _provisioner(store)
        assert await provisioner.ensure_buckets() is True
        assert provisioner.has_failed("cold_storage")
        assert provisioner.is_ready("datasets")

    @pytest.mark.asyncio
    async def test_policy_failure_is_best_effort(self):
        store = _store()
        store.attach_policies.side_effect = StorageError("rpc missing", 404)

        provisioner = _provisioner(store)
        assert await provisioner.ensure_buckets() is True
        assert provisioner.last_report["datasets"].policies_attached is False

    @pytest.mark.asyncio
    async def test_concurrent_callers_are_serialised(self):
        store = _store()
        in_flight = 0
        peak = 0

        async def _create(name, public=True):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1

        store.create_bucket.side_effect = _create
        provisioner = _provisioner(store)

        results = await asyncio.gather(*(provisioner.ensure_buckets() for _ in range(5)))

        assert results == [True] * 5
        assert peak == 1
        assert store.create_bucket.await_count == len(BUCKETS)


class TestWithLocalStore:
    @pytest.mark.asyncio
    async def test_local_store_buckets_become_directories(self, local_store):
        provisioner = StorageProvisioner(default_strategies(local_store), admin=local_store, buckets=list(BUCKETS))
        assert await provisioner.ensure_buckets() is True
        assert sorted(await local_store.list_buckets()) == sorted(BUCKETS)

    def test_report_lists_unprovisioned_buckets(self, local_store):
        provisioner = StorageProvisioner(default_strategies(local_store), buckets=list(BUCKETS))
        report = provisioner.report()
        assert report["datasets"] == {"bucket": "datasets", "ok": None}


def test_requires_a_strategy():
    with pytest.raises(ValueError):
        StorageProvisioner([])
