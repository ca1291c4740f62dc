"""Tests for per-variant locking."""

import threading
import time

import pytest

from catalog_sync.services.locks import VariantLockRegistry
from catalog_sync.utils.exceptions import LockTimeoutError, PersistenceError


class TestVariantLockRegistry:
    """Tests for VariantLockRegistry."""

    def test_hold_returns_sorted_unique_keys(self):
        """Test keys are taken once each, in sorted order."""
        registry = VariantLockRegistry(timeout=1)

        with registry.hold(["variant:2", "variant:1", "variant:2"]) as keys:
            assert keys == ["variant:1", "variant:2"]
            assert registry.active_keys() == ["variant:1", "variant:2"]

        assert registry.active_keys() == []

    def test_timeout_is_persistence_failure(self):
        """Test a lock that cannot be had in time fails the unit of work."""
        registry = VariantLockRegistry(timeout=0.05)
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(["variant:1"]):
                acquired.set()
                release.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(2)
        try:
            with pytest.raises(LockTimeoutError) as exc_info:
                with registry.hold(["variant:0", "variant:1"]):
                    pass
            assert isinstance(exc_info.value, PersistenceError)
        finally:
            release.set()
            thread.join()

        # The partially acquired key was released
        assert registry.active_keys() == []

    def test_different_variants_do_not_block(self):
        """Test disjoint key sets proceed in parallel."""
        registry = VariantLockRegistry(timeout=0.5)
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(["variant:1"]):
                acquired.set()
                release.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        acquired.wait(2)
        try:
            with registry.hold(["variant:2"]) as keys:
                assert keys == ["variant:2"]
        finally:
            release.set()
            thread.join()

    def test_same_variant_serializes(self):
        """Test two holders of the same key never overlap."""
        registry = VariantLockRegistry(timeout=5)
        inside = []
        overlaps = []

        def worker():
            with registry.hold(["inventory_item:3001"]):
                if inside:
                    overlaps.append(True)
                inside.append(1)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []
        assert registry.active_keys() == []

    def test_released_on_exception(self):
        """Test locks are released when the body raises."""
        registry = VariantLockRegistry(timeout=0.1)

        with pytest.raises(ValueError):
            with registry.hold(["variant:1"]):
                raise ValueError("boom")

        with registry.hold(["variant:1"]):
            pass
