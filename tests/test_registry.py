"""Tests for the device registry."""

import pytest

from keyrelay.errors import InvalidIdentity
from keyrelay.registry import DeviceRegistry


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return DeviceRegistry(clock=clock)


class TestRegister:
    """Tests for register()."""

    def test_register_binds_connection(self, registry):
        conn = object()

        displaced = registry.register("AAAA111111", conn)

        assert displaced is None
        assert registry.lookup("AAAA111111") is conn
        assert "AAAA111111" in registry
        assert len(registry) == 1

    def test_register_records_timestamp(self, registry, clock):
        registry.register("AAAA111111", object())

        assert registry.get("AAAA111111").last_heartbeat == clock.now

    def test_register_returns_displaced_entry(self, registry):
        old, new = object(), object()
        registry.register("AAAA111111", old)

        displaced = registry.register("AAAA111111", new)

        assert displaced.connection is old
        assert registry.lookup("AAAA111111") is new
        assert len(registry) == 1

    def test_register_same_connection_not_displaced(self, registry):
        conn = object()
        registry.register("AAAA111111", conn)

        assert registry.register("AAAA111111", conn) is None

    @pytest.mark.parametrize("key", ["", None, "aaaa111111", "AAAA11111", "AAAA-11111"])
    def test_register_rejects_bad_keys(self, registry, key):
        with pytest.raises(InvalidIdentity):
            registry.register(key, object())
        assert len(registry) == 0


class TestTouchLookupRemove:
    """Tests for touch(), lookup() and remove()."""

    def test_touch_updates_heartbeat(self, registry, clock):
        registry.register("AAAA111111", object())
        clock.now += 15

        registry.touch("AAAA111111")

        assert registry.get("AAAA111111").last_heartbeat == clock.now

    def test_touch_unknown_is_noop(self, registry):
        registry.touch("ZZZZ999999")

        assert len(registry) == 0

    def test_lookup_unknown(self, registry):
        assert registry.lookup("ZZZZ999999") is None

    def test_remove_is_idempotent(self, registry):
        registry.register("AAAA111111", object())

        assert registry.remove("AAAA111111") is not None
        assert registry.remove("AAAA111111") is None
        assert "AAAA111111" not in registry


class TestStale:
    """Tests for stale()."""

    def test_stale_by_heartbeat_age(self, registry, clock):
        registry.register("AAAA111111", object())
        clock.now += 50
        registry.register("BBBB222222", object())
        clock.now += 20

        assert registry.stale(60.0) == ["AAAA111111"]

    def test_touched_device_not_stale(self, registry, clock):
        registry.register("AAAA111111", object())
        clock.now += 50
        registry.touch("AAAA111111")
        clock.now += 20

        assert registry.stale(60.0) == []
