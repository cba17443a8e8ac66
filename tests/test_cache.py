import asyncio

from cache import ResponseCache, cache_key, invalidate_tasks, invalidate_users


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    c = ResponseCache(ttl_seconds=10, clock=clock)
    c.set("k", "v")
    assert c.get("k") == "v"
    clock.now = 10.5
    assert c.get("k") is None


def test_zero_ttl_disables_caching():
    c = ResponseCache(ttl_seconds=0)
    c.set("k", "v")
    assert c.get("k") is None


def test_get_or_compute_only_computes_on_miss():
    c = ResponseCache(ttl_seconds=60)
    calls = []

    async def compute():
        calls.append(1)
        return {"items": [1, 2]}

    async def scenario():
        first = await c.get_or_compute("k", compute)
        second = await c.get_or_compute("k", compute)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == {"items": [1, 2]}
    assert len(calls) == 1


def test_task_invalidation_is_scoped_to_the_owner():
    c = ResponseCache(ttl_seconds=60)
    c.set(cache_key("tasks:all", "*", 1, 10), "all")
    c.set(cache_key("tasks:user", 5, 1, 10), "five")
    c.set(cache_key("tasks:user", 50, 1, 10), "fifty")
    c.set(cache_key("users:all", "*", 1, 10), "users")

    invalidate_tasks(c, 5)
    assert c.get(cache_key("tasks:all", "*", 1, 10)) is None
    assert c.get(cache_key("tasks:user", 5, 1, 10)) is None
    assert c.get(cache_key("tasks:user", 50, 1, 10)) == "fifty"
    assert c.get(cache_key("users:all", "*", 1, 10)) == "users"

    invalidate_users(c)
    assert len(c) == 0


def test_expired_entries_are_swept_on_write():
    clock = FakeClock()
    c = ResponseCache(ttl_seconds=10, clock=clock)
    for page in range(1, 51):
        c.set(cache_key("tasks:user", 1, page, 10), page)
    assert len(c) == 50

    clock.now = 11
    c.set(cache_key("tasks:user", 1, 1, 10), "fresh")
    assert len(c) == 1


def test_entry_count_is_bounded():
    c = ResponseCache(ttl_seconds=60, max_entries=3)
    for key in "abcd":
        c.set(key, key)
    assert len(c) == 3
    assert c.get("a") is None
    assert [c.get(k) for k in "bcd"] == ["b", "c", "d"]
