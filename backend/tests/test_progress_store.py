from concurrent.futures import ThreadPoolExecutor

from app.schemas.generator import JobStatus, ProgressRecord
from app.services.progress_store import InMemoryProgressStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_put_then_get_returns_record(progress_store):
    record = ProgressRecord(progress=5, message="Starting genetic algorithm...", status=JobStatus.running)

    progress_store.put("job-1", record)

    assert progress_store.get("job-1") == record
    assert progress_store.get("job-2") is None


def test_record_expires_after_ttl():
    clock = FakeClock()
    store = InMemoryProgressStore(default_ttl_seconds=600, clock=clock)
    store.put("job-1", ProgressRecord(progress=50, status=JobStatus.running))

    clock.now += 599
    assert store.get("job-1") is not None
    clock.now += 1
    assert store.get("job-1") is None


def test_explicit_ttl_overrides_default():
    clock = FakeClock()
    store = InMemoryProgressStore(default_ttl_seconds=600, clock=clock)
    store.put("job-1", ProgressRecord(), ttl_seconds=5)

    clock.now += 5

    assert store.get("job-1") is None


def test_put_replaces_whole_record(progress_store):
    progress_store.put("job-1", ProgressRecord(progress=40, message="Generation 4/10", status=JobStatus.running))
    final = ProgressRecord(progress=100, message="Complete", status=JobStatus.completed, schedule_id="s-1")

    progress_store.put("job-1", final)

    stored = progress_store.get("job-1")
    assert stored == final
    assert stored.is_terminal


def test_purge_expired_drops_only_stale_records():
    clock = FakeClock()
    store = InMemoryProgressStore(default_ttl_seconds=10, clock=clock)
    store.put("old", ProgressRecord())
    clock.now += 5
    store.put("fresh", ProgressRecord())
    clock.now += 6

    assert store.purge_expired() == 1
    assert store.get("fresh") is not None


def test_concurrent_writers_never_leave_partial_records(progress_store):
    def write(index):
        record = ProgressRecord(progress=index % 100, message=f"update {index}", status=JobStatus.running)
        progress_store.put("job-1", record)
        return record

    with ThreadPoolExecutor(max_workers=8) as pool:
        written = list(pool.map(write, range(200)))

    stored = progress_store.get("job-1")
    assert stored in written
    index = int(stored.message.split()[-1])
    assert stored.progress == index % 100
