import tempfile
from pathlib import Path

import anyio
from hypothesis import given, settings, strategies as st

from zminit.supervisor import LogPolicy, LogStream

writes = st.lists(st.binary(min_size=1, max_size=64), min_size=1, max_size=30)


def _write_all(directory: Path, policy: LogPolicy, chunks: list[bytes]) -> LogStream:
    stream = LogStream("svc", directory / "svc.log", policy)

    async def _run() -> None:
        for chunk in chunks:
            await stream.write(chunk)
        await stream.aclose()

    anyio.run(_run)
    return stream


@settings(max_examples=50, deadline=None)
@given(
    chunks=writes,
    max_bytes=st.integers(min_value=1, max_value=100),
    max_files=st.integers(min_value=0, max_value=4),
)
def test_files_never_exceed_policy(chunks: list[bytes], max_bytes: int, max_files: int) -> None:
    policy = LogPolicy(max_bytes=max_bytes, max_files=max_files)
    with tempfile.TemporaryDirectory() as tmp:
        stream = _write_all(Path(tmp), policy, chunks)

        files = [stream.path, *stream.rotated_files()]
        assert len(files) <= max_files + 1
        assert all(f.stat().st_size <= max_bytes for f in files)
        assert sum(f.stat().st_size for f in files) <= policy.max_total_bytes


@settings(max_examples=50, deadline=None)
@given(
    chunks=st.lists(st.binary(min_size=1, max_size=16), min_size=1, max_size=10),
    max_bytes=st.integers(min_value=4, max_value=64),
)
def test_no_bytes_lost_when_retention_suffices(chunks: list[bytes], max_bytes: int) -> None:
    data = b"".join(chunks)
    # Enough rotated files that nothing is ever pruned
    policy = LogPolicy(max_bytes=max_bytes, max_files=len(data) + 1)
    with tempfile.TemporaryDirectory() as tmp:
        stream = _write_all(Path(tmp), policy, chunks)

        rotated = sorted(stream.rotated_files(), key=lambda p: int(p.suffix[1:]), reverse=True)
        kept = b"".join(p.read_bytes() for p in [*rotated, stream.path])
        assert kept == data


@settings(max_examples=50, deadline=None)
@given(chunks=writes, max_bytes=st.integers(min_value=1, max_value=100))
def test_newest_bytes_are_in_active_file(chunks: list[bytes], max_bytes: int) -> None:
    data = b"".join(chunks)
    policy = LogPolicy(max_bytes=max_bytes, max_files=2)
    with tempfile.TemporaryDirectory() as tmp:
        stream = _write_all(Path(tmp), policy, chunks)

        active = stream.path.read_bytes()
        assert data.endswith(active)
        assert active
