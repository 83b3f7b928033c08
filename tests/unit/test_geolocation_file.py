import asyncio
import contextlib
from pathlib import Path

import pytest

from locus.providers.base import ProviderReadError
from locus.providers.geolocation_file import GeolocationFileProvider, parse_location_text


def test_parse_location_text_reads_four_values() -> None:
    assert parse_location_text("52.5\n13.4\n34\n10\n") == (52.5, 13.4, 34.0, 10.0)


def test_parse_location_text_skips_blank_lines_and_whitespace() -> None:
    assert parse_location_text("\n  52.5 \n\n13.4\n 0\n\t25\n") == (52.5, 13.4, 0.0, 25.0)


@pytest.mark.parametrize(
    "text",
    [
        "52.5\n13.4\n34\n",
        "52.5\nnorth\n34\n10\n",
        "95\n13.4\n34\n10\n",
        "52.5\n13.4\n34\n-1\n",
        "",
    ],
)
def test_parse_location_text_rejects_malformed_input(text: str) -> None:
    with pytest.raises(ProviderReadError):
        parse_location_text(text)


@pytest.mark.asyncio
async def test_read_reports_full_confidence(tmp_path: Path) -> None:
    location = tmp_path / "location"
    location.write_text("48.1\n11.6\n520\n15\n", encoding="utf-8")
    provider = GeolocationFileProvider(location)

    reading = await provider.read()

    assert (reading.lat, reading.lon, reading.alt) == (48.1, 11.6, 520.0)
    assert reading.accuracy_meters == 15.0
    assert reading.confidence == 1.0


@pytest.mark.asyncio
async def test_missing_file_raises_read_error(tmp_path: Path) -> None:
    provider = GeolocationFileProvider(tmp_path / "absent")

    with pytest.raises(ProviderReadError, match="cannot read"):
        await provider.read()


@pytest.mark.asyncio
async def test_stream_emits_only_when_file_changes(tmp_path: Path) -> None:
    location = tmp_path / "location"
    location.write_text("52.5\n13.4\n34\n10\n", encoding="utf-8")
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        if len(sleeps) == 3:
            location.write_text("52.6\n13.4\n34\n10\n", encoding="utf-8")
        await asyncio.sleep(0)

    provider = GeolocationFileProvider(location, period=30, ttl=600, sleep=fake_sleep)
    async with contextlib.aclosing(provider.lookup_stream("laptop")) as stream:
        first = await asyncio.wait_for(anext(stream), timeout=1.0)
        second = await asyncio.wait_for(anext(stream), timeout=1.0)

    assert first.key == "laptop"
    assert first.source == "geolocation_file"
    assert first.confidence == 1.0
    assert first.ttl.total_seconds() == 600
    assert second.lat == 52.6
    assert sleeps[:3] == [30, 30, 30]


@pytest.mark.asyncio
async def test_stream_retries_until_file_appears(tmp_path: Path) -> None:
    location = tmp_path / "location"
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        if len(sleeps) == 2:
            location.write_text("1\n2\n3\n4\n", encoding="utf-8")
        await asyncio.sleep(0)

    provider = GeolocationFileProvider(location, period=30, retry_period=5, sleep=fake_sleep)
    async with contextlib.aclosing(provider.lookup_stream("host")) as stream:
        result = await asyncio.wait_for(anext(stream), timeout=1.0)

    assert (result.lat, result.lon, result.alt, result.accuracy_meters) == (1, 2, 3, 4)
    assert sleeps == [5, 5]


@pytest.mark.asyncio
async def test_stream_stops_promptly_on_cancellation(tmp_path: Path) -> None:
    location = tmp_path / "location"
    location.write_text("52.5\n13.4\n34\n10\n", encoding="utf-8")
    provider = GeolocationFileProvider(location, period=3600)
    received = []

    async def consume() -> None:
        async for result in provider.lookup_stream("host"):
            received.append(result)

    task = asyncio.create_task(consume())
    while not received:
        await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=1.0)
    assert len(received) == 1
