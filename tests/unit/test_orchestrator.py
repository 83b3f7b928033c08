import pytest
from fakes import FakeProvider, wait_until

from locus.core.contracts import BaseModule, HealthStatus, ModuleConfig
from locus.core.hub import FusionHub
from locus.core.orchestrator import Orchestrator


class _StubModule(BaseModule):
    def __init__(self, name: str, events: list[str], *, status: str = "healthy") -> None:
        super().__init__()
        self.name = name
        self._events = events
        self._status = status

    async def start(self) -> None:
        self._events.append(f"start:{self.name}")

    async def stop(self) -> None:
        self._events.append(f"stop:{self.name}")
        if self.name == "tests.flaky":
            raise RuntimeError("stop failed")

    async def health(self) -> HealthStatus:
        return HealthStatus(status=self._status, details={})


@pytest.mark.asyncio
async def test_modules_start_in_order_and_stop_in_reverse() -> None:
    events: list[str] = []
    orchestrator = Orchestrator(report_health=False)
    await orchestrator.add_module(_StubModule("tests.first", events))
    await orchestrator.add_module(_StubModule("tests.flaky", events))
    await orchestrator.add_module(_StubModule("tests.last", events))

    await orchestrator.start()
    await orchestrator.stop()

    assert events == [
        "start:tests.first",
        "start:tests.flaky",
        "start:tests.last",
        "stop:tests.last",
        "stop:tests.flaky",
        "stop:tests.first",
    ]


@pytest.mark.asyncio
async def test_add_module_applies_configuration() -> None:
    module = _StubModule("tests.configured", [])
    orchestrator = Orchestrator(report_health=False)

    await orchestrator.add_module(module, ModuleConfig(options={"key": "laptop"}))

    assert module._config.options == {"key": "laptop"}
    assert orchestrator.modules == [module]


@pytest.mark.asyncio
async def test_health_includes_hub_and_modules() -> None:
    orchestrator = Orchestrator(report_health=False)
    await orchestrator.add_module(_StubModule("tests.ok", []))
    await orchestrator.add_module(_StubModule("tests.slow", [], status="degraded"))

    reports = await orchestrator.health()

    assert set(reports) == {"hub", "tests.ok", "tests.slow"}
    assert Orchestrator.determine_overall_status(reports) == "degraded"


@pytest.mark.asyncio
async def test_stop_shuts_down_hub_subscriptions() -> None:
    provider = FakeProvider("file")
    hub = FusionHub([provider])
    orchestrator = Orchestrator(hub=hub, health_interval=0.01)
    await orchestrator.start()

    stream = hub.subscribe("host")
    first = await anext(stream)
    await wait_until(lambda: provider.active == 1)
    await orchestrator.stop()

    assert not first.is_known
    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    assert provider.active == 0


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        (["healthy", "healthy"], "healthy"),
        (["healthy", "degraded"], "degraded"),
        (["degraded", "error"], "error"),
    ],
)
def test_determine_overall_status(statuses: list[str], expected: str) -> None:
    reports = {str(index): HealthStatus(status=status) for index, status in enumerate(statuses)}

    assert Orchestrator.determine_overall_status(reports) == expected
