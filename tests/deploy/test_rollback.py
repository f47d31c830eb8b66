"""Tests for the rollback controller."""

import asyncio

import pytest

from deckhand.deploy.rollout import RolloutStatus
from deckhand.deploy.states import HostState
from deckhand.errors import UnknownRelease
from deckhand.state import ContainerRecord, MemoryStateStore

WEB_HOSTS = ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"]


def _deploy(deployment, target):
    deployment.store.add_release(target)
    return asyncio.run(deployment.engine.execute(deployment.plan(target)))


@pytest.fixture
def upgraded(make_deployment, release):
    """A deployment that went v1 -> v2 on every host."""
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    _deploy(deployment, release("v2"))
    return deployment


# ── rollback_all ──────────────────────────────────────────────────


def test_rollback_restores_previous_release(upgraded, release):
    report = asyncio.run(upgraded.rollbacks.rollback_all())

    assert report.status is RolloutStatus.SUCCEEDED
    for address in WEB_HOSTS:
        record = upgraded.store.get_record(address, "web")
        assert record.current == release("v1")
        assert record.previous == release("v2")
    assert upgraded.store.get_record("10.0.0.5", "job").current == release("v1")


def test_rollback_restores_previous_route(upgraded):
    asyncio.run(upgraded.rollbacks.rollback_all())
    for address in WEB_HOSTS:
        assert upgraded.store.get_route("web", address).endpoint == "myapp-web-v1:3000"


def test_rollback_goes_through_restore(upgraded):
    calls = []
    restore = upgraded.reconciler.restore

    async def recording_restore(role, host, endpoint):
        calls.append((role, str(host), endpoint))
        return await restore(role, host, endpoint)

    upgraded.reconciler.restore = recording_restore
    asyncio.run(upgraded.rollbacks.rollback_all())

    assert sorted(calls) == [("web", address, "myapp-web-v1:3000") for address in WEB_HOSTS]


def test_rollback_restarts_stopped_container(upgraded, fake_transport):
    asyncio.run(upgraded.rollbacks.rollback_all())

    commands = fake_transport.commands_for("10.0.0.1")
    assert "docker start myapp-web-v1" in commands
    assert fake_transport.containers[("10.0.0.1", "myapp-web-v1")] == "running"
    assert fake_transport.containers[("10.0.0.1", "myapp-web-v2")] == "exited"


def test_rollback_defaults_to_one_batch_per_role(upgraded):
    plan, skipped = upgraded.rollbacks.plan()
    assert [(b.role, len(b.hosts)) for b in plan] == [("web", 4), ("job", 1)]
    assert skipped == []


def test_rollback_explicit_batch_size(upgraded):
    plan, _ = upgraded.rollbacks.plan(batch_size=2)
    assert [(b.role, len(b.hosts)) for b in plan] == [("web", 2), ("web", 2), ("job", 1)]


def test_rollback_filtered_by_role(upgraded, release):
    asyncio.run(upgraded.rollbacks.rollback_all(roles=["web"]))

    assert upgraded.store.get_record("10.0.0.1", "web").current == release("v1")
    assert upgraded.store.get_record("10.0.0.5", "job").current == release("v2")


def test_rollback_to_named_version(upgraded, release):
    _deploy(upgraded, release("v3"))
    report = asyncio.run(upgraded.rollbacks.rollback_all(version="v1"))

    assert report.status is RolloutStatus.SUCCEEDED
    record = upgraded.store.get_record("10.0.0.2", "web")
    assert record.current == release("v1")
    assert record.previous == release("v3")


def test_rollback_unknown_version(upgraded):
    with pytest.raises(UnknownRelease, match="Known releases: v1, v2"):
        upgraded.rollbacks.plan(version="v9")


def test_rollback_groups_hosts_by_previous_release(make_deployment, release):
    store = MemoryStateStore()
    for address, previous in zip(WEB_HOSTS, ["v1", "v1", "v2", "v2"]):
        store.put_record(ContainerRecord(address, "web", current=release("v3"), previous=release(previous)))
    deployment = make_deployment(store=store)

    plan, skipped = deployment.rollbacks.plan()
    assert [(b.target.version, b.addresses) for b in plan] == [
        ("v1", ["10.0.0.1", "10.0.0.2"]),
        ("v2", ["10.0.0.3", "10.0.0.4"]),
    ]
    assert skipped == [("10.0.0.5", "job")]


def test_rollback_skips_hosts_without_previous(make_deployment, release):
    store = MemoryStateStore()
    _deploy(make_deployment(store=store), release("v1"))
    _deploy(make_deployment(store=store, roles=["web"]), release("v2"))

    plan, skipped = make_deployment(store=store).rollbacks.plan()
    assert {b.role for b in plan} == {"web"}
    assert skipped == [("10.0.0.5", "job")]


def test_nothing_to_roll_back(make_deployment, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    with pytest.raises(UnknownRelease, match="Nothing to roll back"):
        asyncio.run(deployment.rollbacks.rollback_all())


# ── rollback (single host) ────────────────────────────────────────


def test_rollback_single_host(upgraded, release):
    host = upgraded.registry.host("10.0.0.3")
    report = asyncio.run(upgraded.rollbacks.rollback(host, "web"))

    assert report.state is HostState.STOPPED
    assert upgraded.store.get_record("10.0.0.3", "web").current == release("v1")
    assert upgraded.store.get_record("10.0.0.1", "web").current == release("v2")


def test_rollback_single_host_without_previous(make_deployment, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    with pytest.raises(UnknownRelease):
        asyncio.run(deployment.rollbacks.rollback(deployment.registry.host("10.0.0.1"), "web"))
