"""Tests for the rollout engine: batch ordering, cutover, failure handling."""

import asyncio

from deckhand.deploy.rollout import RolloutStatus
from deckhand.deploy.states import HostState

WEB_HOSTS = ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4"]
JOB = "10.0.0.5"


def _deploy(deployment, target):
    return asyncio.run(deployment.engine.execute(deployment.plan(target)))


def _first_index(commands, address):
    return next(i for i, (h, _) in enumerate(commands) if h == address)


def _last_index(commands, address):
    return max(i for i, (h, _) in enumerate(commands) if h == address)


def _by_host(report):
    return {h.host: h for h in report.hosts}


# ── Happy path ────────────────────────────────────────────────────


def test_first_deploy_succeeds(make_deployment, release):
    report = _deploy(make_deployment(), release("v1"))

    assert report.status is RolloutStatus.SUCCEEDED
    assert len(report.succeeded) == 5
    assert report.indeterminate == []


def test_web_host_state_history(make_deployment, release):
    report = _deploy(make_deployment(), release("v1"))
    assert _by_host(report)["10.0.0.1"].history == [
        HostState.PENDING,
        HostState.PULLING,
        HostState.STARTING,
        HostState.HEALTH_CHECKING,
        HostState.CUTTING_OVER,
        HostState.DRAINING,
        HostState.STOPPED,
    ]


def test_worker_skips_proxy(make_deployment, fake_transport, release):
    report = _deploy(make_deployment(), release("v1"))

    assert HostState.CUTTING_OVER not in _by_host(report)[JOB].history
    assert not any("kamal-proxy" in c for c in fake_transport.commands_for(JOB))


def test_wait_between_batches(make_deployment, fake_clock, release):
    _deploy(make_deployment(), release("v1"))
    # web batch 1, web batch 2, job batch 1: two gaps
    assert fake_clock.sleeps == [5.0, 5.0]


def test_upgrade_cuts_over_and_stops_old(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    report = _deploy(deployment, release("v2"))

    assert report.status is RolloutStatus.SUCCEEDED
    for address in WEB_HOSTS:
        assert fake_transport.containers[(address, "myapp-web-v1")] == "exited"
        assert fake_transport.containers[(address, "myapp-web-v2")] == "running"
        route = deployment.store.get_route("web", address)
        assert route.endpoint == "myapp-web-v2:3000"
        assert route.draining == []
        record = deployment.store.get_record(address, "web")
        assert record.current == release("v2")
        assert record.previous == release("v1")
    assert fake_transport.containers[(JOB, "myapp-job-v1")] == "exited"


def test_upgrade_drains_before_stopping(make_deployment, fake_transport, fake_clock, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_clock.sleeps.clear()
    _deploy(deployment, release("v2"))

    assert 30.0 in fake_clock.sleeps
    commands = fake_transport.commands_for("10.0.0.1")
    cutover = next(i for i, c in enumerate(commands) if "--target myapp-web-v2:3000" in c)
    stop = commands.index("docker stop -t 30 myapp-web-v1")
    assert cutover < stop


def test_redeploy_same_version_is_noop(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.commands.clear()
    report = _deploy(deployment, release("v1"))

    assert report.status is RolloutStatus.SUCCEEDED
    assert all(h.history == [HostState.PENDING, HostState.STOPPED] for h in report.hosts)
    assert fake_transport.commands == []


# ── Re-runs after partial failure ─────────────────────────────────


def test_rerun_completes_interrupted_cutover(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.failing[("10.0.0.1", "docker exec kamal-proxy")] = 1
    report = _deploy(deployment, release("v2"))
    assert _by_host(report)["10.0.0.1"].state is HostState.ABORTED
    assert deployment.store.get_route("web", "10.0.0.1").endpoint == "myapp-web-v1:3000"

    del fake_transport.failing[("10.0.0.1", "docker exec kamal-proxy")]
    report = _deploy(deployment, release("v2"))

    assert report.status is RolloutStatus.SUCCEEDED
    hosts = _by_host(report)
    assert HostState.CUTTING_OVER in hosts["10.0.0.1"].history
    assert hosts["10.0.0.2"].history == [HostState.PENDING, HostState.STOPPED]
    assert deployment.store.get_route("web", "10.0.0.1").endpoint == "myapp-web-v2:3000"
    assert fake_transport.containers[("10.0.0.1", "myapp-web-v1")] == "exited"
    record = deployment.store.get_record("10.0.0.1", "web")
    assert record.current == release("v2")
    assert record.previous == release("v1")
    assert record.converged


def test_rerun_stops_old_container_left_running(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.failing[("10.0.0.1", "docker stop")] = 1
    _deploy(deployment, release("v2"))
    assert fake_transport.containers[("10.0.0.1", "myapp-web-v1")] == "running"

    del fake_transport.failing[("10.0.0.1", "docker stop")]
    report = _deploy(deployment, release("v2"))

    assert report.status is RolloutStatus.SUCCEEDED
    assert _by_host(report)["10.0.0.1"].state is HostState.STOPPED
    assert fake_transport.containers[("10.0.0.1", "myapp-web-v1")] == "exited"
    assert deployment.store.get_record("10.0.0.1", "web").previous == release("v1")


# ── Cleanup failures ──────────────────────────────────────────────


def test_failed_stop_aborts_host(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.failing[("10.0.0.1", "docker stop")] = 1
    report = _deploy(deployment, release("v2"))

    assert report.status is RolloutStatus.ABORTED
    host = _by_host(report)["10.0.0.1"]
    assert host.state is HostState.ABORTED
    assert "'docker stop' myapp-web-v1 exited 1" in host.error
    assert [h.host for h in report.indeterminate] == ["10.0.0.1"]
    assert _by_host(report)["10.0.0.2"].state is HostState.STOPPED


def test_failed_discard_aborts_host(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.health[("10.0.0.2", "myapp-web-v2")] = ["unhealthy"]
    fake_transport.failing[("10.0.0.2", "docker rm -f")] = 1
    report = _deploy(deployment, release("v2"))

    assert report.status is RolloutStatus.ABORTED
    host = _by_host(report)["10.0.0.2"]
    assert host.state is HostState.ABORTED
    assert "cleanup failed" in host.error
    assert ("10.0.0.2", "myapp-web-v2") in fake_transport.containers


# ── Batch ordering ────────────────────────────────────────────────


def test_batches_run_sequentially(make_deployment, fake_transport, release):
    _deploy(make_deployment(), release("v1"))
    commands = fake_transport.commands

    batch_one_done = max(_last_index(commands, "10.0.0.1"), _last_index(commands, "10.0.0.2"))
    batch_two_start = min(_first_index(commands, "10.0.0.3"), _first_index(commands, "10.0.0.4"))
    assert batch_one_done < batch_two_start
    assert _last_index(commands, "10.0.0.4") < _first_index(commands, JOB)


def test_hosts_in_batch_run_concurrently(make_deployment, fake_transport, release):
    _deploy(make_deployment(), release("v1"))
    commands = fake_transport.commands
    assert _first_index(commands, "10.0.0.2") < _last_index(commands, "10.0.0.1")


# ── Unhealthy ─────────────────────────────────────────────────────


def test_unhealthy_host_rolls_back_and_halts(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.health[("10.0.0.2", "myapp-web-v2")] = ["unhealthy"]
    report = _deploy(deployment, release("v2"))

    assert report.status is RolloutStatus.ROLLED_BACK
    hosts = _by_host(report)
    assert hosts["10.0.0.1"].state is HostState.STOPPED
    assert hosts["10.0.0.2"].state is HostState.ROLLED_BACK
    assert hosts["10.0.0.2"].history[-2:] == [HostState.ROLLING_BACK, HostState.ROLLED_BACK]
    assert "10.0.0.3" not in hosts
    assert [b.label for b in report.skipped_batches] == ["web batch 2", "job batch 1"]


def test_rolled_back_host_keeps_serving_old_release(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.health[("10.0.0.2", "myapp-web-v2")] = ["unhealthy"]
    _deploy(deployment, release("v2"))

    assert ("10.0.0.2", "myapp-web-v2") not in fake_transport.containers
    assert fake_transport.containers[("10.0.0.2", "myapp-web-v1")] == "running"
    assert deployment.store.get_route("web", "10.0.0.2").endpoint == "myapp-web-v1:3000"
    record = deployment.store.get_record("10.0.0.2", "web")
    assert record.current == release("v1")
    assert record.failed == release("v2")


def test_skipped_batches_untouched(make_deployment, fake_transport, release):
    deployment = make_deployment()
    _deploy(deployment, release("v1"))
    fake_transport.health[("10.0.0.1", "myapp-web-v2")] = ["unhealthy"]
    _deploy(deployment, release("v2"))

    assert not any("v2" in c for c in fake_transport.commands_for("10.0.0.3"))
    assert deployment.store.get_record("10.0.0.3", "web").current == release("v1")


# ── Transport failures ────────────────────────────────────────────


def test_transient_transport_error_retried(make_deployment, fake_transport, release):
    fake_transport.unreachable["10.0.0.1"] = 1
    report = _deploy(make_deployment(), release("v1"))

    assert report.status is RolloutStatus.SUCCEEDED
    assert _by_host(report)["10.0.0.1"].attempts == 2


def test_exhausted_transport_error_aborts(make_deployment, fake_transport, release):
    fake_transport.unreachable["10.0.0.3"] = float("inf")
    report = _deploy(make_deployment(), release("v1"))

    assert report.status is RolloutStatus.ABORTED
    hosts = _by_host(report)
    assert hosts["10.0.0.1"].state is HostState.STOPPED
    assert hosts["10.0.0.3"].state is HostState.ABORTED
    assert hosts["10.0.0.3"].attempts == 3
    assert hosts["10.0.0.3"].error == "connection refused"
    assert hosts["10.0.0.4"].state is HostState.STOPPED
    assert [h.host for h in report.indeterminate] == ["10.0.0.3"]
    assert [b.label for b in report.skipped_batches] == ["job batch 1"]


def test_aborted_summary_lists_hosts(make_deployment, fake_transport, release):
    fake_transport.unreachable["10.0.0.3"] = float("inf")
    report = _deploy(make_deployment(), release("v1"))
    lines = report.summary_lines()

    assert lines[0] == "Status: aborted"
    assert "Needs manual check:" in lines
    assert "  10.0.0.3 [web] v1 (connection refused)" in lines
    assert "Not started:" in lines
    assert "  job batch 1: 10.0.0.5" in lines


# ── Abort requests ────────────────────────────────────────────────


def test_abort_request_honored_between_batches(make_deployment, release):
    deployment = make_deployment()
    engine = deployment.engine
    run_batch = engine.run_batch

    async def run_then_abort(batch):
        reports = await run_batch(batch)
        engine.request_abort()
        return reports

    engine.run_batch = run_then_abort
    report = _deploy(deployment, release("v1"))

    assert report.status is RolloutStatus.CANCELLED
    assert [h.state for h in report.hosts] == [HostState.STOPPED, HostState.STOPPED]
    assert len(report.skipped_batches) == 2
