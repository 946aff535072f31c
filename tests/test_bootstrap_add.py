import pytest

from cluster_bootstrap.configs import MachineConnection, RemoteMachine
from cluster_bootstrap.exceptions import (
    ClusterConnectionError,
    MachineAlreadyMemberError,
    RpcError,
    TokenError,
)
from cluster_bootstrap.machine_api import MachineApiError, MachineInfo, PrerequisitesCheck, PrerequisitesStatus
from cluster_bootstrap.main import AddMachineOptions, BootstrapOrchestrator

from conftest import FakeConnector, FakeMachineClient, FakeProvisioner, make_token


NEW_MACHINE = RemoteMachine(host="203.0.113.11", user="ubuntu", port=2222, key_path="~/.ssh/k")


@pytest.fixture
def prod_registry(registry):
    registry.create_context("prod")
    registry.append_connection("prod", MachineConnection(ssh="root@203.0.113.10:22"))
    registry.set_current_context("prod")
    return registry


def _setup(registry, machine=None, cluster=None, confirm=lambda m: True):
    machine = machine or FakeMachineClient()
    connector = FakeConnector(cluster)
    orch = BootstrapOrchestrator(
        registry,
        provisioner=FakeProvisioner(machine),
        connector=connector,
        confirm_reset=confirm,
    )
    return orch, connector, machine, connector.client


def _opts(**kwargs) -> AddMachineOptions:
    return AddMachineOptions(**{
        "machine_name": "node-2",
        "remote_machine": RemoteMachine(
            host=NEW_MACHINE.host, user=NEW_MACHINE.user, port=NEW_MACHINE.port, key_path=NEW_MACHINE.key_path
        ),
        **kwargs,
    })


def test_add_machine_registers_joins_and_saves_connection(prod_registry):
    orch, connector, machine, cluster = _setup(prod_registry)

    c, m = orch.add_machine(_opts())

    assert c is cluster and m is machine
    assert not cluster.closed and not machine.closed
    assert connector.calls == ["prod"]

    add_req = cluster.requests["add_machine"]
    assert add_req.name == "node-2"
    assert add_req.network.endpoints == ["10.0.0.5:51820", "198.51.100.7:51820"]
    assert add_req.network.public_key
    assert add_req.public_ip is None

    join_req = machine.requests["join_cluster"]
    assert join_req.machine.id == "new-machine-id"
    assert [o.id for o in join_req.other_machines] == ["founder-id"]

    conns = prod_registry.config.contexts["prod"].connections
    assert conns[-1] == MachineConnection(ssh="ubuntu@203.0.113.11:2222", ssh_key_file="~/.ssh/k")


def test_join_peer_list_never_contains_new_machine(prod_registry):
    cluster = FakeMachineClient(
        members=[MachineInfo(id="a"), MachineInfo(id="b"), MachineInfo(id="c")],
        assigned_id="d",
    )
    orch, _, machine, _ = _setup(prod_registry, cluster=cluster)
    orch.add_machine(_opts())

    peers = [o.id for o in machine.requests["join_cluster"].other_machines]
    assert peers == ["a", "b", "c"]
    assert "d" not in peers


def test_add_machine_uses_explicit_context(prod_registry):
    prod_registry.create_context("staging")
    prod_registry.append_connection("staging", MachineConnection(ssh="root@192.0.2.1:22"))

    orch, connector, _, _ = _setup(prod_registry)
    orch.add_machine(_opts(context="staging"))

    assert connector.calls == ["staging"]
    assert len(prod_registry.config.contexts["staging"].connections) == 2
    assert len(prod_registry.config.contexts["prod"].connections) == 1


def test_add_machine_appends_duplicate_connection_without_dedup(prod_registry):
    orch, _, _, _ = _setup(prod_registry)
    orch.add_machine(_opts())

    orch2, _, _, _ = _setup(prod_registry)
    orch2.add_machine(_opts())

    conns = prod_registry.config.contexts["prod"].connections
    assert conns.count(MachineConnection(ssh="ubuntu@203.0.113.11:2222", ssh_key_file="~/.ssh/k")) == 2


def test_add_machine_already_member_fails_without_registration_or_join(prod_registry):
    machine = FakeMachineClient(info=MachineInfo(id="founder-id", name="machine-1"))
    confirmations = []
    orch, _, machine, cluster = _setup(prod_registry, machine=machine, confirm=lambda m: confirmations.append(m) or True)

    with pytest.raises(MachineAlreadyMemberError, match="already a member"):
        orch.add_machine(_opts())

    assert confirmations == []
    assert "add_machine" not in cluster.calls
    assert "join_cluster" not in machine.calls
    assert cluster.closed and machine.closed
    assert len(prod_registry.config.contexts["prod"].connections) == 1


def test_add_machine_member_of_other_cluster_is_reset_first(prod_registry):
    machine = FakeMachineClient(info=MachineInfo(id="foreign-id", name="elsewhere"))
    orch, _, machine, cluster = _setup(prod_registry, machine=machine)

    orch.add_machine(_opts())

    assert machine.calls[:3] == ["inspect", "reset", "inspect"]
    assert "add_machine" in cluster.calls


def test_add_machine_token_parse_failure_aborts_before_registration(prod_registry):
    machine = FakeMachineClient(token="m1not-base64-json")
    orch, _, machine, cluster = _setup(prod_registry, machine=machine)

    with pytest.raises(TokenError, match="parse remote machine token"):
        orch.add_machine(_opts())

    assert "add_machine" not in cluster.calls
    assert cluster.closed and machine.closed


def test_add_machine_public_ip_resolution(prod_registry):
    cases = [
        (None, "198.51.100.7", None),
        ("203.0.113.50", "198.51.100.7", "203.0.113.50"),
        ("auto", "198.51.100.7", "198.51.100.7"),
        ("auto", None, None),
    ]
    for override, token_ip, expected in cases:
        machine = FakeMachineClient(token=make_token(public_ip=token_ip))
        orch, _, _, cluster = _setup(prod_registry, machine=machine)
        orch.add_machine(_opts(public_ip=override))
        assert cluster.requests["add_machine"].public_ip == expected, (override, token_ip)


def test_add_machine_unsatisfied_prerequisites_closes_both_clients(prod_registry):
    machine = FakeMachineClient(
        prerequisites=PrerequisitesCheck(status=PrerequisitesStatus.NOT_SATISFIED, error="no docker")
    )
    orch, _, machine, cluster = _setup(prod_registry, machine=machine)

    with pytest.raises(Exception, match="no docker"):
        orch.add_machine(_opts())
    assert cluster.closed and machine.closed


def test_add_machine_registration_failure_is_wrapped_and_not_saved(prod_registry):
    cluster = FakeMachineClient(
        members=[MachineInfo(id="founder-id")],
        failures={"add_machine": MachineApiError(6, "name taken")},
    )
    orch, _, machine, cluster = _setup(prod_registry, cluster=cluster)

    with pytest.raises(RpcError, match="add machine to cluster \\(context 'prod'\\)"):
        orch.add_machine(_opts())

    assert "join_cluster" not in machine.calls
    assert cluster.closed and machine.closed
    assert len(prod_registry.config.contexts["prod"].connections) == 1


def test_add_machine_join_failure_leaves_registration_in_place(prod_registry):
    machine = FakeMachineClient(failures={"join_cluster": MachineApiError(14, "unavailable")})
    orch, _, machine, cluster = _setup(prod_registry, machine=machine)

    with pytest.raises(RpcError, match="join cluster"):
        orch.add_machine(_opts())

    assert "new-machine-id" in [m.id for m in cluster.members]
    assert cluster.closed and machine.closed


def test_add_machine_connect_failure_does_not_provision(prod_registry):
    provisioner = FakeProvisioner()
    orch = BootstrapOrchestrator(
        prod_registry,
        provisioner=provisioner,
        connector=FakeConnector(error=ClusterConnectionError("failed to connect to cluster context 'prod'")),
    )
    with pytest.raises(ClusterConnectionError):
        orch.add_machine(_opts())
    assert provisioner.calls == []


def test_add_machine_provision_failure_closes_cluster_client(prod_registry):
    connector = FakeConnector()
    orch = BootstrapOrchestrator(
        prod_registry,
        provisioner=FakeProvisioner(error=RuntimeError("install failed")),
        connector=connector,
    )
    with pytest.raises(RuntimeError):
        orch.add_machine(_opts())
    assert connector.client.closed


def test_add_machine_without_stored_context_skips_saving(registry):
    orch, connector, _, cluster = _setup(registry)

    orch.add_machine(_opts())

    assert connector.calls == [""]
    assert "add_machine" in cluster.calls
    assert registry.config.contexts == {}
