"""Behavior registry and one-time dispatch resolution."""

import numpy as np
import pytest

from syn_engine.models.dispatch import (
    Behavior,
    BehaviorRegistry,
    OPERATIONS,
    check_dispatch,
    resolve_dispatch,
    spiking_change_psr,
)
from syn_engine.models.errors import StaleDispatchHandleError
from syn_engine.models.kinds import SynapseKind


def _doubled_change_psr(psr, W, decay, tick, dt):
    return psr + 2.0 * W / decay


DOUBLED = Behavior(name="doubled", change_psr=_doubled_change_psr)


def test_default_table_uses_base_behavior_everywhere():
    table = resolve_dispatch(BehaviorRegistry(), epoch=3)
    assert table.epoch == 3
    assert table.behaviors == ("spiking",)
    for op in OPERATIONS:
        assert table.handles[op].dtype == np.int32
        assert table.handles[op].tolist() == [0] * len(SynapseKind)
        assert len(table.branches[op]) == 1
    assert table.branches["change_psr"][0] is spiking_change_psr
    assert not table.back_propagation.any()


def test_kind_mapping_selects_branch_by_handle():
    registry = BehaviorRegistry()
    registry.register(DOUBLED)
    table = resolve_dispatch(registry, {"EE": "doubled", SynapseKind.II: "spiking"})
    assert table.behaviors == ("spiking", "doubled")
    assert table.handle("change_psr", SynapseKind.EE) == 1
    assert table.handle("change_psr", SynapseKind.EI) == 0
    branch = table.branches["change_psr"][table.handle("change_psr", SynapseKind.EE)]
    assert branch(0.0, 1.0, 0.5, 0, 1e-4) == pytest.approx(4.0)


def test_unknown_behavior_fails_at_resolution():
    with pytest.raises(KeyError):
        resolve_dispatch(BehaviorRegistry(), {"EE": "nope"})


def test_duplicate_registration_rejected_unless_replacing():
    registry = BehaviorRegistry()
    registry.register(DOUBLED)
    with pytest.raises(ValueError):
        registry.register(DOUBLED)
    registry.register(Behavior(name="doubled", change_psr=spiking_change_psr), replace=True)
    assert registry.get("doubled").change_psr is spiking_change_psr


def test_back_propagation_flag_per_kind():
    registry = BehaviorRegistry()
    registry.register(Behavior(name="bp", change_psr=spiking_change_psr, allow_back_propagation=True))
    table = resolve_dispatch(registry, {"EI": "bp"})
    assert table.back_propagation.tolist() == [False, False, True, False, False]


def test_check_dispatch_rejects_missing_and_stale_tables():
    with pytest.raises(StaleDispatchHandleError):
        check_dispatch(None, 1)
    table = resolve_dispatch(BehaviorRegistry(), epoch=1)
    assert check_dispatch(table, 1) is table
    with pytest.raises(StaleDispatchHandleError):
        check_dispatch(table, 2)


def test_registry_membership():
    registry = BehaviorRegistry()
    assert "spiking" in registry
    assert "doubled" not in registry
    registry.register(DOUBLED)
    assert "doubled" in registry
    assert registry.names() == ("spiking", "doubled")
