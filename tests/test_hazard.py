from amaranth import *

from rvpipe.forward import ForwardingUnit, FwdSel
from rvpipe.hazard import HazardUnit

from tests.harness import simulate

def hazards(forwarding = True, **inputs):
    """Returns the hazard unit's outputs for one set of inputs. Inputs not
    given are zero, except that decode defaults to a live instruction reading
    x1 and x2."""
    dut = HazardUnit(forwarding = forwarding)
    defaults = dict(id_live = 1, id_rs1 = 1, id_rs2 = 2,
                    id_uses_rs1 = 1, id_uses_rs2 = 1)
    defaults.update(inputs)
    result = {}

    async def bench(ctx):
        for (name, value) in defaults.items():
            ctx.set(getattr(dut, name), value)
        for name in ("stall", "load_use", "branch_load", "branch_alu", "raw"):
            result[name] = ctx.get(getattr(dut, name))

    simulate(dut, bench, clock = False)
    return result

def test_no_hazard_for_plain_alu_dependency():
    h = hazards(dx_live = 1, dx_rd = 1, dx_writes = 1)
    assert h["stall"] == 0

def test_load_use():
    h = hazards(dx_live = 1, dx_rd = 2, dx_writes = 1, dx_mem_read = 1)
    assert h["load_use"] == 1
    assert h["stall"] == 1

def test_load_into_unused_register():
    h = hazards(dx_live = 1, dx_rd = 2, dx_writes = 1, dx_mem_read = 1,
                id_uses_rs2 = 0)
    assert h["stall"] == 0

def test_load_into_x0_never_stalls():
    h = hazards(id_rs1 = 0, dx_live = 1, dx_rd = 0, dx_writes = 1,
                dx_mem_read = 1)
    assert h["stall"] == 0

def test_bubbles_and_kills_never_stall():
    h = hazards(dx_live = 0, dx_rd = 1, dx_writes = 1, dx_mem_read = 1)
    assert h["stall"] == 0
    h = hazards(id_live = 0, dx_live = 1, dx_rd = 1, dx_writes = 1,
                dx_mem_read = 1)
    assert h["stall"] == 0

def test_branch_waits_for_alu_result():
    h = hazards(id_resolves = 1, dx_live = 1, dx_rd = 1, dx_writes = 1)
    assert h["branch_alu"] == 1
    assert h["stall"] == 1

def test_branch_waits_for_load_in_memory_stage():
    h = hazards(id_resolves = 1, xm_live = 1, xm_rd = 2, xm_writes = 1,
                xm_mem_read = 1)
    assert h["branch_load"] == 1
    assert h["stall"] == 1

def test_branch_takes_forwarded_alu_result_from_memory_stage():
    h = hazards(id_resolves = 1, xm_live = 1, xm_rd = 2, xm_writes = 1)
    assert h["stall"] == 0

def test_raw_only_without_forwarding():
    h = hazards(forwarding = False, xm_live = 1, xm_rd = 1, xm_writes = 1)
    assert h["raw"] == 1
    assert h["stall"] == 1

    h = hazards(forwarding = True, xm_live = 1, xm_rd = 1, xm_writes = 1)
    assert h["raw"] == 0
    assert h["stall"] == 0

    # Stores and branches don't write registers, whatever their rd bits say.
    h = hazards(forwarding = False, dx_live = 1, dx_rd = 1, dx_writes = 0)
    assert h["stall"] == 0

def forwarding(enabled = True, **inputs):
    dut = ForwardingUnit(enabled = enabled)
    result = {}

    async def bench(ctx):
        for (name, value) in inputs.items():
            ctx.set(getattr(dut, name), value)
        for name in ("ex_a", "ex_b", "id_a", "id_b"):
            result[name] = FwdSel(ctx.get(Value.cast(getattr(dut, name))))

    simulate(dut, bench, clock = False)
    return result

def test_newest_producer_wins():
    f = forwarding(ex_rs1 = 1, ex_rs2 = 2,
                   xm_live = 1, xm_rd = 1, xm_writes = 1,
                   mw_live = 1, mw_rd = 1, mw_writes = 1)
    assert f["ex_a"] == FwdSel.XM
    assert f["ex_b"] == FwdSel.REG

    f = forwarding(ex_rs1 = 1, ex_rs2 = 2,
                   xm_live = 1, xm_rd = 3, xm_writes = 1,
                   mw_live = 1, mw_rd = 2, mw_writes = 1)
    assert f["ex_a"] == FwdSel.REG
    assert f["ex_b"] == FwdSel.MW

def test_decode_operands_forward_too():
    f = forwarding(id_rs1 = 4, id_rs2 = 5,
                   xm_live = 1, xm_rd = 5, xm_writes = 1,
                   mw_live = 1, mw_rd = 4, mw_writes = 1)
    assert f["id_a"] == FwdSel.MW
    assert f["id_b"] == FwdSel.XM

def test_ineligible_producers():
    # x0, non-writers and dead bundles never forward.
    f = forwarding(ex_rs1 = 0, ex_rs2 = 6,
                   xm_live = 1, xm_rd = 0, xm_writes = 1,
                   mw_live = 0, mw_rd = 6, mw_writes = 1)
    assert f["ex_a"] == FwdSel.REG
    assert f["ex_b"] == FwdSel.REG

    f = forwarding(ex_rs1 = 6, xm_live = 1, xm_rd = 6, xm_writes = 0)
    assert f["ex_a"] == FwdSel.REG

def test_disabled_forwarding_always_reads_registers():
    f = forwarding(enabled = False, ex_rs1 = 1, id_rs1 = 1,
                   xm_live = 1, xm_rd = 1, xm_writes = 1)
    assert all(sel == FwdSel.REG for sel in f.values())
