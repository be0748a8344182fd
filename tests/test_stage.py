from rvpipe.stage import ExecuteBundle, PipelineRegister

from tests.harness import simulate

def bundle(pc, result = 0, *, valid = 0, bubble = 0, kill = 0, **ctrl):
    return {
        "ctrl": dict(valid = valid, bubble = bubble, kill = kill, **ctrl),
        "pc": pc,
        "rd": 3,
        "result": result,
        "store_data": 0x99,
    }

def test_reset_state_is_a_bubble():
    dut = PipelineRegister(ExecuteBundle)

    async def bench(ctx):
        assert ctx.get(dut.current.ctrl.valid) == 0
        assert ctx.get(dut.current.ctrl.kill) == 0
        assert ctx.get(dut.current.ctrl.writes_register) == 0

    simulate(dut, bench)

def test_advance_stall_flush():
    dut = PipelineRegister(ExecuteBundle)

    async def bench(ctx):
        ctx.set(dut.incoming, bundle(0x10, 42, valid = 1, writes_register = 1))
        await ctx.tick()
        assert ctx.get(dut.current.ctrl.valid) == 1
        assert ctx.get(dut.current.pc) == 0x10
        assert ctx.get(dut.current.result) == 42

        # Stall holds, whatever is incoming.
        ctx.set(dut.incoming, bundle(0x14, 43, valid = 1))
        ctx.set(dut.stall, 1)
        await ctx.tick()
        assert ctx.get(dut.current.pc) == 0x10
        assert ctx.get(dut.current.result) == 42

        # Flush beats stall. The squashed PC is kept, nothing else.
        ctx.set(dut.flush, 1)
        await ctx.tick()
        assert ctx.get(dut.current.ctrl.bubble) == 1
        assert ctx.get(dut.current.ctrl.valid) == 0
        assert ctx.get(dut.current.ctrl.writes_register) == 0
        assert ctx.get(dut.current.pc) == 0x14
        assert ctx.get(dut.current.result) == 0
        assert ctx.get(dut.current.rd) == 0

    simulate(dut, bench)

def test_incoming_bubble_is_stored_clean():
    dut = PipelineRegister(ExecuteBundle)

    async def bench(ctx):
        ctx.set(dut.incoming, bundle(0x20, 7, bubble = 1, writes_register = 1))
        await ctx.tick()
        assert ctx.get(dut.current.ctrl.bubble) == 1
        assert ctx.get(dut.current.ctrl.writes_register) == 0
        assert ctx.get(dut.current.result) == 0

    simulate(dut, bench)

def test_killed_bundle_loses_side_effects():
    dut = PipelineRegister(ExecuteBundle)

    async def bench(ctx):
        ctx.set(dut.incoming, bundle(0x30, 7, kill = 1,
                                     writes_register = 1, mem_write = 1,
                                     is_branch = 1, mispredicted = 1))
        await ctx.tick()
        assert ctx.get(dut.current.ctrl.kill) == 1
        assert ctx.get(dut.current.ctrl.valid) == 0
        assert ctx.get(dut.current.ctrl.bubble) == 0
        for f in ("writes_register", "mem_write", "is_branch", "mispredicted"):
            assert ctx.get(getattr(dut.current.ctrl, f)) == 0, f
        assert ctx.get(dut.current.pc) == 0x30

    simulate(dut, bench)
