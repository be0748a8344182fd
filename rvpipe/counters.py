from amaranth import *
from amaranth.lib.wiring import *

from rvpipe.bus import BusPort

class PerfCounters(Component):
    """Performance counters, fed by the CPU's commit and control outputs.

    Memory Map
    ----------
    +00: cycles since reset or clear; stops once the CPU halts.
    +04: instructions retired.
    +08: cycles spent stalled on a hazard.
    +0C: mispredicted branches committed.
    +10: writing anything here clears all four counters.

    Counter registers are read only; writes to them are ignored.

    Attributes
    ----------
    bus (port): connection to the fabric.
    retired (input): an instruction committed this cycle.
    stall (input): decode is stalled this cycle.
    mispredict (input): a mispredicted branch committed this cycle.
    halted (input): the CPU has stopped.
    cycles, instret, stalls, mispredicts (output): counter values, for
        testbenches.
    """
    bus: In(BusPort(addr = 3, data = 32))

    retired: In(1)
    stall: In(1)
    mispredict: In(1)
    halted: In(1)

    cycles: Out(32)
    instret: Out(32)
    stalls: Out(32)
    mispredicts: Out(32)

    def elaborate(self, platform):
        m = Module()

        a = self.bus.cmd.payload.addr
        clear = Signal(1)
        m.d.comb += clear.eq(
            self.bus.cmd.valid & (self.bus.cmd.payload.lanes != 0) & (a == 4)
        )

        counters = [
            (self.cycles, ~self.halted),
            (self.instret, self.retired),
            (self.stalls, self.stall),
            (self.mispredicts, self.mispredict),
        ]
        for (counter, event) in counters:
            with m.If(clear):
                m.d.sync += counter.eq(0)
            with m.Elif(event):
                m.d.sync += counter.eq(counter + 1)

        with m.Switch(a):
            for (i, (counter, _)) in enumerate(counters):
                with m.Case(i):
                    m.d.comb += self.bus.resp.eq(counter)

        return m
