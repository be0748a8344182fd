# Memory stage: loads and stores.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import any_of, oneof
from rvpipe.bus import BusPort
from rvpipe.stage import ExecuteBundle, MemoryBundle, forward_ctrl, kill_ctrl, live

class MemoryUnit(Component):
    """Performs the data access for the X/M bundle, if it has one.

    The effective address arrives in the bundle's `result`. The unit works out
    byte lanes from the access size and the low address bits, replicates store
    data across the lanes, and issues a single-cycle bus command.

    Rules:

    - Misaligned accesses (halfword at an odd address, word not on a 4-byte
      boundary) are not performed. The instruction is killed.
    - Unmapped addresses are silent: loads read zero, stores vanish, and the
      instruction retires as usual. The halt sentinel relies on this.
    - Stores to read-only windows are dropped before they reach the bus.
    - Nothing reaches the bus while the CPU is halting, so instructions behind
      the halting store have no side effects.

    Parameters
    ----------
    memory_map (MemoryMap): windows to check addresses against.

    Attributes
    ----------
    inp (input): X/M bundle.
    out (output): bundle to latch into M/W, including the raw bus response.
    halting (input): the CPU is stopping or has stopped.
    bus (port): data bus.
    """
    inp: In(ExecuteBundle)
    out: Out(MemoryBundle)
    halting: In(1)

    bus: Out(BusPort(addr = 30, data = 32))

    def __init__(self, memory_map):
        super().__init__()

        self.memory_map = memory_map

    def elaborate(self, platform):
        m = Module()

        inp = self.inp
        ea = inp.result
        size = inp.ctrl.funct3[:2]

        accessing = Signal(1)
        m.d.comb += accessing.eq(
            live(inp.ctrl) & (inp.ctrl.mem_read | inp.ctrl.mem_write)
        )

        aligned = Signal(1)
        lanes = Signal(4)
        store_data = Signal(32)
        data = inp.store_data
        m.d.comb += [
            aligned.eq(oneof([
                (size == 0b00, 1),
                (size == 0b01, ea[0] == 0),
                (size == 0b10, ea[:2] == 0),
            ])),
            lanes.eq(oneof([
                (size == 0b00, (Const(0b0001, 4) << ea[:2])[:4]),
                (size == 0b01, (Const(0b0011, 4) << Cat(0, ea[1]))[:4]),
                (size == 0b10, Const(0b1111, 4)),
            ])),
            store_data.eq(oneof([
                (size == 0b00, data[:8].replicate(4)),
                (size == 0b01, data[:16].replicate(2)),
                (size == 0b10, data),
            ])),
        ]

        mapped = Signal(1)
        writable = Signal(1)
        m.d.comb += [
            mapped.eq(any_of([r.hit(ea) for r in self.memory_map.regions])),
            writable.eq(any_of([r.hit(ea) for r in self.memory_map.regions
                                if r.writable])),
        ]

        performing = Signal(1)
        m.d.comb += performing.eq(accessing & aligned & mapped & ~self.halting)

        m.d.comb += [
            self.bus.cmd.payload.addr.eq(ea[2:]),
            self.bus.cmd.payload.data.eq(store_data),
        ]
        with m.If(inp.ctrl.mem_write):
            m.d.comb += [
                self.bus.cmd.valid.eq(performing & writable),
                self.bus.cmd.payload.lanes.eq(lanes),
            ]
        with m.Else():
            m.d.comb += self.bus.cmd.valid.eq(performing)

        forward_ctrl(m, self.out.ctrl, inp.ctrl)
        m.d.comb += [
            self.out.pc.eq(inp.pc),
            self.out.rd.eq(inp.rd),
            self.out.result.eq(ea),
            self.out.store_data.eq(store_data),
        ]
        with m.If(inp.ctrl.mem_write):
            m.d.comb += self.out.lanes.eq(lanes)
        with m.If(performing & inp.ctrl.mem_read):
            m.d.comb += self.out.load_word.eq(self.bus.resp)

        with m.If(accessing & ~aligned):
            kill_ctrl(m, self.out.ctrl)

        return m
