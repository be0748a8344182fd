# 32-bit x 32 architectural register file.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.memory import Memory

from rvpipe import AlwaysReady, mux

def RegWrite(addrbits = 5):
    return Signature({
        'reg': Out(addrbits),
        'value': Out(32),
    })

class RegFile(Component):
    """Register file with two read ports for decode and one for debug.

    Reads are combinational. A read of the register being written this cycle
    returns the incoming value: the write lands on the clock edge, but the
    decode stage needs it now, or an instruction three behind its producer
    would latch a stale value with no forwarding path left to fix it.

    Attributes
    ----------
    rs1, rs2 (input): register numbers to read.
    rs1_value, rs2_value (output): their contents.
    debug_reg (input): register number for the debug read port.
    debug_value (output): its contents (no bypass; shows committed state).
    write_cmd (port): writes from the writeback stage.
    """
    rs1: In(5)
    rs2: In(5)
    rs1_value: Out(32)
    rs2_value: Out(32)

    debug_reg: In(5)
    debug_value: Out(32)

    write_cmd: In(AlwaysReady(RegWrite(5)))

    def __init__(self):
        super().__init__()

        self.mem = Memory(shape = unsigned(32), depth = 32, init = [])

    def elaborate(self, platform):
        m = Module()

        m.submodules.mem = mem = self.mem

        wp = mem.write_port()
        m.d.comb += [
            wp.addr.eq(self.write_cmd.payload.reg),
            wp.data.eq(self.write_cmd.payload.value),
            # Block writes to x0, whatever the pipeline asks for.
            wp.en.eq((self.write_cmd.payload.reg != 0) & self.write_cmd.valid),
        ]

        writing = Signal(1)
        m.d.comb += writing.eq(self.write_cmd.valid
                               & (self.write_cmd.payload.reg != 0))

        for (addr, value) in [(self.rs1, self.rs1_value),
                              (self.rs2, self.rs2_value)]:
            rp = mem.read_port(domain = "comb")
            m.d.comb += rp.addr.eq(addr)
            with m.If(addr == 0):
                m.d.comb += value.eq(0)
            with m.Elif(writing & (self.write_cmd.payload.reg == addr)):
                m.d.comb += value.eq(self.write_cmd.payload.value)
            with m.Else():
                m.d.comb += value.eq(rp.data)

        debug_rp = mem.read_port(domain = "comb")
        m.d.comb += [
            debug_rp.addr.eq(self.debug_reg),
            self.debug_value.eq(mux(self.debug_reg == 0, Const(0, 32),
                                    debug_rp.data)),
        ]

        return m

