# Writeback stage: the only place architectural state changes.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import AlwaysReady
from rvpipe.commit import CommitTrace
from rvpipe.regfile import RegWrite
from rvpipe.stage import MemoryBundle, live

class Writeback(Component):
    """Commits the M/W bundle.

    An instruction retires here in the cycle it occupies M/W, if it's live and
    the CPU hasn't halted. Retiring writes the register file (unless rd is x0)
    and pulses the commit trace.

    A retiring store to `halt_address` stops the CPU. `halting` goes high
    combinationally in that cycle so the rest of the pipeline freezes on the
    same clock edge, and `halted` latches on the edge and stays set until
    reset. The halting store itself retires; nothing after it does.

    Parameters
    ----------
    halt_address (integer): byte address of the halt sentinel.

    Attributes
    ----------
    inp (input): M/W bundle.
    rf_write (port): register file write.
    commit (port): retirement trace.
    value (output): the value being written back, for forwarding.
    halting (output): a halt is committing now, or already has.
    halted (output): the CPU has stopped.
    commit_pc (output): PC of the most recently retired instruction.
    """
    inp: In(MemoryBundle)

    rf_write: Out(AlwaysReady(RegWrite(5)))
    commit: Out(CommitTrace())

    value: Out(32)
    halting: Out(1)
    halted: Out(1)
    commit_pc: Out(32)

    def __init__(self, *, halt_address = 0xFFFF_FFFC):
        super().__init__()

        self.halt_address = halt_address

    def elaborate(self, platform):
        m = Module()

        inp = self.inp

        # Load data alignment and extension, selected by funct3 and the low
        # address bits. Byte and halfword loads pick their lane out of the
        # word the bus returned.
        offset = inp.result[:2]
        word = inp.load_word
        byte = word.word_select(offset, 8)
        half = word.word_select(offset[1], 16)
        loaded = Signal(32)
        with m.Switch(inp.ctrl.funct3):
            with m.Case(0b000): # LB
                m.d.comb += loaded.eq(byte.as_signed())
            with m.Case(0b001): # LH
                m.d.comb += loaded.eq(half.as_signed())
            with m.Case(0b100): # LBU
                m.d.comb += loaded.eq(byte)
            with m.Case(0b101): # LHU
                m.d.comb += loaded.eq(half)
            with m.Default(): # LW
                m.d.comb += loaded.eq(word)

        with m.If(inp.ctrl.mem_read):
            m.d.comb += self.value.eq(loaded)
        with m.Elif(inp.ctrl.is_jump):
            m.d.comb += self.value.eq(inp.pc + 4)
        with m.Else():
            m.d.comb += self.value.eq(inp.result)

        retiring = Signal(1)
        halt_now = Signal(1)
        m.d.comb += [
            retiring.eq(live(inp.ctrl) & ~self.halted),
            halt_now.eq(retiring & inp.ctrl.mem_write
                        & (inp.result == self.halt_address)),
            self.halting.eq(halt_now | self.halted),
        ]
        with m.If(halt_now):
            m.d.sync += self.halted.eq(1)

        m.d.comb += [
            self.rf_write.valid.eq(retiring & inp.ctrl.writes_register
                                   & (inp.rd != 0)),
            self.rf_write.payload.reg.eq(inp.rd),
            self.rf_write.payload.value.eq(self.value),
        ]

        order = Signal(32)
        with m.If(retiring):
            m.d.sync += [
                order.eq(order + 1),
                self.commit_pc.eq(inp.pc),
            ]

        c = self.commit
        m.d.comb += [
            c.order.eq(order),
            c.retired.eq(retiring),
            c.branch.eq(retiring & (inp.ctrl.is_branch | inp.ctrl.is_jump)),
            c.mispredict.eq(retiring & inp.ctrl.mispredicted),
            c.halt.eq(self.halting),
            c.pc.eq(inp.pc),
        ]
        with m.If(self.rf_write.valid):
            m.d.comb += [
                c.rd_addr.eq(inp.rd),
                c.rd_wdata.eq(self.value),
            ]
        with m.If(inp.ctrl.mem_read | inp.ctrl.mem_write):
            m.d.comb += c.mem_addr.eq(inp.result)
        with m.If(inp.ctrl.mem_write):
            m.d.comb += [
                c.mem_wmask.eq(inp.lanes),
                c.mem_wdata.eq(inp.store_data),
            ]

        return m
