# Fetch stage: owns the PC.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import AlwaysReady
from rvpipe.bus import InstPort
from rvpipe.predictor import MAX_INDEX_BITS
from rvpipe.stage import FetchBundle

class Fetch(Component):
    """Reads the instruction at PC and picks the next PC.

    Next PC, highest priority first:

    1. hold, while halting;
    2. the redirect from decode;
    3. hold, while decode is stalled;
    4. the predictor's target, if it predicts taken;
    5. PC+4.

    A PC that isn't word aligned, or that points outside the program ROM,
    produces a killed bundle instead of an instruction. Fetch carries on at
    PC+4 regardless.

    Parameters
    ----------
    text (Region): the program ROM's window.
    reset_vector (integer): PC after reset.

    Attributes
    ----------
    pc (Signal): the program counter.
    stall (input): hazard stall from decode.
    halting (input): the CPU is stopping or has stopped.
    redirect (input): target from branch resolution; wins over stall.
    pred_pc (output): PC presented to the predictor.
    pred_target, pred_valid (input): the predictor's answer for pred_pc.
    pred_index (input): the counter the answer came from, kept with the
        instruction so the update trains the same one.
    imem (port): instruction memory.
    out (output): bundle to latch into F/D.
    """
    stall: In(1)
    halting: In(1)
    redirect: In(AlwaysReady(32))

    pred_pc: Out(32)
    pred_target: In(32)
    pred_valid: In(1)
    pred_index: In(MAX_INDEX_BITS)

    imem: Out(InstPort)

    out: Out(FetchBundle)

    def __init__(self, text, *, reset_vector = 0):
        super().__init__()

        assert reset_vector & 0b11 == 0, \
                f"reset vector 0x{reset_vector:08x} is not word aligned"
        self.text = text
        self.pc = Signal(32, init = reset_vector)

    def elaborate(self, platform):
        m = Module()

        pc = self.pc
        pc_plus_4 = Signal(32)
        legal = Signal(1)
        m.d.comb += [
            pc_plus_4.eq(pc + 4),
            legal.eq((pc[:2] == 0) & self.text.hit(pc)),

            self.imem.addr.eq(pc[2:]),
            self.pred_pc.eq(pc),
        ]

        m.d.comb += self.out.pc.eq(pc)
        with m.If(legal):
            m.d.comb += [
                self.out.ctrl.valid.eq(1),
                self.out.inst.eq(self.imem.data),
                self.out.pred_taken.eq(self.pred_valid),
                self.out.pred_target.eq(self.pred_target),
                self.out.pred_index.eq(self.pred_index),
            ]
        with m.Else():
            m.d.comb += self.out.ctrl.kill.eq(1)

        with m.If(self.halting):
            pass
        with m.Elif(self.redirect.valid):
            m.d.sync += pc.eq(self.redirect.payload)
        with m.Elif(self.stall):
            pass
        with m.Elif(legal & self.pred_valid):
            m.d.sync += pc.eq(self.pred_target)
        with m.Else():
            m.d.sync += pc.eq(pc_plus_4)

        return m
