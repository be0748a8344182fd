# Forwarding unit: picks operand sources for execute and for decode's branch
# comparator.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.enum import *

class FwdSel(Enum, shape = unsigned(2)):
    REG = 0 # value read from the register file
    XM = 1  # result held in X/M
    MW = 2  # writeback value of M/W

class ForwardingUnit(Component):
    """Operand source selection for both forwarding consumers.

    For every source register the newest producer wins: X/M, then M/W, then
    the register file. A producer is only eligible if it's live, writes a
    register, and that register isn't x0.

    Parameters
    ----------
    enabled (bool): when False, every selector is tied to REG and the hazard
        unit is expected to stall instead.

    Attributes
    ----------
    ex_rs1, ex_rs2 (input): source registers of the instruction in execute.
    id_rs1, id_rs2 (input): source registers of the instruction in decode.
    xm_live, xm_rd, xm_writes (input): X/M bundle state.
    mw_live, mw_rd, mw_writes (input): M/W bundle state.
    ex_a, ex_b (output): selectors for execute's rs1/rs2.
    id_a, id_b (output): selectors for decode's rs1/rs2.
    """
    ex_rs1: In(5)
    ex_rs2: In(5)
    id_rs1: In(5)
    id_rs2: In(5)

    xm_live: In(1)
    xm_rd: In(5)
    xm_writes: In(1)

    mw_live: In(1)
    mw_rd: In(5)
    mw_writes: In(1)

    ex_a: Out(FwdSel)
    ex_b: Out(FwdSel)
    id_a: Out(FwdSel)
    id_b: Out(FwdSel)

    def __init__(self, *, enabled = True):
        super().__init__()

        self.enabled = enabled

    def elaborate(self, platform):
        m = Module()

        if not self.enabled:
            # Outputs rest at REG.
            return m

        xm_eligible = Signal(1)
        mw_eligible = Signal(1)
        m.d.comb += [
            xm_eligible.eq(self.xm_live & self.xm_writes & (self.xm_rd != 0)),
            mw_eligible.eq(self.mw_live & self.mw_writes & (self.mw_rd != 0)),
        ]

        for (reg, sel) in [(self.ex_rs1, self.ex_a),
                           (self.ex_rs2, self.ex_b),
                           (self.id_rs1, self.id_a),
                           (self.id_rs2, self.id_b)]:
            with m.If(xm_eligible & (self.xm_rd == reg)):
                m.d.comb += sel.eq(FwdSel.XM)
            with m.Elif(mw_eligible & (self.mw_rd == reg)):
                m.d.comb += sel.eq(FwdSel.MW)
            with m.Else():
                m.d.comb += sel.eq(FwdSel.REG)

        return m
