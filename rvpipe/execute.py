# Execute stage: the ALU and its operand muxes.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import oneof
from rvpipe.decoder import AluOp, ASrc, BSrc
from rvpipe.forward import FwdSel
from rvpipe.stage import DecodeBundle, ExecuteBundle, forward_ctrl

class Alu(Component):
    """Single-cycle 32-bit ALU.

    Subtraction is computed as A + ~B + 1; the same 33-bit difference serves
    SLT and SLTU. Shifts use the low five bits of B.

    Attributes
    ----------
    op (input): operation.
    a, b (input): operands.
    result (output): a op b.
    """
    op: In(AluOp)
    a: In(32)
    b: In(32)

    result: Out(32)

    def elaborate(self, platform):
        m = Module()

        a = self.a
        b = self.b

        difference = Signal(33)
        signed_less_than = Signal(1)
        m.d.comb += difference.eq(a + Cat(~b, 1) + 1)
        with m.If(a[31] ^ b[31]):
            m.d.comb += signed_less_than.eq(a[31])
        with m.Else():
            m.d.comb += signed_less_than.eq(difference[32])

        shamt = b[:5]

        with m.Switch(self.op):
            with m.Case(AluOp.ADD):
                m.d.comb += self.result.eq(a + b)
            with m.Case(AluOp.SUB):
                m.d.comb += self.result.eq(difference[:32])
            with m.Case(AluOp.AND):
                m.d.comb += self.result.eq(a & b)
            with m.Case(AluOp.OR):
                m.d.comb += self.result.eq(a | b)
            with m.Case(AluOp.XOR):
                m.d.comb += self.result.eq(a ^ b)
            with m.Case(AluOp.SLL):
                m.d.comb += self.result.eq(a << shamt)
            with m.Case(AluOp.SRL):
                m.d.comb += self.result.eq(a >> shamt)
            with m.Case(AluOp.SRA):
                m.d.comb += self.result.eq(a.as_signed() >> shamt)
            with m.Case(AluOp.SLT):
                m.d.comb += self.result.eq(signed_less_than)
            with m.Case(AluOp.SLTU):
                m.d.comb += self.result.eq(difference[32])

        return m

class Execute(Component):
    """Computes the ALU result for the D/X bundle.

    Register operands are forwarded from X/M or M/W when the forwarding unit
    says so. Loads and stores come out with their effective address in
    `result`; jumps come out with their return address, PC+4, since the ALU
    result they'd otherwise carry (a target) was only needed in decode.

    Attributes
    ----------
    inp (input): D/X bundle.
    out (output): bundle to latch into X/M.
    fwd_a, fwd_b (input): operand selectors from the forwarding unit.
    xm_value, mw_value (input): forwarding sources.
    """
    inp: In(DecodeBundle)
    out: Out(ExecuteBundle)

    fwd_a: In(FwdSel)
    fwd_b: In(FwdSel)
    xm_value: In(32)
    mw_value: In(32)

    def elaborate(self, platform):
        m = Module()

        m.submodules.alu = alu = Alu()

        inp = self.inp

        def select(sel, reg_value):
            return oneof([
                (sel == FwdSel.XM, self.xm_value),
                (sel == FwdSel.MW, self.mw_value),
            ], default = reg_value)

        rs1 = Signal(32)
        rs2 = Signal(32)
        m.d.comb += [
            rs1.eq(select(self.fwd_a, inp.rs1_value)),
            rs2.eq(select(self.fwd_b, inp.rs2_value)),
        ]

        with m.Switch(inp.ctrl.a_src):
            with m.Case(ASrc.RS1):
                m.d.comb += alu.a.eq(rs1)
            with m.Case(ASrc.PC):
                m.d.comb += alu.a.eq(inp.pc)
            with m.Case(ASrc.ZERO):
                m.d.comb += alu.a.eq(0)

        with m.Switch(inp.ctrl.b_src):
            with m.Case(BSrc.RS2):
                m.d.comb += alu.b.eq(rs2)
            with m.Case(BSrc.IMM):
                m.d.comb += alu.b.eq(inp.imm)

        m.d.comb += alu.op.eq(inp.ctrl.alu_op)

        forward_ctrl(m, self.out.ctrl, inp.ctrl)
        m.d.comb += [
            self.out.pc.eq(inp.pc),
            self.out.rd.eq(inp.rd),
            self.out.store_data.eq(rs2),
        ]
        with m.If(inp.ctrl.is_jump):
            m.d.comb += self.out.result.eq(inp.pc + 4)
        with m.Else():
            m.d.comb += self.out.result.eq(alu.result)

        return m
