# Decode stage: register read, immediate generation, and branch resolution.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import AlwaysReady, oneof
from rvpipe.decoder import Decoder, ImmediateDecoder, BranchComparator
from rvpipe.forward import FwdSel
from rvpipe.predictor import PredictorUpdate
from rvpipe.stage import (
    FetchBundle, DecodeBundle, SIDE_EFFECTS, live, kill_ctrl,
)

class Decode(Component):
    """Turns the F/D bundle into the D/X bundle, and resolves control flow.

    Branches and jumps are resolved here, one stage after fetch, so a wrong
    guess costs exactly one fetched instruction. Operands for that come from
    the forwarding unit's decode-side selectors: X/M result, M/W writeback
    value, or the register file. The hazard unit keeps decode stalled when
    none of those has the right value yet.

    Nothing is resolved while decode is stalled or the CPU is halting, and
    bubbles and killed bundles never resolve.

    Misprediction rules:

    - branch taken, and not predicted taken to the same target: redirect to
      the target.
    - branch not taken but predicted taken: redirect to PC+4.
    - jumps: always redirect to the target, never counted as mispredicted.
    - anything else predicted taken (a stale target buffer entry): redirect
      to PC+4.

    Parameters
    ----------
    has_predictor (bool): whether to mark mispredictions in the bundle. A CPU
        without a predictor still redirects on taken branches, but that's the
        normal cost of a branch, not a misprediction.

    Attributes
    ----------
    inp (input): F/D bundle.
    out (output): bundle to latch into D/X.
    stall (input): hazard stall.
    halting (input): the CPU is stopping or has stopped.
    rf_rs1, rf_rs2 (output): register numbers for the register file.
    rf_rs1_value, rf_rs2_value (input): register file contents.
    fwd_a, fwd_b (input): operand selectors from the forwarding unit.
    xm_value, mw_value (input): forwarding sources.
    redirect (output): new fetch PC.
    update (output): resolved outcome, to the predictor.
    rs1, rs2, uses_rs1, uses_rs2, resolves, live (output): for the hazard
        and forwarding units.
    """
    inp: In(FetchBundle)
    out: Out(DecodeBundle)

    stall: In(1)
    halting: In(1)

    rf_rs1: Out(5)
    rf_rs2: Out(5)
    rf_rs1_value: In(32)
    rf_rs2_value: In(32)

    fwd_a: In(FwdSel)
    fwd_b: In(FwdSel)
    xm_value: In(32)
    mw_value: In(32)

    redirect: Out(AlwaysReady(32))
    update: Out(AlwaysReady(PredictorUpdate))

    rs1: Out(5)
    rs2: Out(5)
    uses_rs1: Out(1)
    uses_rs2: Out(1)
    resolves: Out(1)
    live: Out(1)

    def __init__(self, *, has_predictor = False):
        super().__init__()

        self.has_predictor = has_predictor

    def elaborate(self, platform):
        m = Module()

        m.submodules.decoder = decoder = Decoder()
        m.submodules.imm = imm = ImmediateDecoder()
        m.submodules.comparator = comparator = BranchComparator()

        inp = self.inp
        d = decoder.out

        m.d.comb += [
            decoder.inst.eq(inp.inst),
            imm.inst.eq(inp.inst),
            imm.format.eq(d.imm_format),

            self.rf_rs1.eq(d.rs1),
            self.rf_rs2.eq(d.rs2),
        ]

        active = Signal(1)
        m.d.comb += [
            active.eq(live(inp.ctrl) & d.legal),

            self.live.eq(active),
            self.rs1.eq(d.rs1),
            self.rs2.eq(d.rs2),
            self.uses_rs1.eq(d.uses_rs1),
            self.uses_rs2.eq(d.uses_rs2),
            self.resolves.eq(d.is_b | d.is_jalr),
        ]

        # Branch operands.
        def select(sel, reg_value):
            return oneof([
                (sel == FwdSel.XM, self.xm_value),
                (sel == FwdSel.MW, self.mw_value),
            ], default = reg_value)

        a = Signal(32)
        b = Signal(32)
        m.d.comb += [
            a.eq(select(self.fwd_a, self.rf_rs1_value)),
            b.eq(select(self.fwd_b, self.rf_rs2_value)),

            comparator.funct3.eq(d.funct3),
            comparator.lhs.eq(a),
            comparator.rhs.eq(b),
        ]

        # Actual outcome.
        pc_plus_4 = Signal(32)
        taken = Signal(1)
        target = Signal(32)
        m.d.comb += pc_plus_4.eq(inp.pc + 4)
        with m.If(d.is_b):
            m.d.comb += [
                taken.eq(comparator.taken),
                target.eq(inp.pc + imm.b),
            ]
        with m.Elif(d.is_jal):
            m.d.comb += [
                taken.eq(1),
                target.eq(inp.pc + imm.j),
            ]
        with m.Elif(d.is_jalr):
            m.d.comb += [
                taken.eq(1),
                target.eq(Cat(0, (a + imm.i)[1:32])),
            ]

        # Compare with what fetch guessed.
        predicted_right = Signal(1)
        m.d.comb += predicted_right.eq(
            inp.pred_taken & (inp.pred_target == target)
        )

        redirect_to = Signal(32)
        redirect = Signal(1)
        mispredicted = Signal(1)
        with m.If(d.is_jump):
            # Even when fetch already followed a correct prediction. The
            # refetch costs one cycle per jump, and jumps never count as
            # mispredicted.
            m.d.comb += [
                redirect.eq(1),
                redirect_to.eq(target),
            ]
        with m.Elif(d.is_b & taken):
            m.d.comb += [
                redirect.eq(~predicted_right),
                mispredicted.eq(~predicted_right),
                redirect_to.eq(target),
            ]
        with m.Elif(inp.pred_taken):
            # Not-taken branch, or not a branch at all.
            m.d.comb += [
                redirect.eq(1),
                mispredicted.eq(1),
                redirect_to.eq(pc_plus_4),
            ]

        resolving = Signal(1)
        m.d.comb += resolving.eq(active & ~self.stall & ~self.halting)

        m.d.comb += [
            self.redirect.valid.eq(resolving & redirect),
            self.redirect.payload.eq(redirect_to),

            self.update.valid.eq(resolving & (d.is_b | d.is_jump)),
            self.update.payload.pc.eq(inp.pc),
            self.update.payload.taken.eq(taken),
            self.update.payload.target.eq(target),
            self.update.payload.index.eq(inp.pred_index),
        ]

        # Outgoing bundle.
        out = self.out
        m.d.comb += [
            out.pc.eq(inp.pc),
            out.rs1.eq(d.rs1),
            out.rs2.eq(d.rs2),
            out.rd.eq(d.rd),
            out.rs1_value.eq(self.rf_rs1_value),
            out.rs2_value.eq(self.rf_rs2_value),
            out.imm.eq(imm.imm),

            out.ctrl.is_branch.eq(d.is_b),
            out.ctrl.is_jump.eq(d.is_jump),
            out.ctrl.mem_read.eq(d.is_load),
            out.ctrl.mem_write.eq(d.is_store),
            out.ctrl.alu_op.eq(d.alu_op),
            out.ctrl.writes_register.eq(d.writes_rd),
            out.ctrl.funct3.eq(d.funct3),
            out.ctrl.a_src.eq(d.a_src),
            out.ctrl.b_src.eq(d.b_src),
        ]
        if self.has_predictor:
            m.d.comb += out.ctrl.mispredicted.eq(mispredicted)

        with m.If(~inp.ctrl.valid):
            m.d.comb += [
                out.ctrl.valid.eq(0),
                out.ctrl.bubble.eq(1),
            ]
            m.d.comb += [getattr(out.ctrl, f).eq(0) for f in SIDE_EFFECTS]
        with m.Elif(~d.legal):
            kill_ctrl(m, out.ctrl)
        with m.Else():
            m.d.comb += out.ctrl.valid.eq(1)

        return m
