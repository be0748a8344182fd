# A five-stage pipelined RV32I core.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe.bus import BusPort, InstPort, MemoryMap
from rvpipe.commit import CommitTrace
from rvpipe.decode import Decode
from rvpipe.execute import Execute
from rvpipe.fetch import Fetch
from rvpipe.forward import ForwardingUnit
from rvpipe.hazard import HazardUnit
from rvpipe.lsu import MemoryUnit
from rvpipe.regfile import RegFile
from rvpipe.stage import (
    FetchBundle,
    DecodeBundle,
    ExecuteBundle,
    MemoryBundle,
    PipelineRegister,
    live,
)
from rvpipe.variant import Variant
from rvpipe.writeback import Writeback

# Note: debug port signals are directional from the perspective of the DEBUG
# PROBE, not the CPU.
DebugPort = Signature({
    # Register number to read. Reads are combinational and show committed
    # state, so they're most useful once the CPU has halted.
    'reg_addr': Out(5),
    # Contents of that register.
    'reg_value': In(32),
})

class Cpu(Component):
    """An RV32I core with the classic five stages: fetch, decode, execute,
    memory, writeback.

    Every piece of state (PC, the four pipeline registers, register file,
    predictor tables, halt flag) is in the sync domain, and every decision
    made in a cycle is a combinational function of that state. Nothing
    decided in a cycle can feed back into itself.

    Branches and jumps resolve in decode. With a predictor, fetch follows the
    prediction and decode corrects it; without one, fetch always guesses
    not-taken. Either way, a redirect squashes just the instruction in F/D.

    Parameters
    ----------
    variant (Variant, int, or str): microarchitecture, see Variant.
    reset_vector (int): PC after reset.
    memory_map (MemoryMap): where things live; defaults to
        MemoryMap.default().
    predictor_entries (int): predictor table size, or None for the variant's
        default.

    Attributes
    ----------
    imem (port): instruction fetch port.
    bus (port): data bus, 32-bit data path and 30 word address bits.
    commit (out): retirement trace.
    halted (out): raised once a store to the halt address has retired.
    stall (out): decode is stalled on a hazard this cycle (never while
        halting).
    flush (out): decode is redirecting fetch this cycle.
    fetch_pc (out): current fetch PC.
    commit_pc (out): PC of the last retired instruction.
    variant_id (out): the variant's integer id.
    debug (port): register inspection for testbenches.
    """
    imem: Out(InstPort)
    bus: Out(BusPort(addr = 30, data = 32))

    commit: Out(CommitTrace())
    halted: Out(1)
    stall: Out(1)
    flush: Out(1)
    fetch_pc: Out(32)
    commit_pc: Out(32)
    variant_id: Out(3)

    debug: In(DebugPort)

    def __init__(self, *,
                 variant = Variant.FORWARD,
                 reset_vector = 0,
                 memory_map = None,
                 predictor_entries = None):
        # Resolve the variant first, so that a bad one fails before anything
        # gets built.
        self.variant = Variant.resolve(variant)
        self.memory_map = memory_map or MemoryMap.default()

        super().__init__()

        self.rf = RegFile()
        self.predictor = self.variant.predictor(entries = predictor_entries)
        self.fetch = Fetch(self.memory_map.text, reset_vector = reset_vector)
        self.decode = Decode(has_predictor = self.variant.predicts)
        self.execute = Execute()
        self.lsu = MemoryUnit(self.memory_map)
        self.writeback = Writeback(halt_address = self.memory_map.halt_address)

        self.hazard = HazardUnit(forwarding = self.variant.forwarding)
        self.forwarding = ForwardingUnit(enabled = self.variant.forwarding)

        self.fd = PipelineRegister(FetchBundle)
        self.dx = PipelineRegister(DecodeBundle)
        self.xm = PipelineRegister(ExecuteBundle)
        self.mw = PipelineRegister(MemoryBundle)

    def elaborate(self, platform):
        m = Module()

        m.submodules.regfile = rf = self.rf
        m.submodules.predictor = predictor = self.predictor
        m.submodules.fetch = fetch = self.fetch
        m.submodules.decode = decode = self.decode
        m.submodules.execute = execute = self.execute
        m.submodules.lsu = lsu = self.lsu
        m.submodules.writeback = wb = self.writeback
        m.submodules.hazard = hazard = self.hazard
        m.submodules.forwarding = fwd = self.forwarding
        m.submodules.fd = fd = self.fd
        m.submodules.dx = dx = self.dx
        m.submodules.xm = xm = self.xm
        m.submodules.mw = mw = self.mw

        halting = wb.halting

        # Stage chain.
        m.d.comb += [
            fd.incoming.eq(fetch.out),
            decode.inp.eq(fd.current),
            dx.incoming.eq(decode.out),
            execute.inp.eq(dx.current),
            xm.incoming.eq(execute.out),
            lsu.inp.eq(xm.current),
            mw.incoming.eq(lsu.out),
            wb.inp.eq(mw.current),
        ]

        # Stall and flush. A hazard holds the front of the pipeline and lets
        # a bubble into D/X; halting freezes everything.
        m.d.comb += [
            fd.flush.eq(decode.redirect.valid),
            fd.stall.eq(hazard.stall | halting),
            dx.flush.eq(hazard.stall & ~halting),
            dx.stall.eq(halting),
            xm.stall.eq(halting),
            mw.stall.eq(halting),
        ]

        # Fetch and the predictor.
        m.d.comb += [
            fetch.stall.eq(hazard.stall),
            fetch.halting.eq(halting),
            fetch.redirect.valid.eq(decode.redirect.valid),
            fetch.redirect.payload.eq(decode.redirect.payload),

            predictor.query_pc.eq(fetch.pred_pc),
            fetch.pred_target.eq(predictor.query_target),
            fetch.pred_valid.eq(predictor.query_valid),
            fetch.pred_index.eq(predictor.query_index),

            predictor.update.valid.eq(decode.update.valid),
            predictor.update.payload.pc.eq(decode.update.payload.pc),
            predictor.update.payload.taken.eq(decode.update.payload.taken),
            predictor.update.payload.target.eq(decode.update.payload.target),
            predictor.update.payload.index.eq(decode.update.payload.index),

            self.imem.addr.eq(fetch.imem.addr),
            fetch.imem.data.eq(self.imem.data),
        ]

        # Decode and the register file.
        m.d.comb += [
            decode.stall.eq(hazard.stall),
            decode.halting.eq(halting),

            rf.rs1.eq(decode.rf_rs1),
            rf.rs2.eq(decode.rf_rs2),
            decode.rf_rs1_value.eq(rf.rs1_value),
            decode.rf_rs2_value.eq(rf.rs2_value),

            rf.write_cmd.valid.eq(wb.rf_write.valid),
            rf.write_cmd.payload.reg.eq(wb.rf_write.payload.reg),
            rf.write_cmd.payload.value.eq(wb.rf_write.payload.value),

            rf.debug_reg.eq(self.debug.reg_addr),
            self.debug.reg_value.eq(rf.debug_value),
        ]

        # Hazard detection watches decode, D/X and X/M.
        m.d.comb += [
            hazard.id_live.eq(decode.live),
            hazard.id_rs1.eq(decode.rs1),
            hazard.id_rs2.eq(decode.rs2),
            hazard.id_uses_rs1.eq(decode.uses_rs1),
            hazard.id_uses_rs2.eq(decode.uses_rs2),
            hazard.id_resolves.eq(decode.resolves),

            hazard.dx_live.eq(live(dx.current.ctrl)),
            hazard.dx_rd.eq(dx.current.rd),
            hazard.dx_mem_read.eq(dx.current.ctrl.mem_read),
            hazard.dx_writes.eq(dx.current.ctrl.writes_register),

            hazard.xm_live.eq(live(xm.current.ctrl)),
            hazard.xm_rd.eq(xm.current.rd),
            hazard.xm_mem_read.eq(xm.current.ctrl.mem_read),
            hazard.xm_writes.eq(xm.current.ctrl.writes_register),
        ]

        # Forwarding serves execute's operands and decode's branch operands
        # from the same two sources.
        m.d.comb += [
            fwd.ex_rs1.eq(dx.current.rs1),
            fwd.ex_rs2.eq(dx.current.rs2),
            fwd.id_rs1.eq(decode.rs1),
            fwd.id_rs2.eq(decode.rs2),

            fwd.xm_live.eq(live(xm.current.ctrl)),
            fwd.xm_rd.eq(xm.current.rd),
            fwd.xm_writes.eq(xm.current.ctrl.writes_register),
            fwd.mw_live.eq(live(mw.current.ctrl)),
            fwd.mw_rd.eq(mw.current.rd),
            fwd.mw_writes.eq(mw.current.ctrl.writes_register),

            execute.fwd_a.eq(fwd.ex_a),
            execute.fwd_b.eq(fwd.ex_b),
            execute.xm_value.eq(xm.current.result),
            execute.mw_value.eq(wb.value),

            decode.fwd_a.eq(fwd.id_a),
            decode.fwd_b.eq(fwd.id_b),
            decode.xm_value.eq(xm.current.result),
            decode.mw_value.eq(wb.value),
        ]

        # Memory stage and the data bus.
        m.d.comb += [
            lsu.halting.eq(halting),

            self.bus.cmd.valid.eq(lsu.bus.cmd.valid),
            self.bus.cmd.payload.addr.eq(lsu.bus.cmd.payload.addr),
            self.bus.cmd.payload.lanes.eq(lsu.bus.cmd.payload.lanes),
            self.bus.cmd.payload.data.eq(lsu.bus.cmd.payload.data),
            lsu.bus.resp.eq(self.bus.resp),
        ]

        # Outputs.
        m.d.comb += [
            getattr(self.commit, name).eq(getattr(wb.commit, name))
            for name in CommitTrace().members
        ]
        m.d.comb += [
            self.halted.eq(wb.halted),
            self.stall.eq(hazard.stall & ~halting),
            self.flush.eq(decode.redirect.valid),
            self.fetch_pc.eq(fetch.pc),
            self.commit_pc.eq(wb.commit_pc),
            self.variant_id.eq(int(self.variant)),
        ]

        return m
