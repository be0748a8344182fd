# Hazard detection: decides when the decode stage has to wait.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import any_of

class HazardUnit(Component):
    """Watches the instruction in decode and the two instructions ahead of it,
    and raises `stall` when decode can't proceed this cycle.

    The consumer waits; the producer doesn't. On a stall the CPU holds the PC
    and F/D but *flushes* D/X, so the producing instruction keeps moving into
    a stage that forwarding can reach. Holding D/X as well would park the
    producer where nothing can forward from it, forever.

    Hazard classes:

    - load-use: D/X holds a load writing a register decode reads. Load data
      only exists after the memory stage.
    - branch-load: X/M holds a load writing a register that a branch or JALR
      in decode compares or jumps through. Decode-stage forwarding can only
      reach the writeback value of a load.
    - branch-ALU: D/X holds any other register write needed by a branch or
      JALR in decode. There's no path from execute back into decode.
    - raw (only without forwarding): D/X or X/M writes any register decode
      reads. The register file's write-through covers the M/W case.

    Parameters
    ----------
    forwarding (bool): whether the CPU has forwarding paths. Without them the
        raw class is added, and it subsumes the other three.

    Attributes
    ----------
    id_live (input): decode holds a real instruction.
    id_rs1, id_rs2 (input): its source registers.
    id_uses_rs1, id_uses_rs2 (input): whether it actually reads them.
    id_resolves (input): it's a branch or jump resolved in decode.
    dx_live, dx_rd, dx_mem_read, dx_writes (input): D/X bundle state.
    xm_live, xm_rd, xm_mem_read, xm_writes (input): X/M bundle state.
    stall (output): any hazard.
    load_use, branch_load, branch_alu, raw (output): individual classes.
    """
    id_live: In(1)
    id_rs1: In(5)
    id_rs2: In(5)
    id_uses_rs1: In(1)
    id_uses_rs2: In(1)
    id_resolves: In(1)

    dx_live: In(1)
    dx_rd: In(5)
    dx_mem_read: In(1)
    dx_writes: In(1)

    xm_live: In(1)
    xm_rd: In(5)
    xm_mem_read: In(1)
    xm_writes: In(1)

    stall: Out(1)
    load_use: Out(1)
    branch_load: Out(1)
    branch_alu: Out(1)
    raw: Out(1)

    def __init__(self, *, forwarding = True):
        super().__init__()

        self.forwarding = forwarding

    def elaborate(self, platform):
        m = Module()

        # Does a destination register feed decode? x0 never does.
        def feeds_decode(rd):
            return (rd != 0) & (
                (self.id_uses_rs1 & (rd == self.id_rs1))
                | (self.id_uses_rs2 & (rd == self.id_rs2))
            )

        dx_match = Signal(1)
        xm_match = Signal(1)
        m.d.comb += [
            dx_match.eq(self.id_live & self.dx_live & feeds_decode(self.dx_rd)),
            xm_match.eq(self.id_live & self.xm_live & feeds_decode(self.xm_rd)),
        ]

        m.d.comb += [
            self.load_use.eq(dx_match & self.dx_mem_read),
            self.branch_load.eq(self.id_resolves & xm_match & self.xm_mem_read),
            self.branch_alu.eq(self.id_resolves & dx_match & ~self.dx_mem_read
                               & self.dx_writes),
        ]

        if not self.forwarding:
            m.d.comb += self.raw.eq(
                (dx_match & self.dx_writes) | (xm_match & self.xm_writes)
            )

        m.d.comb += self.stall.eq(any_of([
            self.load_use,
            self.branch_load,
            self.branch_alu,
            self.raw,
        ]))

        return m
