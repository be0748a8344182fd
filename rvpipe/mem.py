# Instruction ROM and data RAM with the rvpipe bus interfaces.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.memory import Memory

from rvpipe.bus import BusPort, InstPort

class InstructionMemory(Component):
    """Program ROM on the instruction fetch port.

    Reads are combinational, so the fetch stage sees the word for its PC in
    the same cycle. Addresses past the end of the ROM wrap; the fetch stage is
    responsible for never treating those as legal.

    Parameters
    ----------
    depth (integer): number of 32-bit words. If omitted, contents must be
        provided, and depth is inferred from len(contents).
    contents (list of integer): program words. Missing words read as zero,
        which is not a legal instruction.

    Attributes
    ----------
    bus: InstPort, flipped.
    """
    bus: In(InstPort)

    def __init__(self, *,
                 depth = None,
                 contents = ()):
        super().__init__()

        contents = list(contents)
        if depth is None:
            assert len(contents) > 0, "either depth or contents must be provided"
            depth = len(contents)
        assert len(contents) <= depth, \
                f"program is {len(contents)} words but ROM holds {depth}"

        self.depth = depth
        self.addr_bits = (depth - 1).bit_length()

        self.m = Memory(
            shape = unsigned(32),
            depth = depth,
            init = contents,
        )

    def elaborate(self, platform):
        m = Module()

        m.submodules.m = self.m

        rp = self.m.read_port(domain = "comb")
        m.d.comb += [
            rp.addr.eq(self.bus.addr[:self.addr_bits]),
            self.bus.data.eq(rp.data),
        ]

        return m

class DataMemory(Component):
    """A dead-simple 32-bit-wide RAM with byte write strobes.

    Parameters
    ----------
    depth (integer): number of 32-bit words in the memory. If omitted,
        contents must be provided, and depth is inferred from len(contents).
    contents (list of integer): initialization contents of the memory. If
        omitted, depth must be provided, and the RAM is implicitly zeroed.

    Attributes
    ----------
    bus: a BusPort with the minimum number of addr bits required to address
        'depth' words, and a 32-bit data path.
    inspect_addr (input): word address for the inspection port, which lets a
        testbench look at memory without going through the CPU.
    inspect_data (output): contents of that word.
    """
    inspect_data: Out(32)

    def __init__(self, *,
                 depth = None,
                 contents = ()):
        contents = list(contents)
        if depth is None:
            assert len(contents) > 0, "either depth or contents must be provided"
            depth = len(contents)
        assert len(contents) <= depth, \
                f"{len(contents)} words of initial data but RAM holds {depth}"

        addr_bits = (depth - 1).bit_length()
        super().__init__()

        self.depth = depth
        self.addr_bits = addr_bits
        self.bus = BusPort(addr = addr_bits, data = 32).flip().create()
        self.inspect_addr = Signal(addr_bits)

        self.m = Memory(
            shape = unsigned(32),
            depth = depth,
            init = contents,
        )

    def elaborate(self, platform):
        m = Module()

        m.submodules.m = self.m

        rp = self.m.read_port(domain = "comb")
        wp = self.m.write_port(granularity = 8)
        ip = self.m.read_port(domain = "comb")

        m.d.comb += [
            rp.addr.eq(self.bus.cmd.payload.addr),
            self.bus.resp.eq(rp.data),

            wp.addr.eq(self.bus.cmd.payload.addr),
            wp.data.eq(self.bus.cmd.payload.data),
            wp.en.eq(self.bus.cmd.payload.lanes
                     & self.bus.cmd.valid.replicate(4)),

            ip.addr.eq(self.inspect_addr),
            self.inspect_data.eq(ip.data),
        ]

        return m
