from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import mux, oneof
from rvpipe.bus import BusPort

class OutputPort32(Component):
    """A block of general-purpose outputs that can be changed simultaneously.

    Memory Map
    ----------
    +0  sets pins when written
    +4  ORs value with current pin state
    +8  ANDs the complement of the value written with the current pin state.
    +C  XORs value with the current pin state

    All registers support byte and halfword writes to affect only some of the
    pins.

    Parameters
    ----------
    pins (integer): number of pins to implement (1-32)
    read_back (boolean): when True (default), the state of the pins can be read
        back. When False, reads always return zero.

    Attributes
    ----------
    bus (port): connection to bus fabric
    pins (signal array): the output pins
    """
    bus: In(BusPort(addr = 2, data = 32))

    def __init__(self, pins = 32, read_back = True):
        assert 1 <= pins <= 32
        super().__init__()
        self.pins = Signal(pins)
        self.read_back = read_back

    def elaborate(self, platform):
        m = Module()

        a = self.bus.cmd.payload.addr
        d = self.bus.cmd.payload.data
        # Work on a full word so every lane exists; only the implemented pins
        # are kept.
        state = Signal(32)
        m.d.comb += state.eq(self.pins)

        updated = Signal(32)
        for lane in range(4):
            bits = slice(lane * 8, lane * 8 + 8)
            m.d.comb += updated[bits].eq(mux(
                self.bus.cmd.valid & self.bus.cmd.payload.lanes[lane],
                oneof([
                    (a == 1, state[bits] | d[bits]),
                    (a == 2, state[bits] & ~d[bits]),
                    (a == 3, state[bits] ^ d[bits]),
                ], default = d[bits]),
                state[bits],
            ))
        m.d.sync += self.pins.eq(updated)

        if self.read_back:
            # Every register reads back as the pins.
            m.d.comb += self.bus.resp.eq(self.pins)

        return m

class InputPort32(Component):
    """A simple input port peripheral. Can read the state of pins.

    Memory Map
    ----------
    +00: pins (read only, writes ignored)

    Parameters
    ----------
    pins (integer): number of pins to implement, 1-32.

    Attributes
    ----------
    bus (port): connection to the fabric.
    pins (signal array): input from pins.
    """
    bus: In(BusPort(addr = 0, data = 32))

    def __init__(self, pins = 32):
        assert 1 <= pins <= 32
        super().__init__()
        self.pins = Signal(pins)

    def elaborate(self, platform):
        m = Module()

        # Register inputs to cut the path from pins, and also to avoid leaking
        # metastability. A program sees switch changes one cycle late.
        pins_r = Signal(self.pins.shape().width)
        m.d.sync += pins_r.eq(self.pins)

        m.d.comb += self.bus.resp.eq(pins_r)

        return m
