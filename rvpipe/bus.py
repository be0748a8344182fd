from functools import reduce

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import AlwaysReady

class BusCmd(Signature):
    def __init__(self, *, addr, data):
        if isinstance(data, int):
            lanes = (data + 7) // 8
        else:
            lanes = (data.width + 7) // 8
        super().__init__({
            'addr': Out(addr),
            'lanes': Out(lanes),
            'data': Out(data)
        })

class BusPort(Signature):
    """Data-side bus, from the perspective of the initiator.

    A command with `lanes == 0` is a read; anything else writes the selected
    byte lanes. Unlike a registered memory, devices on this bus answer in the
    same cycle: `resp` is a combinational function of the command.
    """
    def __init__(self, *, addr, data):
        super().__init__({
            'cmd': Out(AlwaysReady(BusCmd(addr=addr, data=data))),
            'resp': In(data),
        })

# Instruction fetch port. Word addressed, read only, zero latency.
InstPort = Signature({
    'addr': Out(30),
    'data': In(32),
})

class Region:
    """One window of the data address space.

    Parameters
    ----------
    name (str): device name, used to attach a device in RegionFabric.
    base (int): byte address of the window; must be aligned to size.
    size (int): window size in bytes, a power of two, at least 4.
    writable (bool): if False, stores to the window are dropped by the
        load/store unit before they reach the bus.
    """
    def __init__(self, name, base, size, *, writable = True):
        assert size >= 4 and (size & (size - 1)) == 0, \
                f"window {name} size 0x{size:x} is not a power of two"
        assert base % size == 0, \
                f"window {name} base 0x{base:x} is not aligned to its size"
        self.name = name
        self.base = base
        self.size = size
        self.writable = writable

    @property
    def size_bits(self):
        return (self.size - 1).bit_length()

    @property
    def end(self):
        return self.base + self.size

    def hit(self, addr):
        """Builds a 1-bit signal that's high when byte address `addr` (a
        32-bit value) falls in this window."""
        return addr[self.size_bits:] == (self.base >> self.size_bits)

    def contains(self, addr):
        return self.base <= addr < self.end

    def __repr__(self):
        return f"Region({self.name!r}, 0x{self.base:08x}, 0x{self.size:x})"

class MemoryMap:
    """The CPU's view of the world.

    Instruction fetch sees only `text`. Loads and stores see `regions`; the
    two address spaces are separate, so `text` can overlap data windows.
    Anything in neither is unmapped.

    Parameters
    ----------
    text (Region): instruction ROM window.
    regions (list of Region): data and IO windows. Must not overlap.
    halt_address (int): byte address that stops the CPU when stored to.
    """
    def __init__(self, *, text, regions, halt_address = 0xFFFF_FFFC):
        regions = list(regions)
        ordered = sorted(regions, key = lambda r: r.base)
        for (a, b) in zip(ordered, ordered[1:]):
            assert a.end <= b.base, f"windows {a} and {b} overlap"
        names = [r.name for r in regions]
        assert len(set(names)) == len(names), "window names must be unique"

        self.text = text
        self.regions = regions
        self.halt_address = halt_address

    def __getitem__(self, name):
        for r in self.regions:
            if r.name == name:
                return r
        raise KeyError(name)

    def region_at(self, addr):
        for r in self.regions:
            if r.contains(addr):
                return r
        return None

    @staticmethod
    def default():
        return MemoryMap(
            text = Region("imem", 0x0000_0000, 16 * 1024, writable = False),
            regions = [
                Region("dmem", 0x0000_0000, 16 * 1024),
                Region("ledr", 0x1000_0000, 0x1000),
                Region("ledg", 0x1000_1000, 0x1000),
                Region("hex",  0x1000_2000, 0x1000),
                Region("lcd",  0x1000_3000, 0x1000),
                Region("sw",   0x1001_0000, 0x1000, writable = False),
                Region("perf", 0x1002_0000, 0x1000),
            ],
        )

class RegionFabric(Elaboratable):
    """Routes a full-width data bus to devices by memory map window.

    Every device gets the low address bits of the command; only the one whose
    window matches sees `valid`. Responses are gated by the same match, so
    this fabric adds no latency and no state. Unmapped reads return zero.

    Parameters
    ----------
    memory_map (MemoryMap): windows to decode.
    devices (dict of str to BusPort): device-side ports keyed by window name.
        A device may decode fewer address bits than its window, in which case
        it repeats within the window.

    Attributes
    ----------
    bus: BusPort with 30 (word) address bits and a 32-bit data path.
    """
    def __init__(self, memory_map, devices):
        for r in memory_map.regions:
            assert r.name in devices, f"no device attached to window {r.name}"
        for name, d in devices.items():
            width = d.cmd.payload.addr.shape().width
            window = memory_map[name]
            assert width <= window.size_bits - 2, \
                    f"device {name} decodes {width} bits but window is 0x{window.size:x} bytes"
        print(f"fabric configured for {len(devices)} windows")
        self.memory_map = memory_map
        self.devices = devices

        self.bus = BusPort(addr = 30, data = 32).flip().create()

    def elaborate(self, platform):
        m = Module()

        addr = Cat(Const(0, 2), self.bus.cmd.payload.addr)

        responses = []
        for r in self.memory_map.regions:
            d = self.devices[r.name]
            width = d.cmd.payload.addr.shape().width

            sel = Signal(1, name = f"sel_{r.name}")
            m.d.comb += [
                sel.eq(r.hit(addr)),
                # Fan out the incoming address, data, and lanes to every device.
                d.cmd.payload.addr.eq(self.bus.cmd.payload.addr[:width]),
                d.cmd.payload.data.eq(self.bus.cmd.payload.data),
                d.cmd.payload.lanes.eq(self.bus.cmd.payload.lanes),
                # Only propagate cmd valid to the specific addressed device.
                d.cmd.valid.eq(self.bus.cmd.valid & sel),
            ]
            responses.append(d.resp & sel.replicate(32))

        m.d.comb += self.bus.resp.eq(reduce(lambda a, b: a | b, responses))

        return m
