# The CPU with its memories and peripherals, ready to simulate.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe.bus import MemoryMap, RegionFabric
from rvpipe.counters import PerfCounters
from rvpipe.cpu import Cpu
from rvpipe.gpio import InputPort32, OutputPort32
from rvpipe.mem import DataMemory, InstructionMemory
from rvpipe.variant import Variant

class Soc(Elaboratable):
    """A Cpu wired to program ROM, data RAM, and the IO windows of its memory
    map.

    Parameters
    ----------
    variant (Variant, int, or str): passed to Cpu.
    program (list of int): instruction words, loaded at the start of the text
        window.
    data (list of int): initial RAM contents, in words.
    memory_map (MemoryMap): defaults to MemoryMap.default(). The map must have
        windows named dmem, ledr, ledg, hex, lcd, sw and perf.
    reset_vector (int): passed to Cpu.
    predictor_entries (int or None): passed to Cpu.

    Attributes
    ----------
    cpu, rom, ram (components): core and memories.
    ledr, ledg, hex, lcd (OutputPort32): output windows; `.pins` carries the
        current value.
    switches (InputPort32): input window; drive `.pins`.
    counters (PerfCounters): performance counters.
    """
    def __init__(self, *,
                 variant = Variant.FORWARD,
                 program = (),
                 data = (),
                 memory_map = None,
                 reset_vector = 0,
                 predictor_entries = None):
        self.memory_map = memory_map = memory_map or MemoryMap.default()

        self.cpu = Cpu(
            variant = variant,
            reset_vector = reset_vector,
            memory_map = memory_map,
            predictor_entries = predictor_entries,
        )
        self.rom = InstructionMemory(
            depth = memory_map.text.size // 4,
            contents = program,
        )
        self.ram = DataMemory(
            depth = memory_map["dmem"].size // 4,
            contents = data,
        )
        self.ledr = OutputPort32()
        self.ledg = OutputPort32()
        self.hex = OutputPort32()
        self.lcd = OutputPort32()
        self.switches = InputPort32()
        self.counters = PerfCounters()

        self.fabric = RegionFabric(memory_map, {
            "dmem": self.ram.bus,
            "ledr": self.ledr.bus,
            "ledg": self.ledg.bus,
            "hex": self.hex.bus,
            "lcd": self.lcd.bus,
            "sw": self.switches.bus,
            "perf": self.counters.bus,
        })

    def elaborate(self, platform):
        m = Module()

        m.submodules.cpu = cpu = self.cpu
        m.submodules.rom = rom = self.rom
        m.submodules.ram = self.ram
        m.submodules.ledr = self.ledr
        m.submodules.ledg = self.ledg
        m.submodules.hex = self.hex
        m.submodules.lcd = self.lcd
        m.submodules.switches = self.switches
        m.submodules.counters = counters = self.counters
        m.submodules.fabric = fabric = self.fabric

        connect(m, cpu.imem, rom.bus)
        connect(m, cpu.bus, fabric.bus)

        m.d.comb += [
            counters.retired.eq(cpu.commit.retired),
            counters.stall.eq(cpu.stall),
            counters.mispredict.eq(cpu.commit.mispredict),
            counters.halted.eq(cpu.halted),
        ]

        return m
