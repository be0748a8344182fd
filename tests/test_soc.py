from rvpipe.variant import Variant

from tests.rv32i import Asm
from tests.harness import run_program

LEDR = 0x1000_0000
LEDG = 0x1000_1000
HEX = 0x1000_2000
LCD = 0x1000_3000
SW = 0x1001_0000
PERF = 0x1002_0000

def test_output_ports():
    a = Asm()
    a.lui(5, LEDR)
    a.addi(6, 0, 0x41)
    a.sb(6, 5, 0)           # set: 0x41
    a.addi(6, 0, 0x100)
    a.sw(6, 5, 4)           # or: 0x141
    a.addi(6, 0, 1)
    a.sw(6, 5, 8)           # and-not: 0x140
    a.addi(6, 0, 0x7FF)
    a.sw(6, 5, 12)          # xor: 0x6BF
    a.lw(7, 5, 0)           # read back
    a.lui(8, LEDG)
    a.sh(6, 8, 2)           # upper half only
    a.lui(8, HEX)
    a.sw(6, 8, 0)
    a.lui(8, LCD)
    a.sb(6, 8, 3)
    a.halt()

    run = run_program(a.assemble())
    assert run.leds["ledr"] == 0x6BF
    assert run.regs[7] == 0x6BF
    assert run.leds["ledg"] == 0x07FF_0000
    assert run.leds["hex"] == 0x7FF
    assert run.leds["lcd"] == 0xFF00_0000

def test_switches_are_read_only():
    a = Asm()
    a.lui(8, SW)
    a.lw(9, 8, 0)
    a.addi(6, 0, -1)
    a.sw(6, 8, 0)
    a.lw(10, 8, 0)
    a.lbu(11, 8, 1)
    a.halt()

    run = run_program(a.assemble(), switches = 0x1234_5678)
    assert run.regs[9] == 0x1234_5678
    assert run.regs[10] == 0x1234_5678
    assert run.regs[11] == 0x56

def test_perf_counters_through_the_bus():
    a = Asm()
    a.lui(11, PERF)
    a.nop()
    a.nop()
    a.sw(0, 11, 0x10)       # clear
    a.lw(12, 11, 4)         # retired
    a.lw(13, 11, 0)         # cycles
    a.halt()

    run = run_program(a.assemble())
    # The clear lands on the edge where sw leaves memory. The first load
    # reaches memory in the next cycle, while sw is still retiring; the
    # second one cycle after that.
    assert run.regs[12] == 0
    assert run.regs[13] == 1
    # The counters keep going until the halt, then cycles freeze.
    assert run.counters["retired"] == 5
    assert run.counters["stalls"] == run.stalls

def test_counters_match_the_trace():
    a = Asm()
    a.addi(1, 0, 5)
    a.label("loop")
    a.lw(2, 0, 0)
    a.add(3, 2, 1)
    a.addi(1, 1, -1)
    a.bne(1, 0, "loop")
    a.halt()

    for variant in Variant:
        run = run_program(a.assemble(), variant = variant)
        assert run.counters["retired"] == len(run.commits), variant
        assert run.counters["stalls"] == run.stalls, variant
        assert run.counters["mispredicts"] == run.mispredicts, variant
        assert run.counters["cycles"] == run.cycles, variant
