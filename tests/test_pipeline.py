import pytest

from rvpipe.cpu import Cpu
from rvpipe.variant import Variant

from tests.rv32i import Asm
from tests.harness import run_program, simulate

ALL_VARIANTS = list(Variant)

def assemble(build):
    a = Asm()
    build(a)
    return a.assemble()

def test_unknown_variant_is_rejected():
    with pytest.raises(ValueError):
        Cpu(variant = 7)
    with pytest.raises(ValueError):
        Cpu(variant = "tournament")

@pytest.mark.parametrize("variant", ALL_VARIANTS)
def test_every_variant_builds(variant):
    cpu = Cpu(variant = variant)

    async def bench(ctx):
        assert ctx.get(cpu.variant_id) == variant.value
        assert ctx.get(cpu.fetch_pc) == 0
        assert ctx.get(cpu.halted) == 0

    simulate(cpu, bench)

@pytest.mark.parametrize("variant", ALL_VARIANTS)
def test_x0_stays_zero(variant):
    def program(a):
        a.addi(0, 0, 5)
        a.lui(0, 0x12345000)
        a.add(1, 0, 0)
        a.addi(2, 0, 3)
        a.add(0, 2, 2)
        a.add(3, 0, 2)
        a.halt()

    run = run_program(assemble(program), variant = variant)
    assert run.regs[0] == 0
    assert run.regs[1] == 0
    assert run.regs[3] == 3

def sum_of_two(a):
    a.addi(10, 0, 10)
    a.addi(11, 0, 20)
    a.add(12, 10, 11)
    a.halt()

@pytest.mark.parametrize("variant", [v for v in Variant if v.forwarding])
def test_dependent_alu_ops_forward_without_stalling(variant):
    run = run_program(assemble(sum_of_two), variant = variant)
    assert run.regs[12] == 30
    assert run.stalls == 0
    assert run.retired_pcs == [0, 4, 8, 12, 16]

def test_dependent_alu_ops_stall_without_forwarding():
    # add waits two cycles for x11 to reach writeback, and the halt store
    # waits two for x30.
    run = run_program(assemble(sum_of_two), variant = Variant.NO_FORWARD)
    assert run.regs[12] == 30
    assert run.stalls == 4

def test_predicted_jumps_still_redirect():
    def program(a):
        a.addi(1, 0, 3)
        a.label("loop")
        a.addi(1, 1, -1)
        a.beq(1, 0, "done")
        a.jal(0, "loop")
        a.label("done")
        a.halt()

    run = run_program(assemble(program), variant = Variant.BTB)
    assert run.regs[1] == 0
    assert run.retired_pcs == [0, 4, 8, 12, 4, 8, 12, 4, 8, 16, 20]
    # The second jal hits in the BTB but redirects all the same. Only the
    # taken exit counts as a misprediction.
    assert run.flushes == 3
    assert run.mispredicts == 1

def test_load_use_stalls_once():
    def program(a):
        a.addi(1, 0, 5)
        a.sw(1, 0, 0)
        a.lw(2, 0, 0)
        a.add(3, 2, 2)
        a.halt()

    run = run_program(assemble(program), variant = Variant.FORWARD,
                      mem_addrs = [0])
    assert run.regs[3] == 10
    assert run.mem[0] == 5
    assert run.stalls == 1

def test_stores_see_fresh_data():
    def program(a):
        a.addi(1, 0, 7)
        a.sw(1, 0, 8)
        a.lw(2, 0, 8)
        a.addi(1, 0, 9)
        a.sw(1, 0, 8)
        a.lw(3, 0, 8)
        a.sw(3, 0, 12)
        a.halt()

    for variant in ALL_VARIANTS:
        run = run_program(assemble(program), variant = variant,
                          mem_addrs = [8, 12])
        assert run.regs[2] == 7, variant
        assert run.regs[3] == 9, variant
        assert run.mem[8] == 9, variant
        assert run.mem[12] == 9, variant

def test_byte_and_halfword_memory():
    def program(a):
        a.li(1, 0x8081_7F01)
        a.sw(1, 0, 0)
        a.lb(2, 0, 2)
        a.lbu(3, 0, 3)
        a.lh(4, 0, 2)
        a.lhu(5, 0, 0)
        a.addi(6, 0, 0x55)
        a.sb(6, 0, 1)
        a.sh(6, 0, 6)
        a.lw(7, 0, 0)
        a.halt()

    run = run_program(assemble(program), mem_addrs = [0, 4])
    assert run.regs[2] == 0xFFFF_FF81
    assert run.regs[3] == 0x80
    assert run.regs[4] == 0xFFFF_8081
    assert run.regs[5] == 0x7F01
    assert run.regs[7] == 0x8081_5501
    assert run.mem[4] == 0x0055_0000

@pytest.mark.parametrize("variant", ALL_VARIANTS)
def test_link_register(variant):
    def program(a):
        a.addi(2, 0, 1)
        a.label("call")
        a.jal(1, "func")
        a.addi(3, 0, 9)
        a.halt()
        a.label("func")
        a.addi(2, 2, 1)
        a.jalr(0, 1, 0)

    words = assemble(program)
    run = run_program(words, variant = variant)
    # The jal is the second instruction.
    assert run.regs[1] == 8
    assert run.regs[2] == 2
    assert run.regs[3] == 9

def test_jalr_through_fresh_link_register():
    def program(a):
        a.jal(1, "next")
        a.label("next")
        a.jalr(5, 1, 8)
        a.addi(6, 0, 1)     # skipped
        a.addi(7, 0, 2)
        a.halt()

    run = run_program(assemble(program), variant = Variant.FORWARD)
    assert run.regs[1] == 4
    assert run.regs[5] == 8
    assert run.regs[6] == 0
    assert run.regs[7] == 2
    # jal is already in X/M when jalr decodes, so the link value forwards
    # straight into the target calculation.
    assert run.stalls == 0

def countdown_loop(a):
    a.addi(1, 0, 3)
    a.label("loop")
    a.addi(1, 1, -1)
    a.bne(1, 0, "loop")
    a.addi(2, 0, 42)
    a.halt()

@pytest.mark.parametrize("variant, mispredicts", [
    (Variant.NO_FORWARD, 0),
    (Variant.FORWARD, 0),
    # First pass misses; the last, not taken, pass was predicted taken.
    (Variant.BTB, 2),
    (Variant.TWO_BIT, 2),
    # Each pass reads a different counter as the history fills. Both taken
    # passes miss, and the exit reads a fresh counter that says not taken.
    (Variant.GSHARE, 2),
])
def test_loop_mispredictions(variant, mispredicts):
    run = run_program(assemble(countdown_loop), variant = variant)
    assert run.regs[1] == 0
    assert run.regs[2] == 42
    assert run.mispredicts == mispredicts
    assert run.counters["mispredicts"] == mispredicts

def test_taken_branches_redirect_without_a_predictor():
    run = run_program(assemble(countdown_loop), variant = Variant.FORWARD)
    # Two taken bne.
    assert run.flushes == 2
    branches = [c for c in run.commits if c["branch"]]
    assert len(branches) == 3

def test_retirement_trace():
    run = run_program(assemble(countdown_loop), variant = Variant.BTB)
    # addi, 3 x (addi, bne), addi, and the two halt instructions.
    assert run.retired_pcs == [0, 4, 8, 4, 8, 4, 8, 12, 16, 20]
    assert [c["order"] for c in run.commits] == list(range(10))
    assert run.counters["retired"] == 10
    assert run.commit_pc == 20

    halt = run.commits[-1]
    assert halt["mem_addr"] == 0xFFFF_FFFC
    assert halt["mem_wmask"] == 0b1111

    x2 = run.commits[7]
    assert (x2["rd_addr"], x2["rd_wdata"]) == (2, 42)

def test_halt_is_permanent():
    def program(a):
        a.addi(1, 0, 1)
        a.halt()
        a.addi(7, 0, 7)
        a.sw(1, 0, 0)
        a.label("spin")
        a.jal(0, "spin")

    run = run_program(assemble(program), mem_addrs = [0], extra_cycles = 20)
    assert run.regs[7] == 0
    assert run.mem[0] == 0
    assert run.retired_after_halt == 0
    assert len(run.fetch_pcs_after_halt) == 1

@pytest.mark.parametrize("variant", ALL_VARIANTS)
def test_variants_agree(variant):
    # Sum of 1..10 through memory, with a call and a data-dependent branch.
    def program(a):
        a.addi(10, 0, 10)
        a.addi(11, 0, 0)
        a.label("loop")
        a.sw(10, 0, 0x100)
        a.lw(12, 0, 0x100)
        a.add(11, 11, 12)
        a.addi(10, 10, -1)
        a.blt(0, 10, "loop")
        a.jal(1, "double")
        a.sw(11, 0, 0x104)
        a.andi(13, 11, 1)
        a.beq(13, 0, "even")
        a.addi(14, 0, 1)
        a.label("even")
        a.slli(15, 11, 4)
        a.srai(16, 15, 2)
        a.sltu(17, 16, 15)
        a.halt()
        a.label("double")
        a.add(11, 11, 11)
        a.jalr(0, 1, 0)

    run = run_program(assemble(program), variant = variant,
                      mem_addrs = [0x100, 0x104])
    assert run.regs[11] == 110
    assert run.regs[14] == 0
    assert run.regs[15] == 1760
    assert run.regs[16] == 440
    assert run.regs[17] == 1
    assert run.mem[0x104] == 110

    baseline = run_program(assemble(program), variant = Variant.NO_FORWARD,
                           mem_addrs = [0x100, 0x104])
    assert run.regs == baseline.regs
    assert run.mem == baseline.mem
    assert run.retired_pcs == baseline.retired_pcs

@pytest.mark.parametrize("variant", ALL_VARIANTS)
def test_runs_are_deterministic(variant):
    words = assemble(countdown_loop)
    first = run_program(words, variant = variant)
    second = run_program(words, variant = variant)
    assert first.commits == second.commits
    assert first.cycles == second.cycles
    assert first.regs == second.regs

def test_misaligned_access_is_killed():
    def program(a):
        a.addi(1, 0, 2)
        a.addi(2, 0, 0x55)
        a.addi(3, 0, 0x66)
        a.lw(3, 1, 0)
        a.sw(2, 1, 0)
        a.lh(4, 0, 1)
        a.addi(5, 0, 1)
        a.halt()

    run = run_program(assemble(program), mem_addrs = [0])
    assert run.regs[3] == 0x66
    assert run.regs[4] == 0
    assert run.regs[5] == 1
    assert run.mem[0] == 0
    assert 12 not in run.retired_pcs
    assert 16 not in run.retired_pcs
    assert 20 not in run.retired_pcs

def test_unmapped_load_reads_zero():
    def program(a):
        a.addi(2, 0, 0x123)
        a.lui(4, 0x2000_0000)
        a.lw(2, 4, 0)
        a.sw(4, 4, 0)
        a.halt()

    run = run_program(assemble(program))
    assert run.regs[2] == 0
    assert 8 in run.retired_pcs
    assert 12 in run.retired_pcs

def test_illegal_instructions_do_not_retire():
    def program(a):
        a.addi(1, 0, 1)
        a.word(0x0000_0073)     # ecall
        a.word(0x0000_0000)
        a.addi(2, 1, 1)
        a.fence()
        a.halt()

    run = run_program(assemble(program))
    assert run.retired_pcs == [0, 12, 16, 20, 24]
    assert run.regs[2] == 2

def test_fetch_outside_rom_is_killed():
    def program(a):
        a.lui(1, 0x1000_0000)
        a.jalr(0, 1, 0)

    # Nothing at the jump target is fetchable, so nothing after the jump
    # retires, and the program never halts.
    with pytest.raises(AssertionError, match = "did not halt"):
        run_program(assemble(program), max_cycles = 100)
