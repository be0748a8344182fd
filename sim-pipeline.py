import argparse
import sys

from amaranth import *
from amaranth.back import verilog
from amaranth.sim import Simulator

from rvpipe.cpu import Cpu
from rvpipe.image import load_image
from rvpipe.soc import Soc
from rvpipe.variant import Variant

REG_NAMES = [
    "zero", "ra", "sp", "gp", "tp", "t0", "t1", "t2",
    "s0", "s1", "a0", "a1", "a2", "a3", "a4", "a5",
    "a6", "a7", "s2", "s3", "s4", "s5", "s6", "s7",
    "s8", "s9", "s10", "s11", "t3", "t4", "t5", "t6",
]

parser = argparse.ArgumentParser(
    prog = "sim-pipeline",
    description = "Simulates a program on the pipelined RV32I core",
)
parser.add_argument(
    "image",
    help = "program image: $readmemh hex, or raw little-endian .bin",
)
parser.add_argument(
    "--data",
    help = "initial data RAM image, same formats as the program",
)
parser.add_argument(
    "--variant",
    default = "forward",
    help = "microarchitecture: " + ", ".join(
        f"{v.value}/{v.name.lower()}" for v in Variant
    ) + " (default: forward)",
)
parser.add_argument(
    "--cycles",
    type = int,
    default = 100_000,
    help = "give up if the program hasn't halted after this many cycles",
)
parser.add_argument(
    "--vcd",
    metavar = "FILE",
    help = "write a waveform of the run to FILE (and a .gtkw next to it)",
)
parser.add_argument(
    "--switches",
    type = lambda s: int(s, 0),
    default = 0,
    help = "value presented on the switch inputs",
)
parser.add_argument(
    "--trace",
    action = "store_true",
    help = "print each instruction as it retires",
)
parser.add_argument(
    "--console",
    action = "store_true",
    help = "print bytes stored to the red LED port as text",
)
parser.add_argument(
    "--verilog",
    metavar = "FILE",
    help = "also write the CPU for this variant as Verilog to FILE",
)
args = parser.parse_args()

try:
    variant = Variant.resolve(args.variant)
except ValueError as e:
    parser.error(str(e))

try:
    program = load_image(args.image, max_words = 16 * 1024 // 4)
    data = load_image(args.data, max_words = 16 * 1024 // 4) if args.data else []
except (OSError, ValueError) as e:
    parser.error(str(e))

if args.verilog:
    cpu = Cpu(variant = variant)
    with open(args.verilog, "w") as v:
        v.write(verilog.convert(cpu, name = "rvpipe_cpu"))
    print(f"wrote {args.verilog}")

soc = Soc(variant = variant, program = program, data = data)
cpu = soc.cpu

print(f"simulating {args.image} on variant {variant.value} ({variant.name})")

sim = Simulator(soc)
sim.add_clock(1e-6)

result = {}

async def bench(ctx):
    ctx.set(soc.switches.pins, args.switches)
    ledr = soc.ledr.bus.cmd
    cycle = 0
    while cycle < args.cycles and not ctx.get(cpu.halted):
        if args.trace and ctx.get(cpu.commit.retired):
            line = (f"{ctx.get(cpu.commit.order):6} "
                    f"pc={ctx.get(cpu.commit.pc):08x}")
            rd = ctx.get(cpu.commit.rd_addr)
            if rd != 0:
                line += (f" {REG_NAMES[rd]}="
                         f"{ctx.get(cpu.commit.rd_wdata):08x}")
            wmask = ctx.get(cpu.commit.mem_wmask)
            if wmask != 0:
                line += (f" [{ctx.get(cpu.commit.mem_addr):08x}]"
                         f"={ctx.get(cpu.commit.mem_wdata):08x}"
                         f"/{wmask:04b}")
            if ctx.get(cpu.commit.mispredict):
                line += " mispredicted"
            print(line)
        if args.console and ctx.get(ledr.valid) \
                and ctx.get(ledr.payload.lanes) != 0:
            # Byte stores replicate data across lanes, so the low byte is
            # always the character.
            print(chr(ctx.get(ledr.payload.data) & 0xFF), end = "",
                  flush = True)
        await ctx.tick()
        cycle += 1

    result['halted'] = ctx.get(cpu.halted)
    result['cycles'] = cycle
    result['regs'] = []
    for r in range(32):
        ctx.set(cpu.debug.reg_addr, r)
        result['regs'].append(ctx.get(cpu.debug.reg_value))
    result['counters'] = {
        'cycles': ctx.get(soc.counters.cycles),
        'retired': ctx.get(soc.counters.instret),
        'stalls': ctx.get(soc.counters.stalls),
        'mispredicts': ctx.get(soc.counters.mispredicts),
    }
    result['leds'] = {
        name: ctx.get(getattr(soc, name).pins)
        for name in ("ledr", "ledg", "hex", "lcd")
    }

sim.add_testbench(bench)

if args.vcd:
    traces = [
        cpu.fetch_pc,
        cpu.commit_pc,
        cpu.stall,
        cpu.flush,
        cpu.halted,
        cpu.commit.retired,
        cpu.commit.pc,
        cpu.bus.cmd.valid,
        cpu.bus.cmd.payload.addr,
        cpu.bus.cmd.payload.lanes,
        cpu.bus.cmd.payload.data,
        cpu.bus.resp,
    ]
    gtkw = args.vcd.rsplit(".", 1)[0] + ".gtkw"
    with sim.write_vcd(args.vcd, gtkw, traces = traces):
        sim.run()
else:
    sim.run()

if args.console:
    print()

counters = result['counters']
print(f"{'halted' if result['halted'] else 'stopped'} after "
      f"{result['cycles']} cycles")
print(f"cycles={counters['cycles']} retired={counters['retired']} "
      f"stalls={counters['stalls']} mispredicts={counters['mispredicts']}")
if counters['retired']:
    print(f"CPI {counters['cycles'] / counters['retired']:.3f}")
for (name, value) in result['leds'].items():
    print(f"{name:5} {value:08x}")
for r in range(0, 32, 4):
    print("  ".join(f"{REG_NAMES[i]:>4}={result['regs'][i]:08x}"
                    for i in range(r, r + 4)))

if not result['halted']:
    print(f"program did not halt within {args.cycles} cycles")
    sys.exit(1)
