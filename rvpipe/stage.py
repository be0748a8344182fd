# Pipeline register contents and the register that carries them between
# stages.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.data import Struct

from rvpipe.decoder import AluOp, ASrc, BSrc
from rvpipe.predictor import MAX_INDEX_BITS

class Ctrl(Struct):
    """Control tuple carried by every stage bundle.

    At most one of valid, bubble and kill is set. An all-zero Ctrl (the reset
    state) is treated as a bubble: nothing downstream acts on a bundle unless
    `valid` is set.
    """
    valid: unsigned(1)
    bubble: unsigned(1)
    kill: unsigned(1)

    is_branch: unsigned(1)
    is_jump: unsigned(1)
    mem_read: unsigned(1)
    mem_write: unsigned(1)
    alu_op: AluOp
    writes_register: unsigned(1)
    funct3: unsigned(3)
    a_src: ASrc
    b_src: BSrc
    mispredicted: unsigned(1)

# Fields of Ctrl that cause something to happen downstream. These are cleared
# whenever a bundle stops being valid, so that a decoding mistake elsewhere
# can't leak through a killed instruction.
SIDE_EFFECTS = (
    'is_branch',
    'is_jump',
    'mem_read',
    'mem_write',
    'writes_register',
    'mispredicted',
)

class FetchBundle(Struct):
    """F/D: an instruction word and the prediction made when fetching it."""
    ctrl: Ctrl
    pc: unsigned(32)
    inst: unsigned(32)
    pred_taken: unsigned(1)
    pred_target: unsigned(32)
    pred_index: unsigned(MAX_INDEX_BITS)

class DecodeBundle(Struct):
    """D/X: decoded operands, as read from the register file."""
    ctrl: Ctrl
    pc: unsigned(32)
    rs1: unsigned(5)
    rs2: unsigned(5)
    rd: unsigned(5)
    rs1_value: unsigned(32)
    rs2_value: unsigned(32)
    imm: unsigned(32)

class ExecuteBundle(Struct):
    """X/M: ALU result (effective address for memory ops, return address for
    jumps) and store data."""
    ctrl: Ctrl
    pc: unsigned(32)
    rd: unsigned(5)
    result: unsigned(32)
    store_data: unsigned(32)

class MemoryBundle(Struct):
    """M/W: everything writeback needs, including the raw word the bus
    returned for a load and the lanes written by a store."""
    ctrl: Ctrl
    pc: unsigned(32)
    rd: unsigned(5)
    result: unsigned(32)
    load_word: unsigned(32)
    lanes: unsigned(4)
    store_data: unsigned(32)

def live(ctrl):
    """1 when a bundle holds an instruction that should take effect."""
    return ctrl.valid & ~ctrl.bubble & ~ctrl.kill

def forward_ctrl(m, out, inp):
    """Copies a stage's incoming control tuple to its outgoing bundle.

    Anything that isn't valid on the way in leaves as a bubble, which is how a
    kill decays after one stage. Stages that detect their own reasons to kill
    an instruction override `valid`/`kill` after calling this.
    """
    m.d.comb += out.eq(inp)
    with m.If(~inp.valid):
        m.d.comb += [
            out.valid.eq(0),
            out.kill.eq(0),
            out.bubble.eq(1),
        ]
        m.d.comb += [getattr(out, f).eq(0) for f in SIDE_EFFECTS]

def kill_ctrl(m, out):
    """Turns a valid outgoing control tuple into a killed one."""
    m.d.comb += [
        out.valid.eq(0),
        out.bubble.eq(0),
        out.kill.eq(1),
    ]
    m.d.comb += [getattr(out, f).eq(0) for f in SIDE_EFFECTS]

class PipelineRegister(Component):
    """One of the four registers between stages.

    Each cycle it does exactly one thing, in priority order:

    - flush: become a bubble. The PC of the instruction being discarded is
      kept, which makes waveforms easier to follow; nothing reads it.
    - stall: hold the current contents.
    - advance: latch `incoming`. An incoming bubble is stored as a clean
      bubble with its operands zeroed. An incoming killed bundle is stored
      with kill set and its side-effect fields cleared.

    Parameters
    ----------
    layout (Struct subclass): bundle type, one of the *Bundle structs. Must
        have `ctrl` and `pc` fields.

    Attributes
    ----------
    incoming (input): bundle computed by the stage feeding this register.
    stall (input): hold contents.
    flush (input): discard contents; wins over stall.
    current (output): registered bundle, read by the next stage.
    """
    def __init__(self, layout):
        self.layout = layout
        super().__init__(Signature({
            'incoming': In(layout),
            'stall': In(1),
            'flush': In(1),
            'current': Out(layout),
        }))

    def elaborate(self, platform):
        m = Module()

        inc = self.incoming
        cur = self.current

        def bubble(pc):
            return [
                Value.cast(cur).eq(0),
                cur.ctrl.bubble.eq(1),
                cur.pc.eq(pc),
            ]

        with m.If(self.flush):
            m.d.sync += bubble(inc.pc)
        with m.Elif(self.stall):
            pass
        with m.Elif(inc.ctrl.valid):
            m.d.sync += cur.eq(inc)
        with m.Elif(inc.ctrl.kill):
            m.d.sync += cur.eq(inc)
            m.d.sync += [
                cur.ctrl.valid.eq(0),
                cur.ctrl.bubble.eq(0),
            ]
            m.d.sync += [getattr(cur.ctrl, f).eq(0) for f in SIDE_EFFECTS]
        with m.Else():
            m.d.sync += bubble(inc.pc)

        return m
