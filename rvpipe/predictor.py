# Branch predictors. All of them share one interface: a combinational query
# by fetch PC, and a synchronous update from decode when a branch or jump
# resolves.

from amaranth import *
from amaranth.lib.wiring import *

from rvpipe import AlwaysReady

# Widest counter index a predictor may use. Fetch records the index each
# prediction was read from, and hands it back with the update.
MAX_INDEX_BITS = 16

PredictorUpdate = Signature({
    'pc': Out(32),
    'taken': Out(1),
    'target': Out(32),
    'index': Out(MAX_INDEX_BITS),
})

PredictorSignature = Signature({
    'query_pc': In(32),
    'query_target': Out(32),
    'query_valid': Out(1),
    'query_index': Out(MAX_INDEX_BITS),
    'update': In(AlwaysReady(PredictorUpdate)),
})

def _index_bits(entries):
    assert entries >= 2 and (entries & (entries - 1)) == 0, \
            f"predictor tables need a power-of-two size, not {entries}"
    bits = (entries - 1).bit_length()
    assert bits <= MAX_INDEX_BITS, f"{entries} entries is too many"
    return bits

def _saturate(m, counter, taken):
    """Steps a 2-bit saturating counter toward `taken`."""
    with m.If(taken):
        with m.If(counter != 0b11):
            m.d.sync += counter.eq(counter + 1)
    with m.Else():
        with m.If(counter != 0b00):
            m.d.sync += counter.eq(counter - 1)

class DisabledPredictor(Component):
    """Never predicts. Fetch always proceeds to PC+4."""
    def __init__(self):
        super().__init__(PredictorSignature)

    def elaborate(self, platform):
        m = Module()
        # Outputs rest at zero; updates are ignored.
        return m

class TargetBuffer(Component):
    """Direct-mapped table of branch targets, tagged by PC.

    Parameters
    ----------
    entries (integer): number of entries, a power of two.

    Attributes
    ----------
    lookup_pc (input): PC to look up.
    hit (output): an entry for exactly that PC exists.
    target (output): its stored target.
    write (port): inserts or replaces the entry for `pc`.
    """
    lookup_pc: In(32)
    hit: Out(1)
    target: Out(32)

    write: In(AlwaysReady(Signature({
        'pc': Out(32),
        'target': Out(32),
    })))

    def __init__(self, entries):
        super().__init__()

        self.entries = entries
        self.index_bits = _index_bits(entries)
        tag_bits = 30 - self.index_bits

        self.valid = Array(Signal(1, name = f"btb_valid{i}")
                           for i in range(entries))
        self.tag = Array(Signal(tag_bits, name = f"btb_tag{i}")
                         for i in range(entries))
        self.targets = Array(Signal(32, name = f"btb_target{i}")
                             for i in range(entries))

    def split(self, pc):
        """Breaks a PC into (index, tag). The low two bits are always zero for
        a legal fetch and aren't stored."""
        return (pc[2:2 + self.index_bits], pc[2 + self.index_bits:])

    def elaborate(self, platform):
        m = Module()

        (index, tag) = self.split(self.lookup_pc)
        m.d.comb += [
            self.hit.eq(self.valid[index] & (self.tag[index] == tag)),
            self.target.eq(self.targets[index]),
        ]

        (windex, wtag) = self.split(self.write.payload.pc)
        with m.If(self.write.valid):
            m.d.sync += [
                self.valid[windex].eq(1),
                self.tag[windex].eq(wtag),
                self.targets[windex].eq(self.write.payload.target),
            ]

        return m

class BtbPredictor(Component):
    """Branch target buffer. A hit predicts taken to the stored target; a miss
    predicts not taken. Taken resolutions insert or replace the entry for
    their PC, and not-taken resolutions leave the table alone, so a loop
    branch keeps predicting taken until it's evicted.

    Parameters
    ----------
    entries (integer): table size, default 16.
    """
    def __init__(self, *, entries = 16):
        super().__init__(PredictorSignature)

        self.buffer = TargetBuffer(entries)

    def elaborate(self, platform):
        m = Module()

        m.submodules.buffer = buffer = self.buffer

        m.d.comb += [
            buffer.lookup_pc.eq(self.query_pc),
            self.query_valid.eq(buffer.hit),
            self.query_target.eq(buffer.target),

            buffer.write.payload.pc.eq(self.update.payload.pc),
            buffer.write.payload.target.eq(self.update.payload.target),
            buffer.write.valid.eq(self.update.valid & self.update.payload.taken),
        ]

        return m

class TwoBitPredictor(Component):
    """Per-branch 2-bit saturating counters, indexed by PC.

    Counters start weakly not taken (01). The counter's high bit is the
    prediction; a taken prediction also needs a target, which comes from a
    companion target buffer filled on taken resolutions. Without a target the
    prediction falls back to not taken.

    The counter a prediction was read from is reported on `query_index`, and
    the update trains whichever counter its `index` names.

    Parameters
    ----------
    entries (integer): number of counters and target buffer entries,
        default 64.

    Attributes
    ----------
    counters (Array): the counter table, for inspection.
    """
    def __init__(self, *, entries = 64):
        super().__init__(PredictorSignature)

        self.index_bits = _index_bits(entries)
        self.counters = Array(Signal(2, init = 0b01, name = f"counter{i}")
                              for i in range(entries))
        self.buffer = TargetBuffer(entries)

    def lookup_index(self):
        return self.query_pc[2:2 + self.index_bits]

    def elaborate(self, platform):
        m = Module()

        m.submodules.buffer = buffer = self.buffer

        index = Signal(self.index_bits)
        m.d.comb += [
            index.eq(self.lookup_index()),
            self.query_index.eq(index),

            buffer.lookup_pc.eq(self.query_pc),
            self.query_valid.eq(self.counters[index][1] & buffer.hit),
            self.query_target.eq(buffer.target),

            buffer.write.payload.pc.eq(self.update.payload.pc),
            buffer.write.payload.target.eq(self.update.payload.target),
            buffer.write.valid.eq(self.update.valid & self.update.payload.taken),
        ]

        trained = self.update.payload.index[:self.index_bits]
        with m.If(self.update.valid):
            _saturate(m, self.counters[trained], self.update.payload.taken)

        self.elaborate_history(m)

        return m

    def elaborate_history(self, m):
        pass

class GsharePredictor(TwoBitPredictor):
    """Two-bit counters indexed by PC XOR a global history of resolved
    outcomes. The target buffer is still indexed by PC alone.

    History shifts in at the least significant bit, one bit per resolved
    branch or jump. It may move on between a prediction and its resolution
    when another branch resolves in between, which is why updates come back
    with the index the prediction was read from.

    Attributes
    ----------
    history (Signal): global history register, one bit per counter index bit.
    """
    def __init__(self, *, entries = 64):
        super().__init__(entries = entries)

        self.history = Signal(self.index_bits)

    def lookup_index(self):
        return self.query_pc[2:2 + self.index_bits] ^ self.history

    def elaborate_history(self, m):
        with m.If(self.update.valid):
            m.d.sync += self.history.eq(
                Cat(self.update.payload.taken, self.history[:-1])
            )
