from amaranth import *
from amaranth.lib.wiring import *

def CommitTrace(xlen = 32):
    """Retirement trace port, loosely following RVFI.

    Everything is valid only in a cycle where `retired` is high, except `halt`,
    which stays high once the CPU has stopped.
    """
    return Signature({
        # instruction index, unique per instruction retired, no gaps
        'order': Out(32),
        'retired': Out(1),
        'branch': Out(1),
        'mispredict': Out(1),
        'halt': Out(1),

        'pc': Out(xlen),

        'rd_addr': Out(5),
        'rd_wdata': Out(xlen),

        'mem_addr': Out(xlen),
        'mem_wmask': Out(xlen // 8),
        'mem_wdata': Out(xlen),
    })
