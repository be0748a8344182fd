# Combinational decode logic.

from amaranth import *
from amaranth.lib.wiring import *
from amaranth.lib.enum import *
from amaranth.lib.data import Struct

class Opcode(Enum, shape = unsigned(5)):
    """Major opcodes, bits [6:2] of the instruction word."""
    LUI = 0b01101
    AUIPC = 0b00101
    JAL = 0b11011
    JALR = 0b11001
    Bxx = 0b11000
    Lxx = 0b00000
    Sxx = 0b01000
    ALUIMM = 0b00100
    ALUREG = 0b01100
    FENCE = 0b00011
    SYSTEM = 0b11100

class AluOp(Enum, shape = unsigned(4)):
    ADD = 0
    SUB = 1
    AND = 2
    OR = 3
    XOR = 4
    SLL = 5
    SRL = 6
    SRA = 7
    SLT = 8
    SLTU = 9

class ASrc(Enum, shape = unsigned(2)):
    """Where the ALU's left-hand operand comes from."""
    RS1 = 0
    PC = 1
    ZERO = 2

class BSrc(Enum, shape = unsigned(1)):
    """Where the ALU's right-hand operand comes from."""
    RS2 = 0
    IMM = 1

class ImmFormat(Enum, shape = unsigned(3)):
    I = 0
    S = 1
    B = 2
    U = 3
    J = 4

class DecodeSignals(Struct):
    inst: unsigned(32)

    opcode: unsigned(5)
    funct3: unsigned(3)
    funct7: unsigned(7)
    rs1: unsigned(5)
    rs2: unsigned(5)
    rd: unsigned(5)

    is_lui: unsigned(1)
    is_auipc: unsigned(1)
    is_jal: unsigned(1)
    is_jalr: unsigned(1)
    is_b: unsigned(1)
    is_load: unsigned(1)
    is_store: unsigned(1)
    is_alu_ri: unsigned(1)
    is_alu_rr: unsigned(1)
    is_fence: unsigned(1)

    # derived signals, consumed directly by the decode stage.
    legal: unsigned(1)
    is_jump: unsigned(1)
    uses_rs1: unsigned(1)
    uses_rs2: unsigned(1)
    writes_rd: unsigned(1)
    imm_format: ImmFormat
    alu_op: AluOp
    a_src: ASrc
    b_src: BSrc

class Decoder(Component):
    """The Decoder is a circuit that breaks an instruction into the various
    control signals. It's used by the decode stage.

    Anything outside of base RV32I (less ECALL/EBREAK, which need traps we
    don't have) comes out with `legal` clear. FENCE and FENCE.I are legal and
    do nothing, since there is only one hart and no caches.

    Attributes
    ----------
    inst (input): instruction word.
    out (output): group of decode signals, see DecodeSignals struct.
    """
    inst: In(32)

    out: Out(DecodeSignals)

    def elaborate(self, platform):
        m = Module()

        opcode = Signal(5)
        funct3 = Signal(3)
        funct7 = Signal(7)
        m.d.comb += [
            opcode.eq(self.inst[2:7]),
            funct3.eq(self.inst[12:15]),
            funct7.eq(self.inst[25:]),
        ]

        m.d.comb += [
            self.out.inst.eq(self.inst),
            self.out.opcode.eq(opcode),
            self.out.funct3.eq(funct3),
            self.out.funct7.eq(funct7),
            self.out.rs1.eq(self.inst[15:20]),
            self.out.rs2.eq(self.inst[20:25]),
            self.out.rd.eq(self.inst[7:12]),
            self.out.is_lui.eq(opcode == Opcode.LUI),
            self.out.is_auipc.eq(opcode == Opcode.AUIPC),
            self.out.is_jal.eq(opcode == Opcode.JAL),
            self.out.is_jalr.eq(opcode == Opcode.JALR),
            self.out.is_b.eq(opcode == Opcode.Bxx),
            self.out.is_load.eq(opcode == Opcode.Lxx),
            self.out.is_store.eq(opcode == Opcode.Sxx),
            self.out.is_alu_ri.eq(opcode == Opcode.ALUIMM),
            self.out.is_alu_rr.eq(opcode == Opcode.ALUREG),
            self.out.is_fence.eq(opcode == Opcode.FENCE),
            self.out.is_jump.eq(self.out.is_jal | self.out.is_jalr),
        ]

        # Whether the opcode/funct combination exists, before checking the
        # two always-set low bits.
        known = Signal(1)

        # ALU operation shared by register-register and register-immediate
        # forms. funct7[5] selects SUB (reg-reg only) and SRA (both).
        alu_op = Signal(AluOp)
        with m.Switch(funct3):
            with m.Case(0b000):
                with m.If(self.out.is_alu_rr & funct7[5]):
                    m.d.comb += alu_op.eq(AluOp.SUB)
                with m.Else():
                    m.d.comb += alu_op.eq(AluOp.ADD)
            with m.Case(0b001):
                m.d.comb += alu_op.eq(AluOp.SLL)
            with m.Case(0b010):
                m.d.comb += alu_op.eq(AluOp.SLT)
            with m.Case(0b011):
                m.d.comb += alu_op.eq(AluOp.SLTU)
            with m.Case(0b100):
                m.d.comb += alu_op.eq(AluOp.XOR)
            with m.Case(0b101):
                with m.If(funct7[5]):
                    m.d.comb += alu_op.eq(AluOp.SRA)
                with m.Else():
                    m.d.comb += alu_op.eq(AluOp.SRL)
            with m.Case(0b110):
                m.d.comb += alu_op.eq(AluOp.OR)
            with m.Case(0b111):
                m.d.comb += alu_op.eq(AluOp.AND)

        # Defaults: ADD of rs1 and an I-format immediate, which is right for
        # loads, stores and JALR and harmless for everything else.
        m.d.comb += [
            self.out.alu_op.eq(AluOp.ADD),
            self.out.a_src.eq(ASrc.RS1),
            self.out.b_src.eq(BSrc.IMM),
            self.out.imm_format.eq(ImmFormat.I),
        ]

        with m.Switch(opcode):
            with m.Case(Opcode.LUI):
                m.d.comb += [
                    known.eq(1),
                    self.out.writes_rd.eq(1),
                    self.out.a_src.eq(ASrc.ZERO),
                    self.out.imm_format.eq(ImmFormat.U),
                ]
            with m.Case(Opcode.AUIPC):
                m.d.comb += [
                    known.eq(1),
                    self.out.writes_rd.eq(1),
                    self.out.a_src.eq(ASrc.PC),
                    self.out.imm_format.eq(ImmFormat.U),
                ]
            with m.Case(Opcode.JAL):
                m.d.comb += [
                    known.eq(1),
                    self.out.writes_rd.eq(1),
                    self.out.a_src.eq(ASrc.PC),
                    self.out.imm_format.eq(ImmFormat.J),
                ]
            with m.Case(Opcode.JALR):
                m.d.comb += [
                    known.eq(funct3 == 0),
                    self.out.writes_rd.eq(1),
                    self.out.uses_rs1.eq(1),
                ]
            with m.Case(Opcode.Bxx):
                m.d.comb += [
                    # 010 and 011 are unassigned.
                    known.eq(funct3[1:] != 0b01),
                    self.out.uses_rs1.eq(1),
                    self.out.uses_rs2.eq(1),
                    self.out.b_src.eq(BSrc.RS2),
                    self.out.imm_format.eq(ImmFormat.B),
                ]
            with m.Case(Opcode.Lxx):
                m.d.comb += [
                    # LB LH LW LBU LHU
                    known.eq((funct3 == 0b000) | (funct3 == 0b001)
                             | (funct3 == 0b010) | (funct3 == 0b100)
                             | (funct3 == 0b101)),
                    self.out.writes_rd.eq(1),
                    self.out.uses_rs1.eq(1),
                ]
            with m.Case(Opcode.Sxx):
                m.d.comb += [
                    # SB SH SW
                    known.eq(funct3 < 0b011),
                    self.out.uses_rs1.eq(1),
                    self.out.uses_rs2.eq(1),
                    self.out.imm_format.eq(ImmFormat.S),
                ]
            with m.Case(Opcode.ALUIMM):
                with m.Switch(funct3):
                    with m.Case(0b001):
                        m.d.comb += known.eq(funct7 == 0)
                    with m.Case(0b101):
                        m.d.comb += known.eq((funct7 == 0) | (funct7 == 0b0100000))
                    with m.Default():
                        m.d.comb += known.eq(1)
                m.d.comb += [
                    self.out.writes_rd.eq(1),
                    self.out.uses_rs1.eq(1),
                    self.out.alu_op.eq(alu_op),
                ]
            with m.Case(Opcode.ALUREG):
                m.d.comb += [
                    known.eq((funct7 == 0) | ((funct7 == 0b0100000) & (
                        (funct3 == 0b000) | (funct3 == 0b101)))),
                    self.out.writes_rd.eq(1),
                    self.out.uses_rs1.eq(1),
                    self.out.uses_rs2.eq(1),
                    self.out.b_src.eq(BSrc.RS2),
                    self.out.alu_op.eq(alu_op),
                ]
            with m.Case(Opcode.FENCE):
                m.d.comb += known.eq(funct3[1:] == 0)
            with m.Default():
                # SYSTEM and everything unassigned.
                pass

        m.d.comb += self.out.legal.eq(known & (self.inst[0:2] == 0b11))

        return m

class ImmediateDecoder(Component):
    """The ImmediateDecoder decodes an instruction word into its various
    immediate formats, and picks the one named by `format`.

    Attributes
    ----------
    inst (input): instruction word.
    format (input): which format `imm` should present.
    imm (output): the selected immediate, sign extended.
    i, s, b, u, j (output): each format, for consumers that need a specific
        one regardless of `format`.
    """
    inst: In(32)
    format: In(ImmFormat)

    imm: Out(32)
    i: Out(32)
    s: Out(32)
    b: Out(32)
    u: Out(32)
    j: Out(32)

    def elaborate(self, platform):
        m = Module()

        sign = self.inst[31]
        m.d.comb += [
            self.i.eq(Cat(self.inst[20:31], sign.replicate(21))),
            self.s.eq(Cat(self.inst[7:12], self.inst[25:31],
                          sign.replicate(21))),
            self.b.eq(Cat(0, self.inst[8:12], self.inst[25:31], self.inst[7],
                          sign.replicate(20))),
            self.u.eq(Cat(Const(0, 12), self.inst[12:])),
            self.j.eq(Cat(0, self.inst[21:31], self.inst[20],
                          self.inst[12:20], sign.replicate(12))),
        ]

        with m.Switch(self.format):
            with m.Case(ImmFormat.I):
                m.d.comb += self.imm.eq(self.i)
            with m.Case(ImmFormat.S):
                m.d.comb += self.imm.eq(self.s)
            with m.Case(ImmFormat.B):
                m.d.comb += self.imm.eq(self.b)
            with m.Case(ImmFormat.U):
                m.d.comb += self.imm.eq(self.u)
            with m.Case(ImmFormat.J):
                m.d.comb += self.imm.eq(self.j)

        return m

class BranchComparator(Component):
    """Evaluates a conditional branch.

    Subtraction is shared between the signed and unsigned comparisons, the
    same way the ALU does it.

    Attributes
    ----------
    funct3 (input): the branch's funct3 field.
    lhs, rhs (input): rs1 and rs2 values.
    taken (output): 1 if the branch condition holds. Unassigned funct3 values
        are never taken.
    """
    funct3: In(3)
    lhs: In(32)
    rhs: In(32)

    taken: Out(1)

    def elaborate(self, platform):
        m = Module()

        difference = Signal(33)
        signed_less_than = Signal(1)
        unsigned_less_than = Signal(1)
        m.d.comb += [
            difference.eq(self.lhs + Cat(~self.rhs, 1) + 1),
            unsigned_less_than.eq(difference[32]),
        ]
        with m.If(self.lhs[31] ^ self.rhs[31]):
            m.d.comb += signed_less_than.eq(self.lhs[31])
        with m.Else():
            m.d.comb += signed_less_than.eq(difference[32])

        base_taken = Signal(1)
        with m.Switch(self.funct3):
            with m.Case("00-"): # EQ/NE
                m.d.comb += base_taken.eq(self.lhs == self.rhs)
            with m.Case("10-"): # LT/GE
                m.d.comb += base_taken.eq(signed_less_than)
            with m.Case("11-"): # LTU/GEU
                m.d.comb += base_taken.eq(unsigned_less_than)
            with m.Default():
                # would invert to "taken" below; keep these dead.
                m.d.comb += base_taken.eq(self.funct3[0])

        m.d.comb += self.taken.eq(base_taken ^ self.funct3[0])

        return m
