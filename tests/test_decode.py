import pytest

from chip8vm import DecodeError, Instruction, Op, decode


def test_fields_are_extracted():
    ins = decode(0xD1, 0x25)
    assert ins == Instruction(Op.DRW, 0xD1, 0x25, x=0x1, y=0x2, n=0x5, nn=0x25, nnn=0x125)
    assert ins.opcode == 0xD125


@pytest.mark.parametrize("word, op", [
    (0x00E0, Op.CLS), (0x00EE, Op.RET), (0x1234, Op.JP), (0x2345, Op.CALL),
    (0x3A12, Op.SE_VX_NN), (0x4A12, Op.SNE_VX_NN), (0x5AB0, Op.SE_VX_VY),
    (0x6A12, Op.LD_VX_NN), (0x7A12, Op.ADD_VX_NN), (0x8AB0, Op.LD_VX_VY),
    (0x8AB1, Op.OR), (0x8AB2, Op.AND), (0x8AB3, Op.XOR), (0x8AB4, Op.ADD_VX_VY),
    (0x8AB5, Op.SUB), (0x8AB6, Op.SHR), (0x8AB7, Op.SUBN), (0x8ABE, Op.SHL),
    (0x9AB0, Op.SNE_VX_VY), (0xA123, Op.LD_I), (0xB123, Op.JP_V0), (0xCA12, Op.RND),
    (0xDAB5, Op.DRW), (0xEA9E, Op.SKP), (0xEAA1, Op.SKNP), (0xFA07, Op.LD_VX_DT),
    (0xFA0A, Op.LD_VX_K), (0xFA15, Op.LD_DT_VX), (0xFA18, Op.LD_ST_VX),
    (0xFA1E, Op.ADD_I_VX), (0xFA29, Op.LD_F_VX), (0xFA33, Op.LD_B_VX),
    (0xFA55, Op.LD_MEM_VX), (0xFA65, Op.LD_VX_MEM),
])
def test_every_op_decodes(word, op):
    assert decode(word >> 8, word & 0xFF).op is op


def test_decode_error_carries_address_and_bytes():
    with pytest.raises(DecodeError) as info:
        decode(0x80, 0x0F, 0x2A4)
    err = info.value
    assert (err.pc, err.b0, err.b1) == (0x2A4, 0x80, 0x0F)
    assert str(err) == "unknown instruction at $2A4 (op 80 0F)"
