"""
chip8dis - CHIP-8 disassembler.

Renders a program image as one line per instruction:

    ADDR B0 B1 MNEMONIC

using the same decoder the interpreter runs, so the listing shows exactly
what the CPU would execute. Undecodable words and a trailing odd byte are
listed as data instead of failing.
"""

from typing import Iterator, List

from chip8vm import PROGRAM_START, DecodeError, Instruction, Op, decode


def mnemonic(ins: Instruction) -> str:
    """Return the assembly text for a decoded instruction."""
    x, y = ins.x, ins.y
    op = ins.op

    if op is Op.CLS:
        return "CLS"
    elif op is Op.RET:
        return "RET"
    elif op is Op.JP:
        return f"JP 0x{ins.nnn:03X}"
    elif op is Op.CALL:
        return f"CALL 0x{ins.nnn:03X}"
    elif op is Op.SE_VX_NN:
        return f"SE V{x:X}, 0x{ins.nn:02X}"
    elif op is Op.SNE_VX_NN:
        return f"SNE V{x:X}, 0x{ins.nn:02X}"
    elif op is Op.SE_VX_VY:
        return f"SE V{x:X}, V{y:X}"
    elif op is Op.LD_VX_NN:
        return f"LD V{x:X}, 0x{ins.nn:02X}"
    elif op is Op.ADD_VX_NN:
        return f"ADD V{x:X}, 0x{ins.nn:02X}"
    elif op in _ALU_NAMES:
        return f"{_ALU_NAMES[op]} V{x:X}, V{y:X}"
    elif op is Op.SHR:
        return f"SHR V{x:X}"
    elif op is Op.SHL:
        return f"SHL V{x:X}"
    elif op is Op.SNE_VX_VY:
        return f"SNE V{x:X}, V{y:X}"
    elif op is Op.LD_I:
        return f"LD I, 0x{ins.nnn:03X}"
    elif op is Op.JP_V0:
        return f"JP V0, 0x{ins.nnn:03X}"
    elif op is Op.RND:
        return f"RND V{x:X}, 0x{ins.nn:02X}"
    elif op is Op.DRW:
        return f"DRW V{x:X}, V{y:X}, 0x{ins.n:X}"
    elif op is Op.SKP:
        return f"SKP V{x:X}"
    elif op is Op.SKNP:
        return f"SKNP V{x:X}"
    return _MISC_FORMATS[op].format(x=x)


_ALU_NAMES = {
    Op.LD_VX_VY: "LD", Op.OR: "OR", Op.AND: "AND", Op.XOR: "XOR",
    Op.ADD_VX_VY: "ADD", Op.SUB: "SUB", Op.SUBN: "SUBN",
}

_MISC_FORMATS = {
    Op.LD_VX_DT: "LD V{x:X}, DT",
    Op.LD_VX_K: "LD V{x:X}, K",
    Op.LD_DT_VX: "LD DT, V{x:X}",
    Op.LD_ST_VX: "LD ST, V{x:X}",
    Op.ADD_I_VX: "ADD I, V{x:X}",
    Op.LD_F_VX: "LD F, V{x:X}",
    Op.LD_B_VX: "LD B, V{x:X}",
    Op.LD_MEM_VX: "LD [I], V{x:X}",
    Op.LD_VX_MEM: "LD V{x:X}, [I]",
}


def disassemble_op(b0: int, b1: int, addr: int) -> str:
    """One listing line for the instruction bytes at ``addr``"""
    try:
        text = mnemonic(decode(b0, b1, addr))
    except DecodeError:
        text = f".word 0x{(b0 << 8) | b1:04X}   ; unknown opcode"
    return f"{addr:04X} {b0:02X} {b1:02X} {text}"


def iter_disassembly(data: bytes, start_addr: int = PROGRAM_START) -> Iterator[str]:
    """
    Convert binary CHIP-8 data into listing lines, two bytes at a time.

    Args:
        data: raw program image
        start_addr: address the image is loaded at
    """
    addr = start_addr
    i = 0
    while i + 1 < len(data):
        yield disassemble_op(data[i], data[i + 1], addr)
        addr += 2
        i += 2
    # If there is a trailing byte, show it as data
    if i < len(data):
        yield f"{addr:04X} {data[i]:02X}    .byte 0x{data[i]:02X}   ; odd trailing byte"


def disassemble(data: bytes, start_addr: int = PROGRAM_START) -> List[str]:
    return list(iter_disassembly(data, start_addr))
