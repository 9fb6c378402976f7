from .decoder import (
    OPCODES, INSTRUCTION_WORDS, IllegalOpcode, DecodedInstruction,
    decode_instruction, disassemble, disassemble_text,
)
