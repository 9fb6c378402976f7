from .memory import Memory, WORD_MASK, ADDRESS_LIMIT, PAGE_SIZE
