# Program image loading.

import pathlib
import struct

def parse_hex(text, *, max_words = None):
    """Parses a `$readmemh`-style image of 32-bit words.

    Words are whitespace separated hex numbers, optionally with `0x` prefixes
    and `_` separators. `//` and `#` start comments. `@addr` moves the load
    point to word address `addr` (hex); skipped words are zero.

    Raises ValueError for anything unparseable, and for images longer than
    `max_words` if given.
    """
    words = []
    addr = 0
    for (lineno, line) in enumerate(text.splitlines(), start = 1):
        for marker in ("//", "#"):
            line = line.split(marker, 1)[0]
        for token in line.split():
            if token.startswith("@"):
                try:
                    addr = int(token[1:], 16)
                except ValueError:
                    raise ValueError(
                        f"line {lineno}: bad address {token!r}"
                    ) from None
                continue
            try:
                word = int(token.replace("_", ""), 16)
            except ValueError:
                raise ValueError(f"line {lineno}: bad word {token!r}") from None
            if not 0 <= word < 1 << 32:
                raise ValueError(f"line {lineno}: {token!r} is not a 32-bit word")
            if addr >= len(words):
                words.extend([0] * (addr - len(words) + 1))
            words[addr] = word
            addr += 1

    _check_size(words, max_words)
    return words

def parse_binary(blob, *, max_words = None):
    """Splits a raw little-endian binary into 32-bit words, zero-padding the
    last one."""
    blob = bytes(blob)
    if len(blob) % 4:
        blob += bytes(4 - len(blob) % 4)
    words = list(struct.unpack("<" + "I" * (len(blob) // 4), blob))
    _check_size(words, max_words)
    return words

def _check_size(words, max_words):
    if max_words is not None and len(words) > max_words:
        raise ValueError(
            f"image is {len(words)} words but only {max_words} fit"
        )

def load_image(path, *, max_words = None):
    """Loads a program image from a file. Files ending in .bin are raw binary;
    anything else is treated as hex."""
    path = pathlib.Path(path)
    if path.suffix == ".bin":
        return parse_binary(path.read_bytes(), max_words = max_words)
    return parse_hex(path.read_text(), max_words = max_words)
