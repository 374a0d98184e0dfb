"""
Zero-width encoding for the blank payload

Obfuscation only: anyone who knows the scheme can read it.
"""
import base64
import binascii

ZW_SPACE = "\u200b"       # bit 0
ZW_NONJOIN = "\u200c"     # bit 1
BRAILLE_BLANK = "\u2800"  # guard so carriers do not drop an all-invisible body


def encode_invisible(text: str) -> str:
    """Encode text as a run of zero-width characters between two guards"""
    b64 = base64.b64encode(text.encode("utf-8")).decode("ascii")
    bits = "".join(format(ord(ch), "08b") for ch in b64)
    body = "".join(ZW_SPACE if bit == "0" else ZW_NONJOIN for bit in bits)
    return BRAILLE_BLANK + body + BRAILLE_BLANK


def decode_invisible(carrier: str) -> str:
    """
    Inverse of encode_invisible.

    Raises:
        ValueError: carrier is not a well-formed payload
    """
    if len(carrier) < 2 or carrier[0] != BRAILLE_BLANK or carrier[-1] != BRAILLE_BLANK:
        raise ValueError("missing guard characters")

    body = carrier[1:-1]
    if len(body) % 8:
        raise ValueError("payload length is not a whole number of bytes")

    bits = []
    for ch in body:
        if ch == ZW_SPACE:
            bits.append("0")
        elif ch == ZW_NONJOIN:
            bits.append("1")
        else:
            raise ValueError(f"unexpected character U+{ord(ch):04X} in payload")

    bitstring = "".join(bits)
    b64 = "".join(chr(int(bitstring[i:i + 8], 2)) for i in range(0, len(bitstring), 8))
    try:
        return base64.b64decode(b64, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"payload is not valid base64 text: {e}") from e
