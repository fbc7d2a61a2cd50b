"""Legacy codepage helpers.

Shell packages were authored on Japanese Windows: text files and archive entry
names are CP932 (Shift_JIS superset) unless the author used a modern editor.
"""
from __future__ import annotations

import zipfile

LEGACY_ENCODING = "cp932"

# ZIP general purpose flag bit 11: entry name is UTF-8
_UTF8_NAME_FLAG = 0x800


def decode_legacy(data: bytes, encoding: str = LEGACY_ENCODING) -> str:
    """Decode with the legacy codepage, replacing undecodable bytes."""
    if data.startswith(b"\xef\xbb\xbf"):
        return data[3:].decode("utf-8", errors="replace")
    return data.decode(encoding, errors="replace")


def decode_with_fallback(data: bytes, encoding: str = LEGACY_ENCODING) -> str:
    """Strict legacy decode first, then UTF-8, then lossy legacy decode."""
    for enc in (encoding, "utf-8"):
        try:
            return data.decode(enc, errors="strict")
        except UnicodeDecodeError:
            continue
    return data.decode(encoding, errors="replace")


def repair_entry_name(info: zipfile.ZipInfo, encoding: str = LEGACY_ENCODING) -> str:
    """
    Recover the real name of an archive entry.

    zipfile decodes names without the UTF-8 flag as CP437, which garbles
    CP932 names. Re-encode to the stored bytes, accept them if they are valid
    UTF-8 that round-trips, otherwise decode with the legacy codepage.
    """
    if info.flag_bits & _UTF8_NAME_FLAG:
        return info.filename
    try:
        raw = info.filename.encode("cp437")
    except UnicodeEncodeError:
        return info.filename
    try:
        text = raw.decode("utf-8", errors="strict")
        if text.encode("utf-8") == raw:
            return text
    except UnicodeDecodeError:
        pass
    return raw.decode(encoding, errors="replace")
