"""Source encoding detection and normalisation to UTF-8.

PHP projects in the wild still ship EUC-JP and Shift_JIS files. Everything
downstream of this module only ever sees ``str``.
"""
import codecs
import re
from typing import Optional

from phpjanitor.errors import EncodingError


BOMS = (
    (codecs.BOM_UTF32_LE, 'utf-32'),
    (codecs.BOM_UTF32_BE, 'utf-32'),
    (codecs.BOM_UTF8, 'utf-8-sig'),
    (codecs.BOM_UTF16_LE, 'utf-16'),
    (codecs.BOM_UTF16_BE, 'utf-16'),
)

# Tried in order after BOM / declare() detection fails
DETECT_ORDER = ('utf-8', 'euc-jp', 'shift_jis', 'cp932')

DECLARE_ENCODING = re.compile(rb"""declare\s*\(\s*encoding\s*=\s*['"]([^'"]+)['"]\s*\)""", re.IGNORECASE)

ALIASES = {
    'sjis': 'shift_jis',
    'sjis-win': 'cp932',
    'ms932': 'cp932',
    'windows-31j': 'cp932',
    'eucjp': 'euc-jp',
    'ujis': 'euc-jp',
    'jis': 'iso2022_jp',
}


def normalize_codec_name(name: str) -> str:
    """Map PHP / mbstring style encoding names onto Python codec names.

    Raises:
        EncodingError: If Python has no codec for the name
    """
    lowered = name.strip().lower()
    lowered = ALIASES.get(lowered, lowered)
    try:
        return codecs.lookup(lowered).name
    except LookupError as e:
        raise EncodingError(f"Unknown encoding: {name}") from e


def detect_encoding(raw: bytes) -> Optional[str]:
    """Guess the codec of raw PHP source.

    Args:
        raw: File content as bytes

    Returns:
        Codec name, or None if no candidate decodes cleanly
    """
    for bom, codec in BOMS:
        if raw.startswith(bom):
            return codec

    match = DECLARE_ENCODING.search(raw[:1024])
    if match:
        try:
            return normalize_codec_name(match.group(1).decode('ascii', errors='ignore'))
        except EncodingError:
            pass  # fall through to sniffing

    for codec in DETECT_ORDER:
        try:
            raw.decode(codec)
            return codec
        except UnicodeDecodeError:
            continue
    return None


def normalize_to_utf8(raw: bytes, declared: str = 'auto') -> str:
    """Decode PHP source bytes into text.

    Args:
        raw: File content as bytes
        declared: Codec name from configuration, or 'auto' to detect

    Returns:
        Decoded source text (BOM stripped)

    Raises:
        EncodingError: If an explicitly configured codec cannot decode the bytes
    """
    if declared and declared.lower() != 'auto':
        codec = normalize_codec_name(declared)
        try:
            text = raw.decode(codec)
        except UnicodeDecodeError as e:
            raise EncodingError(f"Cannot decode as {declared}: {e.reason} at byte {e.start}") from e
        return text.lstrip('\ufeff')

    codec = detect_encoding(raw)
    if codec is None:
        # Last resort: Latin-1 always succeeds
        codec = 'latin-1'
    try:
        text = raw.decode(codec)
    except UnicodeDecodeError as e:
        # declare() lied about the encoding
        raise EncodingError(f"Cannot decode as {codec}: {e.reason} at byte {e.start}") from e
    return text.lstrip('\ufeff')
