"""Input sanitization for uploaded capture files."""

import re

# Control characters (including newlines) that could forge log lines
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_filename(filename: str | None, max_length: int = 255) -> str:
    """Make an uploaded filename safe to log and store.

    Directory parts, ``..`` sequences and control characters are dropped
    and the result is truncated to ``max_length``, keeping a short
    extension.

    Args:
        filename: Filename as sent by the client
        max_length: Maximum length of the result

    Returns:
        The cleaned name, or ``"unknown"`` when nothing usable is left
    """
    if not filename:
        return "unknown"

    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = CONTROL_CHARS.sub("", name.replace("..", ""))

    if len(name) > max_length:
        stem, dot, ext = name.rpartition(".")
        if dot and stem:
            ext = ext[:10]
            name = f"{stem[: max_length - len(ext) - 1]}.{ext}"
        else:
            name = name[:max_length]

    return name or "unknown"
