_TIME_RANGE_MARKER = "-->"
_HEADER_TOKEN = "WEBVTT"
_COMMENT_TOKEN = "NOTE"


def parse_transcript(caption_document: str | None) -> str:
    """Flatten a WebVTT caption document into a single line of plain text.

    Only lines that follow a cue timing line are kept, up to the next blank
    line. Cue identifiers, the file header and NOTE blocks are dropped.
    """
    if not isinstance(caption_document, str) or not caption_document:
        return ""

    text_parts: list[str] = []
    in_cue_text = False
    for raw_line in caption_document.splitlines():
        line = raw_line.strip()
        if _TIME_RANGE_MARKER in line:
            in_cue_text = True
            continue
        if not line:
            in_cue_text = False
            continue
        if not in_cue_text:
            continue
        if line.startswith(_HEADER_TOKEN) or line.startswith(_COMMENT_TOKEN):
            continue
        text_parts.append(line)

    return " ".join(text_parts).strip()
