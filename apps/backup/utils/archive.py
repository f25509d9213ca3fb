import zipfile
from io import BytesIO
from typing import Iterable, Tuple


def build_zip(payloads: Iterable[Tuple[str, str]]) -> bytes:
    """Pack (filename, text) pairs into a flat deflated archive, UTF-8 encoded."""
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for filename, content in payloads:
            archive.writestr(filename, content.encode("utf-8"))
    return buffer.getvalue()
