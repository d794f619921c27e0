"""
Output helpers for list commands.

Rows are built as tab separated cells and aligned into columns the same way
a tab writer with a minimum cell width of 8 and a padding of 2 would.
"""

from typing import List, Sequence

from syno_iscsi.dsm_client import LunInfo, MappedLun

GIB = 1024 ** 3

BYTE_UNITS = ["B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB"]

MIN_WIDTH = 8
PADDING = 2


def readable_byte_size(size: int) -> str:
    """
    Format a byte count with the largest binary unit that keeps the value >= 1.

    >>> readable_byte_size(123456)
    '120.56 KiB'
    """
    if size < 1:
        return "0.00 B"

    exp = 0
    while exp < len(BYTE_UNITS) - 1 and size >= 1024 ** (exp + 1):
        exp += 1

    return f"{size / 1024 ** exp:.2f} {BYTE_UNITS[exp]}"


def bytes_to_gib(size: int) -> int:
    """Whole GiB contained in size, rounded down."""
    return size // GIB


def align_columns(lines: Sequence[str]) -> str:
    """
    Align tab separated lines into padded columns.

    Every cell followed by a tab is padded to the widest cell of its column
    plus PADDING (at least MIN_WIDTH). The text after the last tab is left
    as is.
    """
    rows = [line.split("\t") for line in lines]

    widths: List[int] = []
    for row in rows:
        for index, cell in enumerate(row[:-1]):
            width = max(MIN_WIDTH, len(cell) + PADDING)
            if index == len(widths):
                widths.append(width)
            elif width > widths[index]:
                widths[index] = width

    output = []
    for row in rows:
        cells = [cell.ljust(widths[index]) for index, cell in enumerate(row[:-1])]
        output.append("".join(cells) + row[-1] + "\n")

    return "".join(output)


def build_lun_string(luns: Sequence[LunInfo], mapped_luns: Sequence[MappedLun]) -> str:
    """Comma separated names of the mapped LUNs; unknown uuids are skipped."""
    found = [
        lun['name']
        for mapped in mapped_luns
        for lun in luns
        if lun['uuid'] == mapped['lun_uuid']
    ]
    return ",".join(found)
