import re
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple

FIELD_SEP = "|"
COMP_SEP = "^"
SEGMENT_SEP = "\r"


class HL7Error(ValueError):
    """Base class for HL7 message errors."""


class StructuralError(HL7Error):
    """A complete frame does not have the segments its message type needs."""


def _split_fields(seg: str) -> List[str]:
    return seg.split(FIELD_SEP)


def _split_comp(val: str) -> List[str]:
    return val.split(COMP_SEP) if val else []


class MessageEnvelope(NamedTuple):
    message_type: str
    trigger_event: str

    def __str__(self) -> str:
        return f"{self.message_type}{COMP_SEP}{self.trigger_event}"


@dataclass(frozen=True)
class Segment:
    name: str
    fields: Tuple[str, ...]  # raw split, fields[0] is the segment name

    @classmethod
    def from_line(cls, line: str) -> "Segment":
        parts = _split_fields(line)
        return cls(name=parts[0].strip(), fields=tuple(parts))

    def field(self, n: int) -> str:
        """HL7 field ``n`` (1-based); empty string when the segment is shorter.

        MSH-1 is the field separator itself, so for MSH the raw split is
        shifted by one (MSH-9 -> fields[8]).
        """
        if n == 0:
            return self.name
        if self.name == "MSH":
            if n == 1:
                return FIELD_SEP
            n -= 1
        if n < 1 or n >= len(self.fields):
            return ""
        return self.fields[n]

    def component(self, n: int, m: int) -> str:
        comps = _split_comp(self.field(n))
        return comps[m - 1] if 0 < m <= len(comps) else ""

    def __str__(self) -> str:
        return FIELD_SEP.join(self.fields)


@dataclass(frozen=True)
class HL7Message:
    segments: Tuple[Segment, ...]

    @property
    def msh(self) -> Segment:
        return self.segments[0]

    def segment(self, name: str) -> Optional[Segment]:
        return next((s for s in self.segments if s.name == name), None)

    def segments_named(self, name: str) -> List[Segment]:
        return [s for s in self.segments if s.name == name]

    @property
    def envelope(self) -> MessageEnvelope:
        return MessageEnvelope(self.msh.component(9, 1), self.msh.component(9, 2))

    @property
    def control_id(self) -> str:
        return self.msh.field(10)

    @property
    def version(self) -> str:
        return self.msh.field(12)


def split_segments(hl7_text: str) -> List[str]:
    """Split on CR (also CRLF/LF from hand-edited files), skipping empty lines."""
    return [s for s in re.split(r"\r\n|\n|\r", hl7_text) if s.strip()]


def parse(payload: str) -> HL7Message:
    if not payload or not payload.strip():
        raise StructuralError("Empty HL7 message")

    lines = split_segments(payload.strip("\x0b\x1c"))
    start = next((i for i, line in enumerate(lines) if line.startswith("MSH")), None)
    if start is None:
        raise StructuralError("Invalid HL7 message: missing MSH segment")

    segments = tuple(Segment.from_line(line) for line in lines[start:])
    return HL7Message(segments=segments)
