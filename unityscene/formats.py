"""
Vertex format and channel tables.

Unity has renumbered its vertex format enum twice and reshuffled the channel
slots once. The tables for one engine version are bundled into a
``VertexProfile`` that is resolved once per scene load.

Format numbering schemes:
  LEGACY      (before 2017)  Float, Float16, Color, Byte, UInt32
  UNITY_2017  (2017 - 2018)  Float, Float16, Color, UNorm8, SNorm8, UNorm16,
                             SNorm16, UInt8, SInt8, UInt16, SInt16, UInt32, SInt32
  UNITY_2019  (2019+)        Float, Float16, UNorm8, SNorm8, UNorm16, SNorm16,
                             UInt8, SInt8, UInt16, SInt16, UInt32, SInt32

Channel layouts:
  2018+   Vertex, Normal, Tangent, Color, TexCoord0-7, BlendWeight, BlendIndices
  older   Vertex, Normal, Color, TexCoord0-3, Tangent
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from construct import (
    Float16l,
    Float32l,
    Int8sl,
    Int8ul,
    Int16sl,
    Int16ul,
    Int32sl,
    Int32ul,
)

from .errors import UnsupportedFormat


class VertexFormat(Enum):
    """Canonical vertex element format."""
    FLOAT32 = "float32"
    FLOAT16 = "float16"
    UNORM8 = "unorm8"
    SNORM8 = "snorm8"
    UNORM16 = "unorm16"
    SNORM16 = "snorm16"
    UINT8 = "uint8"
    SINT8 = "sint8"
    UINT16 = "uint16"
    SINT16 = "sint16"
    UINT32 = "uint32"
    SINT32 = "sint32"


# Element layout of each canonical format
ELEMENTS = {
    VertexFormat.FLOAT32: Float32l,
    VertexFormat.FLOAT16: Float16l,
    VertexFormat.UNORM8: Int8ul,
    VertexFormat.SNORM8: Int8sl,
    VertexFormat.UNORM16: Int16ul,
    VertexFormat.SNORM16: Int16sl,
    VertexFormat.UINT8: Int8ul,
    VertexFormat.SINT8: Int8sl,
    VertexFormat.UINT16: Int16ul,
    VertexFormat.SINT16: Int16sl,
    VertexFormat.UINT32: Int32ul,
    VertexFormat.SINT32: Int32sl,
}

INTEGER_FORMATS = frozenset({
    VertexFormat.UINT8,
    VertexFormat.SINT8,
    VertexFormat.UINT16,
    VertexFormat.SINT16,
    VertexFormat.UINT32,
    VertexFormat.SINT32,
})


def format_size(fmt: VertexFormat) -> int:
    """Byte size of one component of the given format."""
    return ELEMENTS[fmt].sizeof()


class Semantic(Enum):
    VERTEX = "vertex"
    NORMAL = "normal"
    TANGENT = "tangent"
    COLOR = "color"
    UV0 = "uv0"
    UV1 = "uv1"
    UV2 = "uv2"
    UV3 = "uv3"
    UV4 = "uv4"
    UV5 = "uv5"
    UV6 = "uv6"
    UV7 = "uv7"
    BLEND_WEIGHT = "blend_weight"
    BLEND_INDICES = "blend_indices"

    @property
    def uv_index(self) -> Optional[int]:
        if self.value.startswith("uv"):
            return int(self.value[2:])
        return None


UV_SEMANTICS = (
    Semantic.UV0, Semantic.UV1, Semantic.UV2, Semantic.UV3,
    Semantic.UV4, Semantic.UV5, Semantic.UV6, Semantic.UV7,
)

# =============================================================================
# NUMBERING TABLES
# =============================================================================

class FormatEpoch(Enum):
    LEGACY = "legacy"
    UNITY_2017 = "2017"
    UNITY_2019 = "2019"


LEGACY_FORMATS = {
    0: VertexFormat.FLOAT32,
    1: VertexFormat.FLOAT16,
    2: VertexFormat.UNORM8,  # Color
    3: VertexFormat.UINT8,   # Byte
    4: VertexFormat.UINT32,
}

UNITY_2017_FORMATS = {
    0: VertexFormat.FLOAT32,
    1: VertexFormat.FLOAT16,
    2: VertexFormat.UNORM8,  # Color
    3: VertexFormat.UNORM8,
    4: VertexFormat.SNORM8,
    5: VertexFormat.UNORM16,
    6: VertexFormat.SNORM16,
    7: VertexFormat.UINT8,
    8: VertexFormat.SINT8,
    9: VertexFormat.UINT16,
    10: VertexFormat.SINT16,
    11: VertexFormat.UINT32,
    12: VertexFormat.SINT32,
}

UNITY_2019_FORMATS = {
    0: VertexFormat.FLOAT32,
    1: VertexFormat.FLOAT16,
    2: VertexFormat.UNORM8,
    3: VertexFormat.SNORM8,
    4: VertexFormat.UNORM16,
    5: VertexFormat.SNORM16,
    6: VertexFormat.UINT8,
    7: VertexFormat.SINT8,
    8: VertexFormat.UINT16,
    9: VertexFormat.SINT16,
    10: VertexFormat.UINT32,
    11: VertexFormat.SINT32,
}

FORMAT_TABLES = {
    FormatEpoch.LEGACY: LEGACY_FORMATS,
    FormatEpoch.UNITY_2017: UNITY_2017_FORMATS,
    FormatEpoch.UNITY_2019: UNITY_2019_FORMATS,
}

# Channel index -> semantic
CHANNELS_V2 = (
    Semantic.VERTEX,
    Semantic.NORMAL,
    Semantic.COLOR,
    Semantic.UV0,
    Semantic.UV1,
    Semantic.UV2,
    Semantic.UV3,
    Semantic.TANGENT,
)

CHANNELS_V3 = (
    Semantic.VERTEX,
    Semantic.NORMAL,
    Semantic.TANGENT,
    Semantic.COLOR,
) + UV_SEMANTICS + (
    Semantic.BLEND_WEIGHT,
    Semantic.BLEND_INDICES,
)

# =============================================================================
# VERSION RESOLUTION
# =============================================================================

_VERSION_RE = re.compile(r"^\s*(\d+)\.(\d+)")


@dataclass(frozen=True)
class UnityVersion:
    major: int
    minor: int = 0

    @classmethod
    def parse(cls, text: str) -> "UnityVersion":
        """Parse an engine version string such as ``2019.4.31f1``."""
        match = _VERSION_RE.match(text or "")
        if not match:
            raise UnsupportedFormat(f"Unrecognized engine version: {text!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True)
class VertexProfile:
    """Format and channel tables for one engine version."""
    version: UnityVersion
    epoch: FormatEpoch
    formats: Dict[int, VertexFormat]
    channels: Tuple[Semantic, ...]

    @property
    def uv_slots(self) -> int:
        return sum(1 for s in self.channels if s.uv_index is not None)

    def resolve_format(self, code: int) -> VertexFormat:
        try:
            return self.formats[code]
        except KeyError:
            raise UnsupportedFormat(
                f"Unknown vertex format {code} for {self.epoch.value} formats (engine {self.version})"
            ) from None

    def semantic(self, channel_index: int) -> Optional[Semantic]:
        if 0 <= channel_index < len(self.channels):
            return self.channels[channel_index]
        return None


def resolve_profile(version) -> VertexProfile:
    """Build the vertex profile for an engine version string or UnityVersion."""
    if not isinstance(version, UnityVersion):
        version = UnityVersion.parse(version)

    if version.major >= 2019:
        epoch = FormatEpoch.UNITY_2019
    elif version.major >= 2017:
        epoch = FormatEpoch.UNITY_2017
    else:
        epoch = FormatEpoch.LEGACY

    channels = CHANNELS_V3 if version.major >= 2018 else CHANNELS_V2
    return VertexProfile(version, epoch, FORMAT_TABLES[epoch], channels)
