"""
Failure taxonomy for scene extraction.

Every per-node, per-mesh and per-texture step raises one of these and the
scene loader downgrades it to "absent" for that one item.
"""


class SceneError(Exception):
    """Base class for all extraction failures."""


class MissingField(SceneError):
    """A required field is absent from a structured-value tree."""

    def __init__(self, record: str, path: str):
        super().__init__(f"{record}: missing field '{path}'")
        self.record = record
        self.path = path


class UnresolvedReference(SceneError):
    """An object pointer is null or does not resolve to a known object."""

    def __init__(self, file_id: int, path_id: int, what: str = "object"):
        super().__init__(f"Unresolved {what} reference (file {file_id}, path {path_id})")
        self.file_id = file_id
        self.path_id = path_id


class UnsupportedFormat(SceneError):
    """Unknown vertex format code or engine version epoch."""


class IOFailure(SceneError, OSError):
    """The resource backing a mesh or texture cannot be reached."""


class MalformedData(SceneError, ValueError):
    """Buffer contents contradict their own descriptors."""


class LoadCancelled(SceneError):
    """The scene load was cancelled between node resolutions."""
