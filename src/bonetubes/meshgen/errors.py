"""Exceptions raised by the bone tube mesh generator."""


class MeshGenerationError(ValueError):
    """Base class for invalid mesh generation input."""


class InvalidArgumentError(MeshGenerationError):
    """Malformed subdivision counts, non-positive radius, empty bone list
    or a malformed bone frame."""


class DegenerateFrameError(MeshGenerationError):
    """A bone sits on its parent's origin and no fallback axis is configured."""

    def __init__(self, bone_index: int):
        super().__init__(
            f"Bone {bone_index} coincides with its parent position "
            "and no fallback axis is configured"
        )
        self.bone_index = bone_index
