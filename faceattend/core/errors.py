class FaceAttendError(Exception):
    """
    Base class for errors raised by the attendance core.
    """


class ConfigurationError(FaceAttendError):
    """
    A tunable was given a value the component cannot work with.
    """


class RepositoryUnavailableError(FaceAttendError):
    """
    The descriptor store could not be read or written.
    """


class DimensionMismatchError(FaceAttendError, ValueError):
    """
    Two descriptors of different lengths were compared.
    """

    def __init__(self, left, right):
        self.left = left
        self.right = right
        super().__init__(f"Descriptor dimensions differ: {left} vs {right}")


class InvalidDetectionError(FaceAttendError, ValueError):
    """
    A record from the face detector is malformed.
    """


class ChallengeStateError(FaceAttendError):
    """
    A liveness challenge operation was called in the wrong state.
    """
