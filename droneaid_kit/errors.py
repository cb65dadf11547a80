"""
Error types raised by the pipeline stages.

Every stage propagates these unchanged; only `DroneAidPipeline.predict` turns
them into an empty result.
"""


class DroneAidError(Exception):
    """Base class for pipeline failures."""


class DecodeError(DroneAidError, ValueError):
    """The image could not be read or decoded into pixels."""


class ModelUnavailableError(DroneAidError, RuntimeError):
    """The inference engine has not been loaded."""


class ShapeMismatchError(DroneAidError, ValueError):
    """Raw model outputs do not match the expected box/class counts."""


class EmptyInputError(DroneAidError, ValueError):
    """No input tensor was handed to the inference step."""
