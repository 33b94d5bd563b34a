from __future__ import annotations


class CutoutError(Exception):
    pass


class DecodeError(CutoutError):
    """Source bytes could not be decoded into a pixel buffer."""


class ContextUnavailableError(CutoutError):
    """The decoded image could not be turned into an RGBA pixel surface."""


class InvalidInputError(CutoutError, ValueError):
    pass
