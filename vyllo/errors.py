"""
errors.py: Error taxonomy shared by the generation pipeline.

  RateLimitedError     → retried by vyllo.retry (bounded)
  InvalidRequestError  → caller / prompt defect, never retried
  UnavailableError     → provider failure, tolerated per batch item
  NoImageReturnedError → provider answered without an image (Unavailable)
  InvalidBufferShape   → matting precondition, programmer error
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    INVALID_REQUEST = "invalid_request"
    UNAVAILABLE = "unavailable"


class VylloError(Exception):
    """Base class for every error raised by vyllo."""


class GenerationError(VylloError):
    """A classified failure from a generation or completion collaborator."""

    kind: ErrorKind = ErrorKind.UNAVAILABLE


class RateLimitedError(GenerationError):
    kind = ErrorKind.RATE_LIMITED


class InvalidRequestError(GenerationError):
    kind = ErrorKind.INVALID_REQUEST


class UnavailableError(GenerationError):
    kind = ErrorKind.UNAVAILABLE


class NoImageReturnedError(UnavailableError):
    """Provider responded but the payload held no usable image part."""


class InvalidBufferShape(VylloError, ValueError):
    """Pixel buffer length does not match width × height × 4."""


class SessionBusyError(VylloError):
    """Raised when a session already has an operation in flight."""


class NoActiveDesignError(VylloError):
    """Raised when an edit or mockup is requested before a design is open."""
