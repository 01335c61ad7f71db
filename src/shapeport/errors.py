"""Exceptions raised by the caller-facing operations.

Kernel failures surface as ``GeneralError``; host document errors pass through
unchanged. DXF operations report every failure as ``DxfError``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import ezdxf
import structlog

from hostdoc.document import DocumentError
from hostdoc.params import ParameterError
from kernel.occt_io import (
    KernelReadError,
    KernelTransferError,
    OCCTNotAvailableError,
    failure_message,
    is_kernel_failure,
)
from kernel.writers import FeatureUnavailableError, KernelWriteError

logger = structlog.get_logger(__name__)

__all__ = [
    "ShapePortError", "GeneralError", "UnsupportedFormatError", "DxfError",
    "KernelReadError", "KernelTransferError", "KernelWriteError",
    "FeatureUnavailableError", "OCCTNotAvailableError", "DocumentError",
    "translate_kernel_errors", "translate_dxf_errors",
]


class ShapePortError(Exception):
    """Base class for errors raised by ShapePort operations."""

    pass


class GeneralError(ShapePortError):
    """A kernel operation failed; the message is the kernel's."""

    pass


class UnsupportedFormatError(ShapePortError, OSError):
    """The file extension names no format the operation supports."""

    def __init__(self, message: str = "no supported file format") -> None:
        super().__init__(message)


class DxfError(ShapePortError, RuntimeError):
    """A DXF read or write failed."""

    pass


@contextmanager
def translate_kernel_errors() -> Iterator[None]:
    """Re-raise kernel exceptions as ``GeneralError``; others propagate."""
    try:
        yield
    except Exception as exc:
        if isinstance(exc, ShapePortError) or not is_kernel_failure(exc):
            raise
        message = failure_message(exc)
        logger.error("Kernel operation failed", error=message, kernel_error=type(exc).__name__)
        raise GeneralError(message) from exc


@contextmanager
def translate_dxf_errors() -> Iterator[None]:
    """Re-raise kernel, host, ezdxf and I/O failures as ``DxfError``."""
    try:
        yield
    except DxfError:
        raise
    except (DocumentError, ParameterError, ezdxf.DXFError, OSError) as exc:
        raise DxfError(str(exc) or type(exc).__name__) from exc
    except Exception as exc:
        if not is_kernel_failure(exc):
            raise
        raise DxfError(failure_message(exc)) from exc
