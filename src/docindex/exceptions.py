# -*- coding: utf-8 -*-
#
# Copyright (C) 2015-2026 Dubalu LLC. All rights reserved.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN
# THE SOFTWARE.
#
"""Exception taxonomy for docindex.

Every error raised by the client is a ``DocIndexError`` carrying the index,
document id, operation and HTTP status it was raised for, so callers can log
or react without parsing messages. ``error_from_response`` translates a
backend error payload into the matching exception class.
"""
from __future__ import annotations

from typing import Any

try:
    from django.core.exceptions import ObjectDoesNotExist
except ImportError:
    ObjectDoesNotExist = Exception

import httpx


__all__ = [
    'DocIndexError',
    'NotFoundError',
    'AlreadyExistsError',
    'InvalidSchemaError',
    'MappingConflictError',
    'ImmutableSettingError',
    'VersionConflictError',
    'BackendUnavailableError',
    'PartialAcknowledgedError',
    'TransportError',
    'error_from_response',
]


TransportError = httpx.HTTPStatusError


class DocIndexError(Exception):
    """Base class for all docindex errors.

    Attributes:
        index: Index (or indices) the failed operation targeted.
        id: Document id, when the operation addressed a single document.
        operation: Name of the attempted operation (e.g. ``'update'``).
        status: HTTP status returned by the backend, if any.
        reason: Backend supplied reason, if any.
    """

    retryable = False

    def __init__(self, message: str = '', index: Any = None, id: str | None = None,
            operation: str | None = None, status: int | None = None,
            reason: str | None = None) -> None:
        super().__init__(message)
        self.index = index
        self.id = id
        self.operation = operation
        self.status = status
        self.reason = reason

    def __str__(self) -> str:
        message = super().__str__()
        context = [
            f'{name}={value}'
            for name, value in (('operation', self.operation), ('index', self.index), ('id', self.id))
            if value is not None
        ]
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class NotFoundError(DocIndexError, ObjectDoesNotExist):
    """Raised when a requested index or document does not exist (HTTP 404).

    Inherits from Django's ``ObjectDoesNotExist`` when Django is available.
    """


class AlreadyExistsError(DocIndexError):
    """Raised when creating an index whose name is already taken."""


class InvalidSchemaError(DocIndexError):
    """Raised for self-contradictory or backend-rejected schema descriptors."""


class MappingConflictError(DocIndexError):
    """Raised when a mapping would redeclare an existing field incompatibly."""


class ImmutableSettingError(DocIndexError):
    """Raised when changing a setting that is fixed after index creation."""


class VersionConflictError(DocIndexError):
    """Raised when a document changed since the writer last read it."""

    retryable = True


class BackendUnavailableError(DocIndexError):
    """Raised when the cluster cannot be reached or refuses service.

    Never retried by this library.
    """


class PartialAcknowledgedError(DocIndexError):
    """Raised by ``require_full()`` on a partially acknowledged result."""


_ERROR_TYPES = {
    'index_not_found_exception': NotFoundError,
    'document_missing_exception': NotFoundError,
    'resource_not_found_exception': NotFoundError,
    'aliases_not_found_exception': NotFoundError,
    'resource_already_exists_exception': AlreadyExistsError,
    'index_already_exists_exception': AlreadyExistsError,
    'invalid_index_name_exception': InvalidSchemaError,
    'mapper_parsing_exception': InvalidSchemaError,
    'version_conflict_engine_exception': VersionConflictError,
    'cluster_block_exception': BackendUnavailableError,
    'no_shard_available_action_exception': BackendUnavailableError,
    'master_not_discovered_exception': BackendUnavailableError,
}

_STATUS_ERRORS = {
    404: NotFoundError,
    409: VersionConflictError,
    502: BackendUnavailableError,
    503: BackendUnavailableError,
    504: BackendUnavailableError,
}


def _error_details(content: Any) -> tuple[str | None, str | None]:
    if not isinstance(content, dict):
        return None, None
    error = content.get('error')
    if isinstance(error, dict):
        return error.get('type'), error.get('reason')
    if isinstance(error, str):
        return None, error
    return None, None


def _classify_illegal_argument(reason: str) -> type[DocIndexError] | None:
    if 'mapper [' in reason or 'cannot be changed from type' in reason:
        return MappingConflictError
    if 'non dynamic settings' in reason or 'final index setting' in reason:
        return ImmutableSettingError
    return None


def error_from_response(status: int, content: Any, index: Any = None,
        id: str | None = None, operation: str | None = None) -> DocIndexError | None:
    """Translate a backend error response into a ``DocIndexError``.

    Args:
        status: HTTP status code of the response.
        content: Decoded response body (may be ``None`` or raw bytes).
        index: Index the request targeted.
        id: Document id the request targeted.
        operation: Name of the attempted operation.

    Returns:
        DocIndexError | None: The matching exception instance, or ``None``
            when the response does not map to a known error class (callers
            then fall back to ``TransportError``).
    """
    error_type, reason = _error_details(content)
    cls = _ERROR_TYPES.get(error_type)
    if cls is None and error_type == 'illegal_argument_exception' and reason:
        cls = _classify_illegal_argument(reason)
    if cls is None:
        cls = _STATUS_ERRORS.get(status)
    if cls is None:
        return None
    message = reason or error_type or f'HTTP {status}'
    return cls(message, index=index, id=id, operation=operation, status=status, reason=reason)
