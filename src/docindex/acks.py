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
"""Acknowledgement tracking for mutating calls.

Every mutating operation resolves to one of three outcomes: fully
acknowledged, partially acknowledged (applied, but not every replica or node
confirmed before the timeout) or an exception. This module interprets backend
responses into ``AckStatus`` and defines the typed result values returned by
the index, document, update and bulk components. A partial outcome is never
reported as plain success; callers that need full replication call
``require_full()``.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Self

from .exceptions import PartialAcknowledgedError


__all__ = [
    'AckStatus',
    'Acknowledgement',
    'WriteResult',
    'DeleteResult',
    'UpdateResult',
    'UpsertResult',
    'ack_status',
    'track',
]

logger = logging.getLogger(__name__)


class AckStatus(enum.Enum):
    ACKNOWLEDGED = 'acknowledged'
    PARTIAL = 'partial'


def ack_status(content: Any) -> AckStatus:
    """Interpret a backend response as an ``AckStatus``.

    Administrative responses report ``acknowledged`` (and, for index
    creation, ``shards_acknowledged``); document and refresh responses
    report a ``_shards`` summary. Either signal falling short of full
    confirmation yields ``AckStatus.PARTIAL``.
    """
    if not isinstance(content, dict):
        return AckStatus.ACKNOWLEDGED
    if content.get('acknowledged') is False or content.get('shards_acknowledged') is False:
        return AckStatus.PARTIAL
    shards = content.get('_shards')
    if isinstance(shards, dict):
        total = shards.get('total', 0)
        successful = shards.get('successful', total)
        if shards.get('failed', 0) or successful < total:
            return AckStatus.PARTIAL
    return AckStatus.ACKNOWLEDGED


def track(content: Any, operation: str, index: Any, id: str | None = None) -> AckStatus:
    """Like ``ack_status``, logging a warning for partial outcomes."""
    status = ack_status(content)
    if status is AckStatus.PARTIAL:
        shards = content.get('_shards') if isinstance(content, dict) else None
        logger.warning(
            f"Partially acknowledged {operation} :: INDEX: {index} :: ID: {id} :: SHARDS: {shards}")
    return status


@dataclass(frozen=True)
class Acknowledgement:
    """Outcome of a mutating call.

    Attributes:
        status: Whether the backend fully or partially acknowledged.
        operation: Name of the operation that produced this result.
        index: Index (or indices) the operation targeted.
    """

    status: AckStatus
    operation: str
    index: Any

    @property
    def acknowledged(self) -> bool:
        return self.status is AckStatus.ACKNOWLEDGED

    @property
    def partial(self) -> bool:
        return self.status is AckStatus.PARTIAL

    def require_full(self) -> Self:
        """Return ``self``, or raise if the outcome was only partial.

        Raises:
            PartialAcknowledgedError: If ``status`` is ``PARTIAL``.
        """
        if self.partial:
            raise PartialAcknowledgedError(
                "Operation was only partially acknowledged",
                index=self.index,
                id=getattr(self, 'id', None),
                operation=self.operation,
            )
        return self


@dataclass(frozen=True)
class WriteResult(Acknowledgement):
    id: str
    version: int
    created: bool
    seq_no: int | None = None
    primary_term: int | None = None


@dataclass(frozen=True)
class DeleteResult(Acknowledgement):
    id: str
    version: int | None
    found: bool


@dataclass(frozen=True)
class UpdateResult(Acknowledgement):
    """Result of ``MergeUpdateEngine.update``.

    ``result`` is ``'updated'``, ``'noop'`` (nothing changed, nothing
    written) or ``'created'``; ``attempts`` counts Resolve/Apply/Commit
    cycles, so ``attempts - 1`` version conflicts were retried.
    """

    id: str
    version: int
    result: str
    attempts: int


@dataclass(frozen=True)
class UpsertResult(UpdateResult):
    was_insert: bool
