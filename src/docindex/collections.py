# Copyright (c) 2015-2019 Dubalu LLC
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
"""Data structure helpers shared across docindex.

Provides ``DictObject``, a dict with attribute-style access used as the
``object_pairs_hook`` when decoding JSON and msgpack responses, the ``NA``
sentinel for "no default supplied", and ``merge_source``, the recursive
structural merge applied by partial-document updates.

Example:
    >>> merge_source({'a': 1, 'b': {'x': 1}}, {'b': {'y': 2}})
    {'a': 1, 'b': {'x': 1, 'y': 2}}
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any


NA = object()


class DictObject(dict):
    """Dictionary with attribute-style access.

    A simple ``dict`` subclass that maps its internal ``__dict__`` to
    itself, allowing keys to be accessed as attributes.

    Example:
        >>> obj = DictObject(_id='1', _version=3)
        >>> obj._version
        3
    """

    def __init__(self, *args, **kwargs):
        dict.__init__(self, *args, **kwargs)
        self.__dict__ = self


def plain(value: Any) -> Any:
    """Recursively convert mappings (including ``DictObject``) to plain dicts.

    Lists and tuples are converted to lists; everything else is returned
    unchanged.
    """
    if isinstance(value, Mapping):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [plain(v) for v in value]
    return value


def merge_source(original: Mapping, partial: Mapping) -> dict:
    """Merge a partial document into a stored document source.

    The merge is structural and recursive:

    * scalar values in ``partial`` replace the stored value;
    * object values are merged key by key when both sides are objects;
    * arrays are replaced wholesale, never merged element by element;
    * keys absent from ``original`` are added.

    Neither argument is modified; the result shares no mutable state with
    either of them.

    Args:
        original: The stored document source.
        partial: The partial document to merge in.

    Returns:
        dict: The merged source.
    """
    merged = plain(original)
    for key, value in partial.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_source(current, value)
        else:
            merged[key] = plain(value)
    return merged
