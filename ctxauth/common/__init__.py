# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package common provides shared helpers: identifiers, hashing and time.
"""

from .utils import (
    Clock,
    get_current_time,
    generate_id,
    hash_string,
    stable_hash,
    sorted_ids,
    to_millis,
    from_millis,
    parse_iso_timestamp,
    mask_identifier,
)

__all__ = [
    "Clock",
    "get_current_time",
    "generate_id",
    "hash_string",
    "stable_hash",
    "sorted_ids",
    "to_millis",
    "from_millis",
    "parse_iso_timestamp",
    "mask_identifier",
]
