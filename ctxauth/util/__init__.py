# Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
# All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
# See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
# Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

"""
Package util provides configuration helpers shared by the engine.
"""

from .config import (
    get_config_value,
    get_bool_config,
    get_int_config,
    parse_bool,
    get_list_config,
    get_millis_config,
    parse_duration_string,
    load_config_file,
)

__all__ = [
    'get_config_value',
    'get_bool_config',
    'get_int_config',
    'parse_bool',
    'get_list_config',
    'get_millis_config',
    'parse_duration_string',
    'load_config_file',
]
