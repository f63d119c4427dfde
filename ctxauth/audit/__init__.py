"""
Audit package for ctxauth.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.
"""

from .cipher import PayloadCipher
from .ledger import AuditLedger
from .sink import (
    AuditSink,
    MemoryAuditSink,
    FileAuditSink,
    RecordStoreAuditSink,
    create_audit_sink,
)

__all__ = [
    "PayloadCipher",
    "AuditLedger",
    "AuditSink",
    "MemoryAuditSink",
    "FileAuditSink",
    "RecordStoreAuditSink",
    "create_audit_sink",
]
