"""
pdfops - resilient PDF operations over interchangeable engines.

The library validates, inspects, decrypts and merges PDF files through an
engine backend (the ``pdfcpu`` command line tool or the in-process ``pypdf``
library) and wraps every call in retry, memory supervision, output
management and rollback.

Quick Start:
    >>> from pdfops import ResilientPdfService
    >>> with ResilientPdfService() as service:
    ...     service.merge(["a.pdf", "b.pdf"], "merged.pdf")

Main Classes:
    - ResilientPdfService: Facade for every operation
    - RetryManager, MemoryMonitor, RecoveryManager: Fault tolerance
    - PasswordManager, Decryptor: Password cache and dictionary decryption
    - OutputManager, RollbackManager: Output paths and destination backups
    - StreamingMerger: Bounded-batch merging
    - ValidationReport, check_structure: Engine-free checks and reports
    - ABTestFramework, ABTestManager: Engine comparison

Errors:
    - PdfError: Every surfaced failure, tagged with an ErrorKind

For CLI usage, use the 'pdfops' command after installation.
"""

__version__ = "1.0.0"

# Core classes
from pdfops.service import ResilientPdfService
from pdfops.retry import MemoryMonitor, RecoveryManager, RetryManager
from pdfops.passwords import PasswordManager, password_strength
from pdfops.decryptor import Decryptor
from pdfops.output import OutputManager
from pdfops.rollback import RollbackManager
from pdfops.streaming import StreamingMerger, plan_merge
from pdfops.ab_testing import ABTestCase, ABTestFramework, ABTestManager, ABTestSuite
from pdfops.cancellation import CancellationToken
from pdfops.validation import ValidationReport, check_structure

# Engines
from pdfops.engines import CliEngine, EngineState, EngineStatus, PDFEngine, PypdfEngine, discover_engine

# Configuration
from pdfops.config import RetryConfig, ServiceConfig

# Data types
from pdfops.types import DecryptResult, JobStatus, MergeJob, OutputInfo, PDFInfo, RollbackToken

# Errors
from pdfops.errors import ErrorCollector, ErrorKind, PdfError, classify_error

__all__ = [
    # Main classes
    "ResilientPdfService",
    "RetryManager",
    "MemoryMonitor",
    "RecoveryManager",
    "PasswordManager",
    "password_strength",
    "Decryptor",
    "OutputManager",
    "RollbackManager",
    "StreamingMerger",
    "plan_merge",
    "ABTestFramework",
    "ABTestManager",
    "ABTestCase",
    "ABTestSuite",
    "CancellationToken",
    "ValidationReport",
    "check_structure",
    # Engines
    "PDFEngine",
    "CliEngine",
    "PypdfEngine",
    "EngineState",
    "EngineStatus",
    "discover_engine",
    # Configuration
    "RetryConfig",
    "ServiceConfig",
    # Data types
    "PDFInfo",
    "JobStatus",
    "MergeJob",
    "OutputInfo",
    "DecryptResult",
    "RollbackToken",
    # Errors
    "PdfError",
    "ErrorKind",
    "ErrorCollector",
    "classify_error",
    # Version info
    "__version__",
]
