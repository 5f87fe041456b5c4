"""
Helper Functions and Utilities

This module provides common utility functions used throughout the geneclust
package: logging configuration, output path handling, label-safe string
cleaning, and progress tracking for the quadratic distance computation.

Key Utilities:
1. Logging Configuration
   - Centralized logging setup for the ``geneclust`` package logger
   - Console output plus optional log file

2. File and Path Handling
   - Automatic directory creation
   - Filename/identifier sanitization for gene names and sequence labels
   - Gene name extraction from alignment filenames

3. Progress and Formatting
   - Progress tracking for long-running pairwise loops
   - Human-readable elapsed time

Example Usage:
    >>> from geneclust.utils import setup_logging, extract_gene_name
    >>> logger = setup_logging(log_level="DEBUG")
    >>> extract_gene_name("NOTCH3_aligned.fasta")
    'NOTCH3'
"""

from typing import Optional, Union
from pathlib import Path
import logging
import re
import sys
from datetime import datetime

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for geneclust.

    Sets up the package logger with console and optional file output.

    Parameters
    ----------
    log_level : str, optional
        Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
    log_file : str, optional
        Path to log file. If None, logs only to console (default: None)
    format_string : str, optional
        Custom format string for log messages. If None, uses default format

    Returns
    -------
    logging.Logger
        Configured logger instance

    Examples
    --------
    >>> logger = setup_logging(log_level="DEBUG", log_file="analysis.log")
    >>> logger.info("Starting analysis")

    Notes
    -----
    The default format includes timestamp, level, and message:
    [2025-11-03 10:30:45] INFO: Starting analysis
    """
    package_logger = logging.getLogger("geneclust")
    package_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers to avoid duplicates
    package_logger.handlers.clear()

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s: %(message)s"

    formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

        package_logger.info(f"Logging to file: {log_file}")

    return package_logger


# ============================================================================
# File I/O and Path Handling
# ============================================================================

def create_output_directory(output_dir: Union[str, Path]) -> Path:
    """
    Create output directory if it doesn't exist.

    Parameters
    ----------
    output_dir : Union[str, Path]
        Path to output directory

    Returns
    -------
    Path
        Path object for output directory

    Raises
    ------
    OSError
        If directory cannot be created due to permissions or other issues
    """
    path = Path(output_dir)

    try:
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Created/verified output directory: {path}")
        return path
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        raise


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a string for use as a filename or sequence label.

    Replaces spaces with underscores and removes problematic characters.

    Parameters
    ----------
    filename : str
        Original string

    Returns
    -------
    str
        Sanitized string

    Examples
    --------
    >>> sanitize_filename("Orcinus orca (NOTCH3)")
    'Orcinus_orca_NOTCH3'
    """
    safe = filename.replace(' ', '_')
    safe = re.sub(r'[^\w\-.]', '_', safe)
    safe = re.sub(r'_+', '_', safe)
    safe = safe.strip('_')

    return safe


def extract_gene_name(file_path: Union[str, Path]) -> str:
    """
    Extract a gene name from an alignment filename.

    Removes common suffixes such as ``_aligned`` or ``_fetch`` and sanitizes
    the remainder.

    Examples
    --------
    >>> extract_gene_name("/data/BRCA1_fetch.fasta")
    'BRCA1'
    >>> extract_gene_name("NOTCH3.aln.fasta")
    'NOTCH3'
    """
    path = Path(file_path)
    basename = path.name.split('.')[0]

    suffixes_to_remove = [
        '_aligned', '_alignment',
        '_fetch', '_sequences',
        '_trimmed', '_raw',
    ]

    cleaned = basename
    for suffix in suffixes_to_remove:
        if cleaned.lower().endswith(suffix):
            cleaned = cleaned[:-len(suffix)]

    cleaned = sanitize_filename(cleaned)

    if not cleaned:
        cleaned = sanitize_filename(path.stem) or "gene"

    return cleaned


# ============================================================================
# Time and Formatting Utilities
# ============================================================================

def format_elapsed_time(seconds: float) -> str:
    """
    Format elapsed time in human-readable format.

    Examples
    --------
    >>> format_elapsed_time(45)
    '45s'
    >>> format_elapsed_time(90)
    '1.5m'
    """
    if seconds < 60:
        return f"{seconds:.0f}s"

    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.1f}m"

    hours = minutes / 60
    minutes_remainder = minutes % 60
    return f"{int(hours)}h {int(minutes_remainder)}m"


# ============================================================================
# Progress Tracking
# ============================================================================

class ProgressTracker:
    """
    Simple progress tracker for long-running operations.

    Examples
    --------
    >>> tracker = ProgressTracker(total=100, description="Pairwise distances")
    >>> for i in range(100):
    ...     tracker.update()
    >>> tracker.finish()
    """

    def __init__(self, total: int, description: str = "Progress"):
        self.total = total
        self.description = description
        self.current = 0
        self.start_time = datetime.now()
        self.last_log_percent = 0

    def update(self, n: int = 1) -> None:
        """Advance by ``n`` items, logging at 10% intervals."""
        self.current += n
        if self.total <= 0:
            return
        percent = (self.current / self.total) * 100

        if percent - self.last_log_percent >= 10:
            elapsed = (datetime.now() - self.start_time).total_seconds()
            rate = self.current / elapsed if elapsed > 0 else 0
            eta = (self.total - self.current) / rate if rate > 0 else 0

            logger.debug(
                f"{self.description}: {self.current}/{self.total} "
                f"({percent:.1f}%) - ETA: {format_elapsed_time(eta)}"
            )
            self.last_log_percent = int(percent / 10) * 10

    def finish(self) -> None:
        """Log completion."""
        elapsed = (datetime.now() - self.start_time).total_seconds()
        logger.debug(
            f"{self.description} complete: {self.total} items "
            f"in {format_elapsed_time(elapsed)}"
        )
