"""I/O manager with pluggable device drivers and an HDLoader game filesystem driver."""

__version__ = "0.1.0"
__all__ = ["atad", "constants", "errors", "hdlfs", "hdlinfo", "iomanx", "semaphores", "structs"]