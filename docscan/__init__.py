"""Document OCR processing service with a bounded asynchronous job scheduler."""

__version__ = "1.0.0"
