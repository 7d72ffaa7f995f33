"""
docpipe — asynchronous OCR + summarization pipeline for uploaded documents.

Chain:  IngestionCoordinator → ExtractionStage → SummarizationStage → ResultSink
Each hop crosses a durable RabbitMQ queue (Celery tasks, see docpipe.workers).
"""

__version__ = "0.1.0"
