"""
Tesseract OCR Engine
════════════════════

Image bytes in → recognised text + mean word confidence (0–100) out.

Threading model
───────────────
Extraction runs pages concurrently on a thread pool. Each worker thread owns
one TesseractHandle, created lazily on first use and never shared with
another thread (threading.local). The handle carries the resolved tesseract
configuration for its thread; pytesseract spawns one tesseract process per
call, bounded by the per-page timeout.

Confidence
──────────
image_to_data() reports a confidence per word; -1 marks non-word boxes
(blocks, paragraphs, lines) and is ignored. A page with no words scores 0.
"""

from __future__ import annotations

import io
import logging
import threading
from dataclasses import dataclass

import pytesseract
from PIL import Image, UnidentifiedImageError
from pytesseract import Output

from docpipe.core.exceptions import CorruptContentError, OcrEngineError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OcrOutput:
    """
    text       : recognised text, one line per Tesseract line
    confidence : mean word confidence, 0.0–100.0
    word_count : words that contributed to the confidence
    """
    text:       str
    confidence: float
    word_count: int = 0


def _assemble(data: dict) -> OcrOutput:
    """Rebuild text line by line from image_to_data() output."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []

    for i, word in enumerate(data.get("text", [])):
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            conf = -1.0
        word = (word or "").strip()
        if conf < 0 or not word:
            continue

        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        confidences.append(conf)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    mean = sum(confidences) / len(confidences) if confidences else 0.0
    return OcrOutput(text=text, confidence=round(mean, 2), word_count=len(confidences))


class TesseractHandle:
    """Per-thread engine configuration."""

    def __init__(
        self,
        engine_mode: int = 3,
        page_seg_mode: int = 6,
        tessdata_path: str = "",
        timeout: float = 30.0,
    ) -> None:
        config = f"--oem {engine_mode} --psm {page_seg_mode}"
        if tessdata_path:
            config += f' --tessdata-dir "{tessdata_path}"'
        self.config = config
        self.timeout = timeout

    def recognize(self, image_bytes: bytes, language: str) -> OcrOutput:
        try:
            with Image.open(io.BytesIO(image_bytes)) as image:
                image.load()
                data = pytesseract.image_to_data(
                    image,
                    lang=language,
                    config=self.config,
                    output_type=Output.DICT,
                    timeout=self.timeout,
                )
        except UnidentifiedImageError as exc:
            raise CorruptContentError(f"Not a readable image: {exc}") from exc
        except pytesseract.TesseractError as exc:
            raise OcrEngineError(f"Tesseract failed: {exc}") from exc
        except RuntimeError as exc:
            # pytesseract signals a killed process with RuntimeError
            raise OcrEngineError(f"Tesseract timed out after {self.timeout}s") from exc

        return _assemble(data)


class TesseractOcrEngine:
    """
    Thread-safe facade: each calling thread gets its own TesseractHandle.

    Languages outside the supported list fall back to the default language.
    """

    def __init__(
        self,
        default_language: str = "eng",
        supported_languages: list[str] | None = None,
        engine_mode: int = 3,
        page_seg_mode: int = 6,
        tessdata_path: str = "",
        page_timeout: float = 30.0,
        min_confidence: float = 30.0,
    ) -> None:
        self.default_language = default_language
        self.supported_languages = list(supported_languages or ["eng", "deu", "fra", "spa"])
        self._engine_mode = engine_mode
        self._page_seg_mode = page_seg_mode
        self._tessdata_path = tessdata_path
        self._page_timeout = page_timeout
        self._min_confidence = min_confidence
        self._local = threading.local()

    @classmethod
    def from_settings(cls, settings) -> "TesseractOcrEngine":
        return cls(
            default_language=settings.ocr_default_language,
            supported_languages=settings.ocr_supported_languages,
            engine_mode=settings.ocr_engine_mode,
            page_seg_mode=settings.ocr_page_seg_mode,
            tessdata_path=settings.ocr_tessdata_path,
            page_timeout=settings.ocr_page_timeout_seconds,
            min_confidence=settings.ocr_min_confidence_threshold,
        )

    def resolve_language(self, language: str | None) -> str:
        if language and language in self.supported_languages:
            return language
        if language:
            logger.warning(
                "Unsupported OCR language, using default | requested=%s default=%s",
                language, self.default_language,
            )
        return self.default_language

    def _handle(self) -> TesseractHandle:
        handle = getattr(self._local, "handle", None)
        if handle is None:
            handle = TesseractHandle(
                engine_mode=self._engine_mode,
                page_seg_mode=self._page_seg_mode,
                tessdata_path=self._tessdata_path,
                timeout=self._page_timeout,
            )
            self._local.handle = handle
            logger.debug("Tesseract handle created | thread=%s", threading.current_thread().name)
        return handle

    def recognize(self, image_bytes: bytes, language: str | None = None) -> OcrOutput:
        """Blocking — run in a thread executor."""
        lang = self.resolve_language(language)
        output = self._handle().recognize(image_bytes, lang)

        if output.word_count and output.confidence < self._min_confidence:
            logger.warning(
                "Low OCR confidence | confidence=%.1f threshold=%.0f words=%d",
                output.confidence, self._min_confidence, output.word_count,
            )
        return output
