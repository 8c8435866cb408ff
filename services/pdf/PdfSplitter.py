"""Splits long PDFs into page-range parts the inference provider can digest."""

import io
import math

from pypdf import PdfReader, PdfWriter

from shared.helper.HelperConfig import HelperConfig
from shared.models.pdf import SplitPart, SplitResult

SPLIT_CHECK_THRESHOLD_BYTES = 1 * 1024 * 1024
MAX_PAGES_PER_PART = 100


def _strip_pdf_extension(filename: str) -> str:
    if filename.lower().endswith(".pdf"):
        return filename[:-4]
    return filename


class PdfSplitter:
    def __init__(self, helper_config: HelperConfig, max_pages_per_part: int = MAX_PAGES_PER_PART):
        self.logging = helper_config.get_logger()
        self.max_pages_per_part = max_pages_per_part

    @staticmethod
    def needs_split(size_bytes: int, page_count: int | None = None) -> bool:
        """Whether a PDF must go through split().

        Size is the cheap pre-check; the page count, when already known, is decisive
        on its own.
        """
        if page_count is not None and page_count > MAX_PAGES_PER_PART:
            return True
        return size_bytes > SPLIT_CHECK_THRESHOLD_BYTES

    @staticmethod
    def count_pages(content: bytes) -> int:
        """Number of pages of a PDF.

        Raises:
            pypdf.errors.PdfReadError: If the bytes are not a readable PDF.
        """
        return len(PdfReader(io.BytesIO(content)).pages)

    def split(self, content: bytes, filename: str) -> SplitResult:
        """Split a PDF into parts of at most max_pages_per_part pages.

        Pages are distributed evenly: ceil(P / max) parts of ceil(P / parts) pages.
        A PDF within the page limit is returned unchanged as a single part.

        Args:
            content (bytes): Raw PDF bytes.
            filename (str): Original file name; parts are named ``<base>-Part-<i>.pdf``.

        Returns:
            SplitResult: The parts with their 1-indexed inclusive page ranges.

        Raises:
            pypdf.errors.PdfReadError: If the PDF cannot be parsed.
        """
        reader = PdfReader(io.BytesIO(content))
        total_pages = len(reader.pages)
        part_count = max(1, math.ceil(total_pages / self.max_pages_per_part))

        if part_count == 1:
            return SplitResult(
                parts=[SplitPart(
                    content=content,
                    filename=filename,
                    part_index=0,
                    total_parts=1,
                    page_start=1,
                    page_end=total_pages,
                )],
                original_filename=filename,
                original_size=len(content),
                total_pages=total_pages,
                was_split=False,
            )

        self.logging.info(
            "[PDF-SPLIT] Splitting %s (%d pages) into %d parts (max %d pages/part)",
            filename, total_pages, part_count, self.max_pages_per_part,
        )
        pages_per_part = math.ceil(total_pages / part_count)
        base_name = _strip_pdf_extension(filename)

        parts: list[SplitPart] = []
        for i in range(part_count):
            start = i * pages_per_part
            end = min((i + 1) * pages_per_part, total_pages)
            if start >= total_pages:
                break

            writer = PdfWriter()
            for page_number in range(start, end):
                writer.add_page(reader.pages[page_number])
            buffer = io.BytesIO()
            writer.write(buffer)
            part_bytes = buffer.getvalue()

            part = SplitPart(
                content=part_bytes,
                filename=f"{base_name}-Part-{i}.pdf",
                part_index=i,
                total_parts=part_count,
                page_start=start + 1,
                page_end=end,
            )
            parts.append(part)
            self.logging.debug(
                "[PDF-SPLIT] Created %s: pages %d-%d (%.1f MB)",
                part.filename, part.page_start, part.page_end, len(part_bytes) / 1024 / 1024,
            )

        # every emitted part knows the real number of parts
        if len(parts) != part_count:
            parts = [p.model_copy(update={"total_parts": len(parts)}) for p in parts]

        self.logging.info("[PDF-SPLIT] Split complete: %d parts created from %d pages", len(parts), total_pages)
        return SplitResult(
            parts=parts,
            original_filename=filename,
            original_size=len(content),
            total_pages=total_pages,
            was_split=True,
        )
