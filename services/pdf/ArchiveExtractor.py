"""Extraction of PDFs from zip archives sent for import."""

import io
import zipfile

from shared.helper.HelperConfig import HelperConfig
from shared.models.pdf import ExtractedPdf, ExtractionResult, ExtractionStats

MAX_PDF_SIZE_BYTES = 30 * 1024 * 1024
MAX_TOTAL_SIZE_BYTES = 50 * 1024 * 1024
MAX_PDF_COUNT = 10
MAX_DEPTH = 5

# OS metadata, skipped without being counted
SYSTEM_PATTERNS = (
    "__MACOSX",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    ".Spotlight-",
    ".Trashes",
    ".fseventsd",
)


def _is_system_entry(full_path: str, filename: str) -> bool:
    return filename.startswith(".") or any(pattern in full_path for pattern in SYSTEM_PATTERNS)


def _path_depth(full_path: str) -> int:
    return len([segment for segment in full_path.split("/") if segment])


class ArchiveExtractor:
    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()

    @staticmethod
    def is_zip_file(content: bytes) -> bool:
        """True if the bytes start with the zip local header magic (``PK``)."""
        return len(content) >= 4 and content[:2] == b"PK"

    @staticmethod
    def is_zip_filename(filename: str | None) -> bool:
        return bool(filename) and filename.lower().endswith(".zip")

    def extract(self, zip_bytes: bytes, archive_name: str = "") -> ExtractionResult:
        """Pull every acceptable PDF out of an archive.

        Entries are taken in archive order. The first occurrence of a file name
        (case-insensitive) wins. Size and count limits reject individual entries
        without failing the whole archive.

        Args:
            zip_bytes (bytes): Raw archive bytes.
            archive_name (str): Attachment name, carried into the stats.

        Returns:
            ExtractionResult: The PDFs with their folder inside the archive, plus counters.

        Raises:
            zipfile.BadZipFile: If the archive itself cannot be opened.
        """
        stats = ExtractionStats(archive_name=archive_name)
        pdfs: list[ExtractedPdf] = []
        seen_names: set[str] = set()
        total_size = 0

        with zipfile.ZipFile(io.BytesIO(zip_bytes)) as archive:
            entries = archive.infolist()
            self.logging.info("[ZIP] Opening archive with %d entries", len(entries))

            for entry in entries:
                if entry.is_dir():
                    continue

                full_path = entry.filename
                folder, _, filename = full_path.rpartition("/")
                source_path = f"{folder}/" if folder else ""

                if _is_system_entry(full_path, filename):
                    continue

                stats.total_files += 1

                if _path_depth(full_path) > MAX_DEPTH:
                    self.logging.warning("[ZIP] Skipping %s: exceeds max depth of %d", full_path, MAX_DEPTH)
                    stats.ignored_count += 1
                    continue

                if not filename.lower().endswith(".pdf"):
                    stats.ignored_count += 1
                    continue

                if filename.lower() in seen_names:
                    self.logging.warning("[ZIP] Duplicate filename: %s (keeping first occurrence)", filename)
                    stats.duplicate_count += 1
                    continue

                if len(pdfs) >= MAX_PDF_COUNT:
                    self.logging.warning("[ZIP] Maximum PDF count (%d) reached, skipping %s", MAX_PDF_COUNT, filename)
                    stats.error_count += 1
                    stats.errors.append(f"{filename}: more than {MAX_PDF_COUNT} PDFs in archive")
                    continue

                if entry.file_size > MAX_PDF_SIZE_BYTES:
                    self.logging.warning(
                        "[ZIP] PDF too large: %s (%.2f MB > %d MB)",
                        filename, entry.file_size / 1024 / 1024, MAX_PDF_SIZE_BYTES // (1024 * 1024),
                    )
                    stats.error_count += 1
                    stats.errors.append(f"{filename}: file too large")
                    continue

                if total_size + entry.file_size > MAX_TOTAL_SIZE_BYTES:
                    self.logging.warning("[ZIP] Total size limit exceeded, skipping: %s", filename)
                    stats.error_count += 1
                    stats.errors.append(f"{filename}: archive size limit exceeded")
                    continue

                try:
                    content = archive.read(entry)
                except (zipfile.BadZipFile, OSError, RuntimeError, NotImplementedError) as e:
                    self.logging.error("[ZIP] Failed to extract %s: %s", full_path, e)
                    stats.error_count += 1
                    stats.errors.append(f"{filename}: {e}")
                    continue

                pdfs.append(ExtractedPdf(filename=filename, source_path=source_path, content=content))
                seen_names.add(filename.lower())
                total_size += len(content)
                stats.pdf_count += 1
                self.logging.debug("[ZIP] Extracted: %s%s (%.1f KB)", source_path, filename, len(content) / 1024)

        self.logging.info(
            "[ZIP] Extraction complete: %d PDFs, %d ignored, %d errors",
            stats.pdf_count, stats.ignored_count, stats.error_count,
        )
        return ExtractionResult(pdfs=pdfs, stats=stats)

    @staticmethod
    def format_stats(stats: ExtractionStats, archive_name: str | None = None) -> str:
        """Human readable extraction summary for the confirmation mail."""
        lines = [
            f"Archive: {archive_name or stats.archive_name or 'archive'}",
            f"PDF files found: {stats.pdf_count}",
        ]
        if stats.ignored_count:
            lines.append(f"Files ignored: {stats.ignored_count} (unsupported formats)")
        if stats.error_count:
            lines.append(f"Errors: {stats.error_count} (PDF too large or unreadable)")
            lines.extend(f"- {message}" for message in stats.errors)
        if stats.duplicate_count:
            lines.append(f"Duplicates skipped: {stats.duplicate_count}")
        return "\n".join(lines)
