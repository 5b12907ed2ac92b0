# pdf_processor.py
import re
import shutil
import uuid
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pdf2image import convert_from_path, pdfinfo_from_path
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)

import logging
from .errors import ToolError
from .logging_utils import log_event
from .models import ImageFormat, SplitConfig, SplitResult

logger = logging.getLogger("flightlog.pdf_processor")

_POPPLER_ERRORS = (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
    OSError,
)

_PAGE_FILE_RE = re.compile(r"^page_(\d+)\.(png|jpg|jpeg|tiff|tif)$", re.IGNORECASE)

PathLike = Union[str, Path]


class PDFProcessor:
    """Render PDF pages to one image file each via poppler (pdfinfo / pdftoppm)."""

    @staticmethod
    def page_count(pdf_path: PathLike) -> int:
        try:
            info = pdfinfo_from_path(str(pdf_path))
        except _POPPLER_ERRORS as e:
            raise ToolError(f"pdfinfo failed - is poppler-utils installed? {e}") from e

        try:
            return int(info["Pages"])
        except (KeyError, TypeError, ValueError) as e:
            raise ToolError(f"Could not find page count in pdfinfo output: {info!r}") from e

    @staticmethod
    def split(
        pdf_path: PathLike,
        output_dir: PathLike,
        config: Optional[SplitConfig] = None,
    ) -> SplitResult:
        """
        Write ``page_NNN.<ext>`` for every page in the requested range.

        There is no partial success: if pdftoppm fails or renders a different
        number of pages than requested, the whole call raises ToolError.
        """
        config = config or SplitConfig()
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

        total = PDFProcessor.page_count(pdf_path)
        first, last = config.page_range or (1, total)
        if last > total:
            raise ToolError(f"Page range {first}-{last} exceeds document length ({total} pages)")

        log_event(
            logger,
            "pdf_split_started",
            pdf=str(pdf_path),
            first_page=first,
            last_page=last,
            dpi=config.dpi,
            image_format=config.format.value,
        )

        try:
            rendered = convert_from_path(
                str(pdf_path),
                dpi=config.dpi,
                fmt=config.format.value,
                first_page=first,
                last_page=last,
                output_folder=str(out),
                # pdf2image returns every file in the folder sharing this prefix
                output_file=f"render-{uuid.uuid4().hex}",
                paths_only=True,
                thread_count=1,
            )
        except _POPPLER_ERRORS as e:
            raise ToolError(f"pdftoppm failed - is poppler-utils installed? {e}") from e

        expected = last - first + 1
        if len(rendered) != expected:
            raise ToolError(f"pdftoppm rendered {len(rendered)} pages, expected {expected}")

        # pdftoppm pads numbers by document length; rename to a stable scheme
        page_paths: List[Path] = []
        for page_num, src in zip(range(first, last + 1), sorted(rendered)):
            dest = out / f"page_{page_num:03d}.{config.format.extension}"
            shutil.move(str(src), dest)
            page_paths.append(dest)

        log_event(logger, "pdf_split_completed", pages=len(page_paths), output_dir=str(out))
        return SplitResult(page_count=len(page_paths), output_dir=out, page_paths=page_paths)


def page_count(pdf_path: PathLike) -> int:
    return PDFProcessor.page_count(pdf_path)


def split_pdf(
    pdf_path: PathLike,
    output_dir: PathLike,
    config: Optional[SplitConfig] = None,
) -> List[Path]:
    return PDFProcessor.split(pdf_path, output_dir, config).page_paths


def collect_existing_images(directory: PathLike) -> List[Tuple[Path, int]]:
    """Previously rendered pages with their page numbers, for --skip-split."""
    d = Path(directory)
    if not d.is_dir():
        return []

    found: List[Tuple[Path, int]] = []
    for path in d.iterdir():
        m = _PAGE_FILE_RE.match(path.name)
        if m:
            found.append((path, int(m.group(1))))

    found.sort(key=lambda item: item[1])
    return found


def cleanup_pages(directory: PathLike) -> None:
    d = Path(directory)
    if d.exists():
        shutil.rmtree(d)
