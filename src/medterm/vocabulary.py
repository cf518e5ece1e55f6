import glob
import hashlib
import io
import logging
import os
import uuid
from collections import OrderedDict
from typing import Dict, List, Optional

import pandas as pd

from .models import SourceFile, SourceStatus, Term

logger = logging.getLogger(__name__)

EN_COLUMNS = ("en", "term_en", "english")
KO_COLUMNS = ("ko", "meaning_ko", "korean")
DESC_COLUMNS = ("desc", "explain", "description")


class IngestionError(Exception):
    """Base class for upload failures that reject a file outright."""


class DuplicateUploadError(IngestionError):
    pass


class UnsupportedFileError(IngestionError):
    pass


class UnknownSourceError(IngestionError):
    pass


# --- CSV parsing ---
def _normalize_text(raw: str) -> str:
    text = raw or ""
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


def detect_delimiter(header_line: str) -> str:
    """Picks tab, semicolon or comma by frequency in the first line."""
    comma = header_line.count(",")
    semi = header_line.count(";")
    tab = header_line.count("\t")
    if tab > 0 and tab >= comma and tab >= semi:
        return "\t"
    if semi > 0 and semi >= comma:
        return ";"
    return ","


def _normalize_header(cell: str) -> str:
    return (cell or "").strip().lstrip("\ufeff").lower()


def _find_column(headers: List[str], names) -> int:
    for name in names:
        if name in headers:
            return headers.index(name)
    return -1


def parse_terms_csv(raw: str) -> List[Term]:
    """
    Parses a comma, semicolon or tab separated term list.

    A first row naming any known column (``en``, ``ko``, ``desc`` and their
    aliases) is treated as a header; otherwise columns 1-3 are read as
    en, ko, desc. Rows without an English term are skipped. Returned terms
    carry no id or source; ``TermLibrary`` attaches those.
    """
    lines = [line.rstrip() for line in _normalize_text(raw).split("\n")]
    lines = [line for line in lines if line.strip()]
    if not lines:
        return []

    delimiter = detect_delimiter(lines[0])
    width = max(line.count(delimiter) for line in lines) + 1
    df = pd.read_csv(
        io.StringIO("\n".join(lines)),
        sep=delimiter,
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        quotechar='"',
        doublequote=True,
    )
    df = df.fillna("").apply(lambda col: col.str.strip())
    rows = df.values.tolist()

    headers = [_normalize_header(cell) for cell in rows[0]]
    idx_en, idx_ko, idx_desc = 0, 1, 2
    known = set(EN_COLUMNS + KO_COLUMNS + DESC_COLUMNS)
    if any(h in known for h in headers):
        idx_en = _find_column(headers, EN_COLUMNS)
        idx_ko = _find_column(headers, KO_COLUMNS)
        idx_desc = _find_column(headers, DESC_COLUMNS)
        if idx_en < 0:
            idx_en = 0
        rows = rows[1:]

    def cell(row, idx):
        return row[idx] if 0 <= idx < len(row) else ""

    terms = []
    for row in rows:
        en = cell(row, idx_en)
        if not en:
            continue
        terms.append(Term(en=en, ko=cell(row, idx_ko), desc=cell(row, idx_desc)))
    return terms


def question_count_warning(question_count: int, term_count: int) -> str:
    if term_count <= 0:
        return ""
    if question_count > term_count * 2:
        return "문제 수가 (뜻/설명 조합)보다 많아서 중복 출제가 꽤 생길 수 있어요."
    if question_count > term_count:
        return "문제 수가 용어 수보다 많으면 일부는 중복 출제됩니다."
    return ""


# --- Service Layer: Term Library ---
class TermLibrary:
    """Holds uploaded CSV files and the terms parsed from each."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory
        self.sources: "OrderedDict[str, SourceFile]" = OrderedDict()
        self._raw: Dict[str, bytes] = {}

    def load_directory(self) -> None:
        """Preloads every CSV in the configured vocabulary directory."""
        if not self.directory:
            return
        if not os.path.exists(self.directory):
            os.makedirs(self.directory, exist_ok=True)
            logger.warning(
                f"Created directory {self.directory}. Add CSV files to preload."
            )
            return

        for file_path in sorted(glob.glob(os.path.join(self.directory, "*.csv"))):
            try:
                with open(file_path, "rb") as fh:
                    self.add_file(os.path.basename(file_path), fh.read())
            except DuplicateUploadError:
                logger.info(f"Skipping {file_path}: already loaded")
            except OSError as e:
                logger.error(f"Failed to read {file_path}: {e}")

    def add_file(self, name: str, content: bytes) -> SourceFile:
        if not name.lower().endswith(".csv"):
            raise UnsupportedFileError(f"{name}: only CSV files can be uploaded")

        key = (name, len(content), hashlib.sha1(content).hexdigest())
        for source in self.sources.values():
            if (source.name, source.size, source.digest) == key:
                raise DuplicateUploadError(f"{name}: file already uploaded")

        source_id = uuid.uuid4().hex[:12]
        self._raw[source_id] = content
        source = self._parse(source_id, name, content)
        self.sources[source_id] = source
        return source

    def retry(self, source_id: str) -> SourceFile:
        if source_id not in self.sources:
            raise UnknownSourceError(f"Unknown source: {source_id}")
        old = self.sources[source_id]
        source = self._parse(source_id, old.name, self._raw[source_id])
        self.sources[source_id] = source
        return source

    def remove(self, source_id: str) -> None:
        if source_id not in self.sources:
            raise UnknownSourceError(f"Unknown source: {source_id}")
        del self.sources[source_id]
        self._raw.pop(source_id, None)

    def clear(self) -> None:
        self.sources.clear()
        self._raw.clear()

    def get_sources(self) -> List[SourceFile]:
        return list(self.sources.values())

    def all_terms(self) -> List[Term]:
        terms: List[Term] = []
        for source in self.sources.values():
            if source.status is SourceStatus.OK:
                terms.extend(source.terms)
        return terms

    def _parse(self, source_id: str, name: str, content: bytes) -> SourceFile:
        base = dict(id=source_id, name=name, size=len(content))
        base["digest"] = hashlib.sha1(content).hexdigest()
        try:
            parsed = parse_terms_csv(content.decode("utf-8-sig"))
        except (UnicodeDecodeError, pd.errors.ParserError) as e:
            logger.error(f"Failed to parse {name}: {e}")
            return SourceFile(
                status=SourceStatus.ERROR, error=f"파일 읽기 실패: {e}", **base
            )

        if not parsed:
            logger.error(f"Skipping {name}: no valid rows")
            return SourceFile(
                status=SourceStatus.ERROR,
                error="CSV에서 용어를 읽지 못했어요. (헤더 en,ko,desc 또는 1~3열 확인)",
                **base,
            )

        terms = [
            term.model_copy(
                update={
                    "id": f"{source_id}_{i}",
                    "source_id": source_id,
                    "source_name": name,
                }
            )
            for i, term in enumerate(parsed)
        ]
        logger.info(f"Loaded {len(terms)} terms from {name}")
        return SourceFile(status=SourceStatus.OK, terms=terms, **base)
