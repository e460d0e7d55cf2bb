"""
Delimited file extractor with multi-row header support
"""

import csv
import pandas as pd
from typing import List, Optional
from pathlib import Path
from schemas.records import CsvRecord
from core.exceptions import CSVExtractionError, SourceUnavailableError
import logging

logger = logging.getLogger(__name__)

SAMPLE_RECORDS = 5


class CsvExtractor:
    """
    Extract rows from a delimited file.

    Supports:
    - One or more leading header rows combined into compound column names
    - Ragged rows (short rows are padded, long rows widen the frame)
    - Timestamp column chosen by index or by header name
    """

    def __init__(
        self,
        file_path: str,
        header_rows: int = 1,
        time_column_index: Optional[int] = 0,
        time_column: Optional[str] = None
    ):
        if header_rows < 0:
            raise ValueError("header_rows cannot be negative")
        self.file_path = Path(file_path)
        self.header_rows = header_rows
        self.time_column_index = time_column_index
        self.time_column = time_column

    def file_exists(self) -> bool:
        return self.file_path.is_file()

    def _ensure_exists(self) -> None:
        if not self.file_exists():
            raise SourceUnavailableError(
                f"File does not exist: {self.file_path}",
                context={"source": str(self.file_path)}
            )

    def _column_count(self) -> int:
        with self.file_path.open(newline="", encoding="utf-8-sig") as handle:
            return max((len(row) for row in csv.reader(handle)), default=0)

    def read_frame(self) -> pd.DataFrame:
        """
        Read the whole file as strings, headers included.

        Returns:
            DataFrame with positional columns; empty cells are "". Blank lines
            are dropped and the index keeps each row's 0-based line position
        """
        self._ensure_exists()

        try:
            width = self._column_count()
            if width == 0:
                return pd.DataFrame()
            df = pd.read_csv(
                self.file_path,
                header=None,
                names=list(range(width)),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8-sig"
            )
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except (pd.errors.ParserError, csv.Error, UnicodeDecodeError) as e:
            raise CSVExtractionError(
                "Failed to read delimited file",
                context={"file_path": str(self.file_path)},
                original_exception=e
            )

        # Blank lines come back as all-NaN rows; empty cells are already ""
        return df[~df.isna().all(axis=1)].fillna("")

    @staticmethod
    def process_headers(header_matrix: List[List[str]]) -> List[str]:
        """
        Compound column names from the header rows.

        A single row is used as is (spaces become underscores, newlines are
        dropped). Several rows are joined top-to-bottom with ``.``, skipping
        blank parts; an all-blank column becomes ``column_<n>``.
        """
        if not header_matrix:
            return []

        if len(header_matrix) == 1:
            return [
                cell.replace(" ", "_").replace("\n", "").replace("\r", "")
                for cell in header_matrix[0]
            ]

        names = []
        for col in range(len(header_matrix[0])):
            parts = []
            for row in header_matrix:
                if col < len(row):
                    part = row[col].replace("\n", "").replace("\r", "").strip()
                    if part:
                        parts.append(part)
            header = ".".join(parts) if parts else f"column_{col + 1}"
            names.append(header.replace(" ", "_"))
        return names

    def _resolve_time_index(self, column_names: List[str]) -> Optional[int]:
        if self.time_column is None:
            return self.time_column_index

        if self.time_column in column_names:
            return column_names.index(self.time_column)

        raise CSVExtractionError(
            f"Time column '{self.time_column}' not found",
            context={
                "file_path": str(self.file_path),
                "column_name": self.time_column,
                "available_columns": ", ".join(column_names)
            }
        )

    def parse(self) -> List[CsvRecord]:
        """
        Parse the file into records.

        Raises:
            SourceUnavailableError: The file does not exist
            CSVExtractionError: The file cannot be tokenized or the time column is unknown
        """
        logger.info(f"Reading delimited file {self.file_path}")
        df = self.read_frame()

        header_matrix = [list(row) for row in df.iloc[:self.header_rows].itertuples(index=False)]
        column_names = self.process_headers(header_matrix)
        if self.header_rows and not column_names:
            return []

        time_index = self._resolve_time_index(column_names)

        records = []
        data = df.iloc[self.header_rows:]
        for position, row in zip(data.index, data.itertuples(index=False)):
            records.append(
                CsvRecord(
                    header_values=header_matrix,
                    column_names=column_names,
                    values=list(row),
                    time_column_index=time_index,
                    line_number=int(position) + 1,
                )
            )

        logger.info(f"Read {len(records)} records from {self.file_path.name}")
        return records

    def validate(self, show_details: bool = False) -> str:
        """
        Build a human-readable structure report of the file.

        Args:
            show_details: Include every record instead of a sample
        """
        self._ensure_exists()

        df = self.read_frame()
        total_rows = len(df)
        data_rows = max(total_rows - self.header_rows, 0)

        lines = [
            f"Validating CSV file: {self.file_path}",
            f"Total rows: {total_rows}",
            f"Header rows: {self.header_rows}",
            f"Data rows: {data_rows}",
        ]

        records = self.parse()
        if not records:
            lines.append("No data found in CSV file.")
            return "\n".join(lines) + "\n"

        first = records[0]
        lines.append(f"Columns: {len(first.column_names)}")

        time_index = first.time_column_index
        if time_index is not None:
            time_name = first.column_names[time_index] if time_index < len(first.column_names) else "unknown"
            lines.append(f"Timestamp column: {time_name} (index {time_index})")

        lines.append(f"Headers: {', '.join(first.column_names)}")

        shown = records if show_details else records[:SAMPLE_RECORDS]
        lines.append("")
        lines.append("Parsed data:" if show_details else "Sample data:")
        for i, record in enumerate(shown, start=1):
            lines.append(f"Record {i} (line {record.line_number}):")
            if time_index is not None:
                lines.append(f"  Timestamp: {record.get_time_value()}")
            for index, value in enumerate(record.values):
                if index == time_index:
                    continue
                name = first.column_names[index] if index < len(first.column_names) else f"column_{index + 1}"
                lines.append(f"  {name}: {value}")

        if len(records) > len(shown):
            lines.append(f"... and {len(records) - len(shown)} more records")

        return "\n".join(lines) + "\n"
