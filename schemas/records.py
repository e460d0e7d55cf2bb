"""
Raw source records handed from the extractors to the normalizer
"""

from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime
from models.base import RecordKind
from schemas.point import from_millis


class HealthRecord(BaseModel):
    """
    One logical event read from a Health Connect table.

    ``start_millis`` and ``end_millis`` are epoch milliseconds as stored in
    the export. ``attributes`` become tags on the emitted points (``unit``,
    ``exercise_type``, ``title``, ...).
    """

    kind: RecordKind
    start_millis: Optional[int] = None
    end_millis: Optional[int] = None
    value: Optional[float] = None
    stage_type: Optional[int] = None
    app_name: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)

    @property
    def timestamp(self) -> Optional[datetime]:
        if self.start_millis is None:
            return None
        return from_millis(self.start_millis)


class CsvRecord(BaseModel):
    """
    One data row of a delimited file together with its header context.

    ``header_values`` is the raw header matrix ``[row][column]``;
    ``column_names`` holds the compound name of every column in order.
    """

    header_values: List[List[str]] = Field(default_factory=list)
    column_names: List[str] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)
    time_column_index: Optional[int] = 0
    line_number: int = 0

    def get_time_value(self) -> Optional[str]:
        if self.time_column_index is None:
            return None
        if self.time_column_index < len(self.values):
            return self.values[self.time_column_index]
        return None

    def header_cell(self, row: int, column: int) -> str:
        """Raw header cell, empty when the header row is shorter than the column index"""
        if row >= len(self.header_values):
            return ""
        cells = self.header_values[row]
        return cells[column] if column < len(cells) else ""
