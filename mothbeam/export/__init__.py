# Export module
from mothbeam.export.darwin import (
    DARWIN_COLUMNS,
    ExportContext,
    build_row,
    build_rows,
    rows_to_csv,
    build_export_file_name,
)

__all__ = [
    "DARWIN_COLUMNS",
    "ExportContext",
    "build_row",
    "build_rows",
    "rows_to_csv",
    "build_export_file_name",
]
