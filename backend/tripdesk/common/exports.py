from __future__ import annotations

from io import StringIO
from typing import Any, Dict, List, Sequence

import pandas as pd
from fastapi.responses import StreamingResponse


def rows_to_csv(rows: List[Dict[str, Any]], columns: Sequence[str]) -> str:
    """Render ``rows`` as CSV with a fixed header even when there are no rows."""
    df = pd.DataFrame(rows, columns=list(columns))
    buf = StringIO()
    df.to_csv(buf, index=False)
    return buf.getvalue()


def csv_response(rows: List[Dict[str, Any]], columns: Sequence[str], filename: str) -> StreamingResponse:
    buf = StringIO(rows_to_csv(rows, columns))
    return StreamingResponse(
        buf,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
