"""Read-only client for the whiteboard Google Sheet."""
import logging
import time
from typing import Dict, List, Optional, Set

import requests
from bs4 import BeautifulSoup

from config.layout import parse_a1_range, range_shape
from processor.errors import DataSourceError

logger = logging.getLogger(__name__)

Grid = List[List[str]]


class GoogleSheetsClient:
    """
    Fetch display-formatted cell grids from a Google Sheet.

    With an API key the Sheets API v4 is used. Without one the sheet must be
    link-viewable, and the public visualization HTML export is parsed
    instead. Both paths return strings exactly as the sheet displays them.
    """

    API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
    PUBLIC_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/gviz/tq"
    HTMLVIEW_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/htmlview"

    def __init__(
        self,
        spreadsheet_id: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3
    ):
        """
        Initialize the sheets client.

        Args:
            spreadsheet_id: ID from the spreadsheet URL
            api_key: Sheets API key; None selects the public export
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Attempts for transient failures (default: 3)
        """
        self.spreadsheet_id = spreadsheet_id
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self._titles: Optional[Set[str]] = None

    def sheet_exists(self, sheet_name: str) -> bool:
        """
        Check whether a tab with this exact title exists.

        Args:
            sheet_name: Tab title such as "Mon 5 Jan"

        Returns:
            True if the tab exists
        """
        return sheet_name in self.sheet_titles()

    def sheet_titles(self) -> Set[str]:
        """
        List every tab title in the spreadsheet.

        API mode reads the spreadsheet metadata. Public mode reads the tab
        buttons of the HTML view, since the visualization export answers a
        request for a missing tab with the first tab instead of an error.

        Returns:
            Set of tab titles, fetched once per client

        Raises:
            DataSourceError: If the tab list cannot be read
        """
        if self._titles is None:
            if self.api_key:
                self._titles = self._api_titles()
            else:
                self._titles = self._public_titles()
            logger.info(f"Spreadsheet has {len(self._titles)} tabs")
        return self._titles

    def _api_titles(self) -> Set[str]:
        response = self._get(
            f"{self.API_URL}/{self.spreadsheet_id}",
            params={'fields': 'sheets.properties.title', 'key': self.api_key}
        )
        if response.status_code != 200:
            raise DataSourceError(
                f"Cannot list sheets (HTTP {response.status_code}): "
                f"{response.text[:200]}"
            )
        sheets = response.json().get('sheets', [])
        return {s['properties']['title'] for s in sheets}

    def _public_titles(self) -> Set[str]:
        response = self._get(
            self.HTMLVIEW_URL.format(spreadsheet_id=self.spreadsheet_id),
            params={}
        )
        if response.status_code != 200:
            raise DataSourceError(
                f"Cannot list sheets (HTTP {response.status_code}); "
                f"is the spreadsheet link-viewable?"
            )
        soup = BeautifulSoup(response.text, 'html.parser')
        titles = {
            button.get_text(strip=True)
            for button in soup.select('li[id^="sheet-button"]')
        }
        if not titles:
            raise DataSourceError("No tab list found in the spreadsheet HTML view")
        return titles

    def get_ranges(self, sheet_name: str, ranges: List[str]) -> Dict[str, Grid]:
        """
        Fetch several A1 ranges from one tab.

        Every grid is padded to the full rectangle of its range, so cells
        keep their positions even when the source trims trailing blanks.

        Args:
            sheet_name: Tab title
            ranges: A1 ranges such as ["A10:R50", "T3:T50"]

        Returns:
            Mapping of each requested range to its grid

        Raises:
            DataSourceError: If the tab cannot be read
        """
        if not ranges:
            return {}

        if self.api_key:
            raw = self._batch_get(sheet_name, ranges)
        else:
            raw = self._public_ranges(sheet_name, ranges)

        return {r: _pad(raw.get(r, []), *range_shape(r)) for r in ranges}

    def _batch_get(self, sheet_name: str, ranges: List[str]) -> Dict[str, Grid]:
        quoted = sheet_name.replace("'", "''")
        response = self._get(
            f"{self.API_URL}/{self.spreadsheet_id}/values:batchGet",
            params={
                'ranges': [f"'{quoted}'!{r}" for r in ranges],
                'valueRenderOption': 'FORMATTED_VALUE',
                'majorDimension': 'ROWS',
                'key': self.api_key
            }
        )
        if response.status_code != 200:
            raise DataSourceError(
                f"Cannot read '{sheet_name}' (HTTP {response.status_code}): "
                f"{response.text[:200]}"
            )

        value_ranges = response.json().get('valueRanges', [])
        return {
            r: [[str(cell) for cell in row] for row in vr.get('values', [])]
            for r, vr in zip(ranges, value_ranges)
        }

    def _public_ranges(self, sheet_name: str, ranges: List[str]) -> Dict[str, Grid]:
        # One request for the bounding box, then slice locally
        bounds = [parse_a1_range(r) for r in ranges]
        top = min(b[0] for b in bounds)
        left = min(b[1] for b in bounds)
        bottom = max(b[2] for b in bounds)
        right = max(b[3] for b in bounds)
        box = f"{_column_letter(left)}{top + 1}:{_column_letter(right)}{bottom + 1}"

        response = self._get(
            self.PUBLIC_URL.format(spreadsheet_id=self.spreadsheet_id),
            params={'tqx': 'out:html', 'sheet': sheet_name, 'range': box, 'headers': '0'}
        )
        if response.status_code != 200:
            raise DataSourceError(
                f"Cannot read '{sheet_name}' (HTTP {response.status_code})"
            )

        table = self._parse_table(response.text)
        if table is None:
            raise DataSourceError(f"No table in export for '{sheet_name}'")

        grids = {}
        for r, (start_row, start_col, end_row, end_col) in zip(ranges, bounds):
            grids[r] = [
                row[start_col - left:end_col - left + 1]
                for row in table[start_row - top:end_row - top + 1]
            ]
        return grids

    def _parse_table(self, html_content: str) -> Optional[Grid]:
        """
        Parse the first HTML table into rows of data cell text.

        Args:
            html_content: Export page HTML

        Returns:
            Grid of stripped cell text, or None if the page has no table
        """
        soup = BeautifulSoup(html_content, 'html.parser')
        table = soup.find('table')
        if table is None:
            return None

        rows = []
        for tr in table.find_all('tr'):
            # Column label rows are rendered as <th>
            cells = tr.find_all('td')
            if not cells:
                continue
            rows.append([
                cell.get_text(strip=True) for cell in cells
            ])
        return rows

    def _get(self, url: str, params: dict) -> requests.Response:
        """
        GET with retry on connection errors and 5xx responses.

        4xx responses are returned to the caller without retrying.

        Raises:
            DataSourceError: If all retry attempts fail
        """
        base_delay = 1  # seconds

        for attempt in range(self.max_retries):
            try:
                response = requests.get(url, params=params, timeout=self.timeout)
                if response.status_code < 500:
                    return response
                response.raise_for_status()

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"Sheets request failed (attempt {attempt + 1}/"
                        f"{self.max_retries}): {e}. Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} attempts failed. Last error: {e}"
                    )
                    raise DataSourceError(f"Spreadsheet unreachable: {e}") from e


def _column_letter(index: int) -> str:
    """Zero-based column index to letters (0 -> A, 26 -> AA)."""
    letters = ''
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord('A') + remainder) + letters
    return letters


def _pad(grid: Grid, rows: int, cols: int) -> Grid:
    padded = []
    for i in range(rows):
        row = list(grid[i]) if i < len(grid) else []
        row = row[:cols] + [''] * (cols - len(row))
        padded.append(row)
    return padded
