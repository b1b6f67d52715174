import json
import logging

from aquaflow.services.sheet_schema import SETTINGS, sheet_headers

logger = logging.getLogger(__name__)


def encode_setting_value(value):
    # Lists and records do not fit in one cell.
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    if value is None:
        return ""
    return value


def decode_setting_value(value):
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value
    return value


def read_settings(workbook) -> dict:
    sheet = workbook.sheet(SETTINGS.sheet)
    rows = sheet.get_rows()
    out = {}
    for row in rows[1:]:
        if not row:
            continue
        key = row[0]
        if key:
            out[str(key)] = decode_setting_value(row[1] if len(row) > 1 else "")
    return out


def merge_settings(workbook, payload: dict) -> list[str]:
    """Write each key of ``payload`` into its own row; other keys stay as they are.

    Returns the keys that were appended as new rows. The caller holds the
    store write lock.
    """
    sheet = workbook.sheet(SETTINGS.sheet)
    sheet_headers(sheet, SETTINGS)
    rows = sheet.get_rows()
    index_by_key = {str(r[0]): i for i, r in enumerate(rows, start=1) if i > 1 and r and r[0] != ""}

    appended = []
    for key, value in payload.items():
        cell = encode_setting_value(value)
        if key in index_by_key:
            sheet.set_row(index_by_key[key], [key, cell])
        else:
            index_by_key[key] = sheet.append_row([key, cell])
            appended.append(key)
    logger.info("settings merged keys=%s appended=%s", sorted(payload), appended)
    return appended
