"""
dataframe_schema.py

Defines the schema (column format) of the documents dataframe that flows
through the pipeline. Columns not named in the schema are carried along
untouched as opaque metadata.
"""

from enum import Enum
from collections import namedtuple
from collections.abc import Mapping
import datetime as dt

import pandas as pd

# Each schema column/field needs to defined in this format, with an extractor method
# The extractor method should perform basic minimal processing of the field
FieldDef = namedtuple("FieldDef", ["column_name", "extractor", "type"])


def parse_document_date(value):
    """Convert a date-like value into a datetime.date.

    Accepts ISO strings ("YYYY-MM-DD", optionally followed by a time part),
    datetime.date, datetime.datetime and pandas.Timestamp.
    """
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.date()
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return dt.date.fromisoformat(text[:10])


class DocumentSchema(Enum):
    """
    Defines the columns of the documents dataframe after ingestion
    """
    DOC_ID = FieldDef(
        "doc_id",
        lambda entry: entry.get("doc_id"),
        object
    )
    DATE = FieldDef(
        "date",
        lambda entry: parse_document_date(entry.get("date")),
        dt.date
    )
    RAW_TEXT = FieldDef(
        "raw_text",
        lambda entry: "" if entry.get("raw_text") is None else str(entry.get("raw_text")),
        str
    )

    @property
    def colname(self):
        return self.value.column_name

    def get_extractor(self):
        return self.value.extractor

    @classmethod
    def all_colnames(cls):
        return [field.colname for field in cls]

    @classmethod
    def all_fields(cls):
        return list(cls)


def build_documents_frame(documents, text_key="raw_text", date_key="date"):
    """
    Build the documents dataframe from an ordered sequence of records.

    Args:
        documents: pandas DataFrame or iterable of mappings, one per document
        text_key: Name of the field holding raw text in the input
        date_key: Name of the field holding the document date in the input

    Returns:
        DataFrame with the schema columns first, followed by any extra
        metadata columns, indexed 0..N-1 in input order. Documents without a
        doc_id get their positional index.

    Raises:
        ValueError: if a document has no parseable date
    """
    if isinstance(documents, pd.DataFrame):
        records = documents.to_dict(orient="records")
    else:
        records = []
        for doc in documents:
            if not isinstance(doc, Mapping):
                raise ValueError("Each document must be a mapping of field names to values")
            records.append(dict(doc))

    rows = []
    for position, record in enumerate(records):
        entry = dict(record)
        if text_key != DocumentSchema.RAW_TEXT.colname:
            entry[DocumentSchema.RAW_TEXT.colname] = entry.pop(text_key, None)
        if date_key != DocumentSchema.DATE.colname:
            entry[DocumentSchema.DATE.colname] = entry.pop(date_key, None)

        row = {field.colname: field.get_extractor()(entry) for field in DocumentSchema}
        if row[DocumentSchema.DOC_ID.colname] is None:
            row[DocumentSchema.DOC_ID.colname] = position
        if row[DocumentSchema.DATE.colname] is None:
            raise ValueError(f"Document at position {position} has no '{date_key}' value")

        extras = {k: v for k, v in entry.items() if k not in row}
        row.update(extras)
        rows.append(row)

    df = pd.DataFrame(rows)
    if df.empty:
        df = pd.DataFrame(columns=DocumentSchema.all_colnames())
    ordered = DocumentSchema.all_colnames() + [c for c in df.columns if c not in DocumentSchema.all_colnames()]
    return df[ordered].reset_index(drop=True)
