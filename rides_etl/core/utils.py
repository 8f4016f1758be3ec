import pandas as pd


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Standardizes column names to lower_snake_case."""
    df = df.copy()
    df.columns = (
        df.columns.astype(str).str.strip().str.lower().str.replace(r"\s+", "_", regex=True)
    )
    return df


def clean_natural_keys(values: pd.Series) -> pd.Series:
    """Null out empty and whitespace-only keys, leave everything else verbatim.

    Natural keys match case-sensitively and exactly, so no trimming or case
    folding is applied to real values.
    """
    values = values.astype("string")
    blank = values.str.strip().fillna("") == ""
    return values.mask(blank, pd.NA)


def utc_now() -> pd.Timestamp:
    """Naive UTC timestamp for audit columns."""
    return pd.Timestamp.now(tz="UTC").tz_localize(None).floor("us")


def to_sql_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Convert pandas string/NA columns to plain objects with None for SQL engines."""
    df = df.copy()
    for col in df.columns:
        if pd.api.types.is_string_dtype(df[col]) or df[col].dtype == object:
            df[col] = df[col].astype(object).where(df[col].notna(), None)
    return df
