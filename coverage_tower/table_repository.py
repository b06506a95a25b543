from __future__ import annotations

from pathlib import Path

import pandas as pd


class TableRepository:
    """One source table kept as trimmed strings, ready for alias lookups."""

    def __init__(self, dataframe: pd.DataFrame, *, name: str = "table") -> None:
        self.name = name
        self._df = dataframe.copy()

    @classmethod
    def from_dataframe(
        cls,
        dataframe: pd.DataFrame,
        *,
        name: str = "table",
        column_map: dict[str, str] | None = None,
    ) -> "TableRepository":
        if dataframe is None:
            raise ValueError(f"No dataframe provided to load {name} rows from.")
        if not isinstance(dataframe, pd.DataFrame):
            raise ValueError(f"{name} input must be a pandas DataFrame.")

        df_table = dataframe.copy()
        df_table.columns = [str(column).strip() for column in df_table.columns]
        if column_map:
            df_table = df_table.rename(columns=column_map)
        df_table = df_table.astype(object).where(df_table.notna(), "")
        df_table = df_table.apply(lambda column: column.map(lambda v: str(v).strip()))
        df_table = df_table[(df_table != "").any(axis=1)]
        return cls(df_table.reset_index(drop=True), name=name)

    @classmethod
    def from_csv(
        cls,
        *,
        csv_path: Path,
        name: str = "table",
        column_map: dict[str, str] | None = None,
    ) -> "TableRepository":
        if not csv_path.exists():
            raise FileNotFoundError(f"{name} CSV not found at {csv_path}")
        dataframe = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
        return cls.from_dataframe(dataframe, name=name, column_map=column_map)

    def get_dataframe(self) -> pd.DataFrame:
        return self._df.copy()

    def get_rows(self) -> list[dict[str, str]]:
        return [
            {str(key): str(value) for key, value in row.items()}
            for row in self._df.to_dict(orient="records")
        ]

    def __len__(self) -> int:
        return len(self._df)
