from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

@dataclass
class MetricsStore:
    network_rows: List[Dict[str, Any]] = field(default_factory=list)
    pool_rows: List[Dict[str, Any]] = field(default_factory=list)
    farm_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_network(self, row: Dict[str, Any]) -> None:
        self.network_rows.append(row)

    def add_pool_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.pool_rows.extend(rows)

    def add_farm_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.farm_rows.extend(rows)

    def network_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.network_rows)

    def pool_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.pool_rows)

    def farm_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.farm_rows)

    def pool_pivot(self, column: str) -> pd.DataFrame:
        """One column per pool, one row per tick (e.g. column="sqrt_k")."""
        df = self.pool_df()
        if df.empty or column not in df.columns:
            return pd.DataFrame()
        return df.pivot_table(index="tick", columns="pair", values=column, aggfunc="last")
