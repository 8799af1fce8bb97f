"""config.json loader."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

NetworkType = Literal["mainnet", "testnet", "calibnet"]

# First epoch with builtin actor events (nv22). On calibnet the events were not
# complete until a later fix; the upgrade height is kept.
NV22_EPOCH: dict[str, int] = {
    "calibnet": 1427974,
    "mainnet": 3855360,
}

GENESIS_TIME: dict[str, datetime] = {
    "calibnet": datetime(2022, 11, 1, 18, 13, tzinfo=timezone.utc),
    "mainnet": datetime(2020, 8, 24, 22, 0, tzinfo=timezone.utc),
}


class Config(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True, frozen=True)

    network: NetworkType
    lotus_http_rpc: str = Field(..., min_length=1)
    store_path: str = Field(..., min_length=1)
    api_cache_path: str = Field(..., min_length=1)
    lotus_websocket_rpc: Optional[str] = None
    start_epoch: Optional[int] = Field(default=None, ge=0)
    filter_range: Optional[int] = Field(default=None, ge=1)

    @property
    def network_cache_path(self) -> str:
        return os.path.join(self.api_cache_path, self.network)

    def network_start_epoch(self) -> int:
        if self.start_epoch is not None:
            return self.start_epoch
        if self.network not in NV22_EPOCH:
            raise ValueError(f"No nv22 epoch defined for network {self.network}, set startEpoch")
        return NV22_EPOCH[self.network]

    def epoch0(self) -> datetime:
        if self.network not in GENESIS_TIME:
            raise ValueError(f"No genesis time defined for network {self.network}")
        return GENESIS_TIME[self.network]


def load_config(path: str | Path) -> Config:
    with open(path, "r") as f:
        data = json.load(f)
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid config data format in {path}:\n{e}") from e
