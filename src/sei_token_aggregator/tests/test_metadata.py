from __future__ import annotations

import asyncio
from pathlib import Path

from sei_token_aggregator.config.settings import MetadataConfig
from sei_token_aggregator.ingestion.metadata import MetadataStore


def test_metadata_store_loads_and_normalises_rows(tmp_path: Path) -> None:
    csv_path = tmp_path / "tokens.csv"
    csv_path.write_text(
        "\ufeffcontract_address,name,symbol,decimals,logo\n"
        "0xAA,Alpha,AA,18,https://logo/aa.png\n"
        "0xaa,Alpha Duplicate,AA2,6,\n"
        ",Missing,MISS,18,\n"
        "0xBB,,,not-a-number,\n",
        encoding="utf-8",
    )
    store = MetadataStore(MetadataConfig(csv_path=csv_path))

    assert store.loaded is False
    asyncio.run(store.ensure_loaded())
    assert store.loaded is True

    assert store.addresses() == ["0xaa", "0xbb"]
    alpha = store.get("0xAA")
    assert alpha is not None
    assert alpha.name == "Alpha"
    assert alpha.decimals == 18
    assert alpha.logo == "https://logo/aa.png"

    beta = store.get("0xbb")
    assert beta is not None
    assert beta.name == "0xBB"
    assert beta.symbol == "0xBB"
    assert beta.decimals == 0
    assert set(store.all()) == {"0xaa", "0xbb"}
